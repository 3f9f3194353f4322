"""Tests for the Notion page builders and API client."""

import asyncio
import json
from datetime import datetime, timezone

import httpx
import pytest

from notionally.config import NotionSettings
from notionally.errors import DocumentCreationError, MediaAttachmentError
from notionally.models import (
    AcquiredImage,
    AcquiredVideo,
    DocumentFields,
    ImageFailure,
    ResolutionMethod,
    ResolvedUrl,
    StoredFile,
    VideoFailure,
)
from notionally.sinks import notion_blocks
from notionally.sinks.notion import NotionClient, classify_failure

SETTINGS = NotionSettings(api_key="secret_abcdefghijklmnop", data_source_id="ds-1234")
STORED = StoredFile(
    path="/LinkedIn_Videos/2024-01-01/clip.mp4",
    shareable_url="https://www.dropbox.com/s/abc/clip.mp4?dl=0",
    streaming_url="https://www.dropbox.com/s/abc/clip.mp4?raw=1",
)


def make_fields(**overrides):
    values = dict(
        title="A post",
        text="Hello world",
        author="Jane Doe",
        author_profile_url="https://www.linkedin.com/in/jane",
        source_url="https://www.linkedin.com/posts/1",
        timestamp=datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc),
        urls=(),
        videos=(),
    )
    values.update(overrides)
    return DocumentFields(**values)


def contents(block):
    body = block[block["type"]]
    return "".join(part["text"]["content"] for part in body["rich_text"])


def run_client(handler, coro_factory, settings=SETTINGS):
    async def run():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await coro_factory(NotionClient(settings, client))

    return asyncio.run(run())


class TestChunkText:
    def test_short_text_is_one_chunk(self):
        assert notion_blocks.chunk_text("hello") == ["hello"]

    def test_long_text_splits_at_sentence_end(self):
        sentence = "word " * 300 + "end. " + "tail " * 200
        chunks = notion_blocks.chunk_text(sentence)

        assert all(len(chunk) <= notion_blocks.RICH_TEXT_LIMIT for chunk in chunks)
        assert chunks[0].endswith("end.")

    def test_unbroken_text_is_cut_hard(self):
        chunks = notion_blocks.chunk_text("x" * 4500)

        assert [len(chunk) for chunk in chunks] == [2000, 2000, 500]


class TestPageBlocks:
    def test_links_note_expansion_and_unresolved_short_links(self):
        urls = (
            ResolvedUrl("https://lnkd.in/a", "https://example.com/a", True, ResolutionMethod.UNSHORTEN_SERVICE),
            ResolvedUrl("https://lnkd.in/b", "https://lnkd.in/b", True, ResolutionMethod.UNRESOLVED),
            ResolvedUrl("https://plain.example", "https://plain.example", False),
        )
        blocks = notion_blocks.links_section(urls)

        assert contents(blocks[1]) == "🔗 Links (3)"
        assert contents(blocks[2]) == "https://example.com/a (expanded from: https://lnkd.in/a)"
        assert contents(blocks[3]) == "https://lnkd.in/b (LinkedIn shortened URL)"
        assert contents(blocks[4]) == "https://plain.example"
        assert blocks[2]["bulleted_list_item"]["rich_text"][0]["text"]["link"] == {"url": "https://example.com/a"}

    def test_videos_render_embed_or_placeholder(self):
        videos = (
            VideoFailure(index=1, source_url="https://media.example/broken.mp4", error="Download failed: 404"),
            AcquiredVideo(
                index=0,
                source_url="https://media.example/ok.mp4",
                filename="clip.mp4",
                size_bytes=2048,
                duration=12.0,
                resolution="1280x720",
                format="mp4",
                stored=STORED,
            ),
        )
        blocks = notion_blocks.videos_section(videos)

        assert [block["type"] for block in blocks] == ["heading_3", "video", "callout", "callout"]
        assert blocks[1]["video"]["external"]["url"] == STORED.streaming_url
        assert "Resolution: 1280x720" in contents(blocks[2])
        assert blocks[3]["callout"]["color"] == "yellow_background"
        assert contents(blocks[3]).startswith("⚠️ Video 2 could not be downloaded")

    def test_page_layout_order(self):
        fields = make_fields(
            urls=(ResolvedUrl("https://x.example", "https://x.example", False),),
            videos=(VideoFailure(index=0, source_url="https://v.example/a.mp4", error="boom"),),
            debug={"client": {}, "server": {"logs": [{"timestamp": "t", "level": "INFO", "message": "m"}]}},
        )
        types = [block["type"] for block in notion_blocks.build_page_blocks(fields)]

        assert types[0] == "paragraph"
        assert types[-1] == "toggle"
        assert types.index("bulleted_list_item") < types.index("heading_3", types.index("bulleted_list_item"))

    def test_image_blocks_cover_every_outcome(self):
        images = (
            AcquiredImage(index=0, url="https://i.example/0.png", alt="zero", filename="image_0.png", stored=STORED),
            ImageFailure(index=1, url="https://i.example/1.png", alt="one", error="HTTP 404"),
            AcquiredImage(index=2, url="https://i.example/2.png", alt="two"),
            AcquiredImage(index=3, url=None, alt="three"),
        )
        blocks = notion_blocks.image_blocks(images)

        assert [block["type"] for block in blocks] == [
            "divider",
            "heading_3",
            "image",
            "callout",
            "callout",
            "image",
            "callout",
        ]
        assert blocks[3]["callout"]["color"] == "green_background"
        assert blocks[4]["callout"]["color"] == "yellow_background"
        assert blocks[5]["image"]["external"]["url"] == "https://i.example/2.png"
        assert blocks[6]["callout"]["color"] == "blue_background"

    def test_streaming_link(self):
        assert notion_blocks.streaming_link("https://www.dropbox.com/s/x/a.png?dl=0") == (
            "https://dl.dropboxusercontent.com/s/x/a.png"
        )
        assert notion_blocks.streaming_link(STORED.streaming_url) == STORED.streaming_url

    def test_properties(self):
        fields = make_fields(
            post_type="pulse_article",
            videos=(VideoFailure(index=0, source_url="https://v.example/a.mp4", error="boom"),),
            text="y" * 250,
        )
        properties = notion_blocks.build_properties(fields)

        assert properties["Type"]["select"]["name"] == "LinkedIn Article"
        assert [tag["name"] for tag in properties["Tags"]["multi_select"]] == ["LinkedIn", "Article", "Video", "Jane Doe"]
        assert properties["Has Video"] == {"checkbox": True}
        assert properties["Video Count"] == {"number": 1}
        assert properties["Created"]["date"]["start"] == "2024-01-01T12:00:00+00:00"
        assert properties["Content preview"]["rich_text"][0]["text"]["content"].endswith("...")
        assert properties["Script version"]["select"]["name"] == "Unknown"


class TestNotionClient:
    def test_large_pages_are_split_into_batches(self):
        requests = []

        def handler(request):
            requests.append((request.method, request.url.path, json.loads(request.content)))
            if request.method == "POST":
                return httpx.Response(200, json={"id": "abcd-1234"})
            return httpx.Response(200, json={"results": []})

        body = "\n\n".join(f"paragraph {n}" for n in range(120))
        document = run_client(handler, lambda client: client.create_document(make_fields(text=body)))

        assert document.id == "abcd-1234"
        assert document.url == "https://www.notion.so/abcd1234"
        assert [(method, path) for method, path, _ in requests] == [
            ("POST", "/v1/pages"),
            ("PATCH", "/v1/blocks/abcd-1234/children"),
        ]
        assert len(requests[0][2]["children"]) == 100
        assert len(requests[1][2]["children"]) == 22
        assert requests[0][2]["parent"] == {"type": "data_source_id", "data_source_id": "ds-1234"}

    def test_sends_auth_and_version_headers(self):
        seen = {}

        def handler(request):
            seen.update(request.headers)
            return httpx.Response(200, json={"id": "p1"})

        run_client(handler, lambda client: client.create_document(make_fields()))

        assert seen["authorization"] == "Bearer secret_abcdefghijklmnop"
        assert seen["notion-version"] == SETTINGS.api_version

    def test_unauthorized_is_classified(self):
        def handler(request):
            return httpx.Response(401, json={"code": "unauthorized", "message": "API token is invalid."})

        with pytest.raises(DocumentCreationError) as excinfo:
            run_client(handler, lambda client: client.create_document(make_fields()))

        assert excinfo.value.kind == "authorization"
        assert excinfo.value.status == 401
        assert excinfo.value.status_code == 502
        assert "authorization failed" in excinfo.value.message

    def test_database_parent_fallback(self):
        payloads = []

        def handler(request):
            payloads.append(json.loads(request.content))
            return httpx.Response(200, json={"id": "p1"})

        settings = NotionSettings(api_key="secret_abcdefghijklmnop", database_id="db-1")
        run_client(handler, lambda client: client.create_document(make_fields()), settings)

        assert payloads[0]["parent"] == {"type": "database_id", "database_id": "db-1"}

    def test_unconfigured_client_raises_without_request(self):
        def handler(request):
            raise AssertionError("no request expected")

        with pytest.raises(DocumentCreationError, match="not configured"):
            run_client(handler, lambda client: client.create_document(make_fields()), NotionSettings())

    def test_attach_images_adds_source_note_when_some_failed(self):
        payloads = []

        def handler(request):
            payloads.append(json.loads(request.content))
            return httpx.Response(200, json={})

        images = [
            AcquiredImage(index=0, url="https://i.example/0.png", alt="zero"),
            ImageFailure(index=1, url="https://i.example/1.png", alt="one", error="HTTP 404"),
        ]
        run_client(handler, lambda client: client.attach_images("p1", images, "https://www.linkedin.com/posts/1"))

        [payload] = payloads
        assert contents(payload["children"][-1]).startswith("Missing images can be viewed")

    def test_attach_failure_raises_media_error(self):
        def handler(request):
            return httpx.Response(400, json={"code": "validation_error", "message": "bad block"})

        images = [AcquiredImage(index=0, url="https://i.example/0.png", alt="zero")]
        with pytest.raises(MediaAttachmentError) as excinfo:
            run_client(handler, lambda client: client.attach_images("p1", images, None))

        assert excinfo.value.kind == "validation"

    @pytest.mark.parametrize(
        ("status", "code", "kind"),
        [
            (401, None, "authorization"),
            (403, None, "authorization"),
            (404, "restricted_resource", "authorization"),
            (400, None, "validation"),
            (422, "validation_error", "validation"),
            (500, None, "generic"),
        ],
    )
    def test_classify_failure(self, status, code, kind):
        assert classify_failure(status, code) == kind
