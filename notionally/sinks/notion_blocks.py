"""Builders for Notion page properties and content blocks.

All functions are pure: they take result values and return the JSON shapes
the Notion API expects, so page layout can be tested without a network.
"""

from __future__ import annotations

import json
import re
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping, Sequence

from ..models import DocumentFields, ImageOutcome, ResolvedUrl, VideoOutcome
from ..utils.files import format_file_size

RICH_TEXT_LIMIT = 2000
BLOCKS_PER_REQUEST = 100
_BLANK_LINE_RE = re.compile(r"\n\s*\n")

Block = dict[str, Any]


# --------------------------------------------------------------------------- #
# Primitive blocks
# --------------------------------------------------------------------------- #


def text(content: str, link: str | None = None) -> dict[str, Any]:
    node: dict[str, Any] = {"content": content[:RICH_TEXT_LIMIT]}
    if link:
        node["link"] = {"url": link}
    return {"type": "text", "text": node}


def paragraph(content: str) -> Block:
    return {"object": "block", "type": "paragraph", "paragraph": {"rich_text": [text(content)]}}


def heading(content: str) -> Block:
    return {"object": "block", "type": "heading_3", "heading_3": {"rich_text": [text(content)]}}


def divider() -> Block:
    return {"object": "block", "type": "divider", "divider": {}}


def bulleted(parts: Sequence[dict[str, Any]]) -> Block:
    return {"object": "block", "type": "bulleted_list_item", "bulleted_list_item": {"rich_text": list(parts)}}


def callout(parts: Sequence[dict[str, Any]] | str, emoji: str, color: str) -> Block:
    rich = [text(parts)] if isinstance(parts, str) else list(parts)
    return {
        "object": "block",
        "type": "callout",
        "callout": {"rich_text": rich, "icon": {"emoji": emoji}, "color": color},
    }


def code(content: str, language: str = "plain text") -> Block:
    return {
        "object": "block",
        "type": "code",
        "code": {"language": language, "rich_text": [text(content or " ")]},
    }


def toggle(title: str, children: Sequence[Block]) -> Block:
    return {
        "object": "block",
        "type": "toggle",
        "toggle": {"rich_text": [text(title)], "children": list(children)},
    }


def external_media(kind: str, url: str, caption: str | None = None) -> Block:
    body: dict[str, Any] = {"type": "external", "external": {"url": url}}
    if kind == "image":
        body["caption"] = [text(caption)] if caption else []
    return {"object": "block", "type": kind, kind: body}


# --------------------------------------------------------------------------- #
# Text handling
# --------------------------------------------------------------------------- #


def chunk_text(value: str, limit: int = RICH_TEXT_LIMIT) -> list[str]:
    """Split text into pieces no longer than ``limit``.

    Prefers a sentence end, then a word boundary, as long as the cut lands past
    70% of the limit; otherwise cuts hard at the limit.
    """
    remaining = value.strip()
    chunks: list[str] = []
    while remaining:
        if len(remaining) <= limit:
            chunks.append(remaining)
            break
        split_at = limit
        sentence_end = remaining.rfind(". ", 0, limit)
        if sentence_end > limit * 0.7:
            split_at = sentence_end + 1
        else:
            word_end = remaining.rfind(" ", 0, limit)
            if word_end > limit * 0.7:
                split_at = word_end
        chunks.append(remaining[:split_at].strip())
        remaining = remaining[split_at:].strip()
    return chunks


def paragraph_blocks(body: str | None) -> list[Block]:
    if not body:
        return []
    blocks: list[Block] = []
    for part in _BLANK_LINE_RE.split(body):
        blocks.extend(paragraph(chunk) for chunk in chunk_text(part))
    return blocks


def streaming_link(url: str) -> str:
    """Turn a Dropbox share link into one Notion can embed directly."""
    if "dl.dropboxusercontent.com" in url or "raw=1" in url:
        return url
    return url.replace("www.dropbox.com", "dl.dropboxusercontent.com").replace("?dl=0", "")


def page_url(page_id: str) -> str:
    return f"https://www.notion.so/{page_id.replace('-', '')}"


# --------------------------------------------------------------------------- #
# Sections
# --------------------------------------------------------------------------- #


def links_section(urls: Sequence[ResolvedUrl]) -> list[Block]:
    if not urls:
        return []
    blocks = [divider(), heading(f"🔗 Links ({len(urls)})")]
    for entry in urls:
        parts = [text(entry.resolved, link=entry.resolved)]
        if entry.was_shortened and entry.changed:
            parts.append(text(f" (expanded from: {entry.original})"))
        elif entry.was_shortened:
            parts.append(text(" (LinkedIn shortened URL)"))
        blocks.append(bulleted(parts))
    return blocks


def videos_section(videos: Sequence[VideoOutcome]) -> list[Block]:
    if not videos:
        return []
    blocks = [heading(f"📹 Videos ({len(videos)})")]
    for position, video in enumerate(sorted(videos, key=lambda item: item.index), start=1):
        if video.failed:
            blocks.append(
                callout(
                    f"⚠️ Video {position} could not be downloaded\n"
                    "LinkedIn videos are often protected and cannot be saved automatically.\n"
                    f"Original URL: {video.source_url[:50]}...\n"
                    f"Error: {video.error}",
                    emoji="🎥",
                    color="yellow_background",
                )
            )
            continue

        details = [f"Video {position}: {video.filename}", f"Size: {format_file_size(video.size_bytes)}"]
        if video.resolution:
            details.append(f"Resolution: {video.resolution}")
        if video.duration:
            details.append(f"Duration: {video.duration:.1f}s")
        if video.stored:
            blocks.append(external_media("video", video.stored.streaming_url))
            details.append(f"Dropbox: {video.stored.path}")
            details.append(f"Share Link: {video.stored.shareable_url}")
        else:
            details.append(f"Source: {video.source_url}")
            details.append("Not archived: storage is not configured.")
        blocks.append(callout("\n".join(details), emoji="🎬", color="blue_background"))
    return blocks


def metadata_footer(fields: DocumentFields, saved_at: datetime) -> list[Block]:
    parts = [text(f"📊 Saved via Notionally on {saved_at.strftime('%Y-%m-%d %H:%M:%S %Z').strip()}\n")]
    if fields.source_url:
        parts.append(text("Original LinkedIn post: "))
        parts.append(text(fields.source_url, link=fields.source_url))
    parts.append(text("\nAuthor: "))
    parts.append(text(fields.author, link=fields.author_profile_url))
    return [divider(), callout(parts, emoji="🤖", color="gray_background")]


def _json_block(payload: Mapping[str, Any]) -> Block:
    return code(json.dumps(payload, indent=2, default=str)[:RICH_TEXT_LIMIT], language="json")


def _log_lines(entries: Iterable[Mapping[str, Any]]) -> str:
    lines = [f"[{entry.get('timestamp')}] {entry.get('level')}: {entry.get('message')}" for entry in entries]
    return "\n".join(lines)[:RICH_TEXT_LIMIT]


def debug_toggle(debug: Mapping[str, Any] | None) -> list[Block]:
    if not debug:
        return []
    client = debug.get("client") or {}
    server = debug.get("server") or {}
    children: list[Block] = [
        heading("📱 Client Information"),
        _json_block({key: client.get(key) for key in ("scriptVersion", "timestamp", "userAgent", "pageUrl", "urlStats")}),
        heading("🖥️ Server Information"),
        _json_block({key: value for key, value in server.items() if key != "logs"}),
    ]
    if client.get("logs"):
        children += [heading("📋 Client Logs (last 10)"), code(_log_lines(client["logs"][-10:]))]
    if server.get("logs"):
        children += [heading("📋 Server Logs (last 10)"), code(_log_lines(server["logs"][-10:]))]
    return [divider(), toggle("🐛 Debug Information (click to expand)", children)]


def build_page_blocks(fields: DocumentFields, saved_at: datetime | None = None) -> list[Block]:
    """Assemble every content block of a new page. Images are added later."""
    saved_at = saved_at or datetime.now(timezone.utc)
    blocks = paragraph_blocks(fields.text)
    blocks += links_section(fields.urls)
    if fields.videos:
        blocks.append(divider())
        blocks += videos_section(fields.videos)
    blocks += metadata_footer(fields, saved_at)
    blocks += debug_toggle(fields.debug)
    return blocks


def image_blocks(images: Sequence[ImageOutcome]) -> list[Block]:
    if not images:
        return []
    blocks = [divider(), heading(f"🖼️ Images ({len(images)})")]
    for image in sorted(images, key=lambda item: item.index):
        number = image.index + 1
        if image.failed:
            blocks.append(
                callout(
                    f"⚠️ Image {number} could not be saved: {image.error}",
                    emoji="🖼️",
                    color="yellow_background",
                )
            )
        elif image.stored:
            blocks.append(external_media("image", streaming_link(image.stored.streaming_url), image.alt))
            blocks.append(
                callout(
                    f"✅ Image saved to Dropbox: {image.stored.path}",
                    emoji="🖼️",
                    color="green_background",
                )
            )
        elif image.url:
            blocks.append(external_media("image", image.url, image.alt))
        else:
            blocks.append(
                callout(
                    f"📸 Image {number}: {image.alt} (inline image, storage not configured)",
                    emoji="🖼️",
                    color="blue_background",
                )
            )
    return blocks


def batched(blocks: Sequence[Block], size: int = BLOCKS_PER_REQUEST) -> list[list[Block]]:
    return [list(blocks[start:start + size]) for start in range(0, len(blocks), size)]


# --------------------------------------------------------------------------- #
# Page properties
# --------------------------------------------------------------------------- #


def build_properties(fields: DocumentFields) -> dict[str, Any]:
    created = fields.timestamp or datetime.now(timezone.utc)
    has_video = bool(fields.videos)
    is_article = fields.post_type == "pulse_article"
    tags = [{"name": "LinkedIn"}]
    if is_article:
        tags.append({"name": "Article"})
    if has_video:
        tags.append({"name": "Video"})
    author_tag = re.sub(r"[^a-zA-Z0-9\s]", "", fields.author).strip()[:30]
    if author_tag:
        tags.append({"name": author_tag})

    preview = fields.text[:200] + ("..." if len(fields.text) > 200 else "")
    return {
        "Name": {"title": [text(fields.title)]},
        "URL": {"url": fields.source_url},
        "Created": {"date": {"start": created.isoformat()}},
        "Type": {"select": {"name": "LinkedIn Article" if is_article else "LinkedIn Post"}},
        "Tags": {"multi_select": tags},
        "Author": {"rich_text": [text(fields.author)]},
        "Author Profile": {"url": fields.author_profile_url},
        "Has Video": {"checkbox": has_video},
        "Video Count": {"number": len(fields.videos)},
        "Content preview": {"rich_text": [text(preview)]},
        "Script version": {"select": {"name": fields.script_version or "Unknown"}},
    }
