"""Post processing orchestrator.

One ``PostProcessor.process`` call handles exactly one scraped post:

    received -> validating -> fanning-out -> assembling
             -> creating-document -> attaching-media -> done

Only validation aborts a request before side effects. URL resolution, video
and image acquisition degrade to tagged results, document creation failures
propagate, and media attachment failures are logged and ignored.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Sequence
from urllib.parse import urlparse

from .. import __version__
from ..errors import DocumentCreationError, ValidationError
from ..logging_utils import log_event
from ..models import (
    AcquiredVideo,
    DebugLog,
    DocumentFields,
    ImageOutcome,
    ProcessingCounts,
    ProcessingResult,
    RawImage,
    RawPost,
    RawVideo,
    ResolvedUrl,
    VideoFailure,
    VideoOutcome,
)
from ..sinks import DocumentSink, StorageSink
from ..utils.concurrency import run_bounded
from .images import ImageAcquirer
from .url_resolver import URLResolver, extract_urls, merge_urls
from .video import VideoAcquirer, remove_temp_file

logger = logging.getLogger(__name__)

TITLE_LIMIT = 100


class Stage(str, Enum):
    RECEIVED = "received"
    VALIDATING = "validating"
    FANNING_OUT = "fanning-out"
    ASSEMBLING = "assembling"
    CREATING_DOCUMENT = "creating-document"
    ATTACHING_MEDIA = "attaching-media"
    DONE = "done"
    FAILED = "failed"


@dataclass
class _Invocation:
    """State private to one ``process`` call."""

    debug: DebugLog
    stage: Stage = Stage.RECEIVED
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def advance(self, stage: Stage) -> None:
        self.debug.debug(f"Stage {self.stage.value} -> {stage.value}")
        self.stage = stage


def is_http_url(value: str) -> bool:
    parsed = urlparse(value)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def build_title(post: RawPost) -> str:
    body = post.text.strip()
    if body:
        return body[:TITLE_LIMIT]
    return f"LinkedIn post from {post.author}"


class PostProcessor:
    """Coordinates the resolver, acquirers and sinks for a single post."""

    def __init__(
        self,
        *,
        resolver: URLResolver,
        videos: VideoAcquirer,
        images: ImageAcquirer,
        documents: DocumentSink,
        storage: StorageSink,
        video_concurrency: int = 2,
        image_concurrency: int = 5,
    ) -> None:
        self._resolver = resolver
        self._videos = videos
        self._images = images
        self._documents = documents
        self._storage = storage
        self._video_concurrency = video_concurrency
        self._image_concurrency = image_concurrency

    @staticmethod
    def validate(post: RawPost) -> None:
        """Raise ``ValidationError`` for posts that cannot produce a document."""
        if not post.text.strip() and not post.videos:
            raise ValidationError("Post must have text content or videos", "content")
        if post.url and not is_http_url(post.url):
            raise ValidationError("Invalid post URL", "url", post.url)

    async def process(self, post: RawPost, client_debug: dict[str, Any] | None = None) -> ProcessingResult:
        run = _Invocation(debug=DebugLog(logger))
        run.debug.info("Starting post processing", {"author": post.author})

        run.advance(Stage.VALIDATING)
        try:
            self.validate(post)
        except ValidationError as exc:
            run.advance(Stage.FAILED)
            run.debug.warning(f"Validation failed: {exc.message}", {"field": exc.field})
            raise

        run.advance(Stage.FANNING_OUT)
        urls = merge_urls(post.urls, extract_urls(post.text))
        resolved, videos, images = await asyncio.gather(
            self._resolve_urls(urls, run),
            self._acquire_videos(post.videos, post.author, run),
            self._acquire_images(post.images, run),
        )

        run.advance(Stage.ASSEMBLING)
        fields = DocumentFields(
            title=build_title(post),
            text=post.text,
            author=post.author,
            author_profile_url=post.author_profile_url,
            source_url=post.url,
            timestamp=post.timestamp,
            urls=tuple(resolved),
            videos=tuple(videos),
            post_type=post.post_type,
            script_version=post.script_version,
            debug=self._debug_info(client_debug, resolved, run),
        )

        run.advance(Stage.CREATING_DOCUMENT)
        try:
            document = await self._documents.create_document(fields)
        except DocumentCreationError as exc:
            run.debug.error(f"Document creation failed: {exc.message}", exc.context)
            raise
        except Exception as exc:
            run.debug.error(f"Document creation failed: {exc}")
            raise DocumentCreationError(f"Document creation failed: {exc}") from exc

        if images:
            run.advance(Stage.ATTACHING_MEDIA)
            try:
                await self._documents.attach_images(document.id, images, post.url)
            except Exception as exc:
                run.debug.warning(f"Could not attach images to {document.id}: {exc}")

        counts = ProcessingCounts(
            videos_processed=sum(1 for video in videos if not video.failed),
            images_processed=sum(1 for image in images if not image.failed),
            urls_resolved=sum(1 for entry in resolved if entry.changed),
        )
        run.advance(Stage.DONE)
        log_event(
            logger,
            logging.INFO,
            "post.processed",
            document_url=document.url,
            videos=counts.videos_processed,
            images=counts.images_processed,
            urls_resolved=counts.urls_resolved,
            videos_failed=len(videos) - counts.videos_processed,
            images_failed=len(images) - counts.images_processed,
        )
        return ProcessingResult(success=True, document_id=document.id, document_url=document.url, counts=counts)

    async def _resolve_urls(self, urls: Sequence[str], run: _Invocation) -> list[ResolvedUrl]:
        if not urls:
            return []
        run.debug.info(f"Processing {len(urls)} URL(s)")
        resolved = await self._resolver.resolve_all(urls)
        for entry in resolved:
            if entry.was_shortened:
                run.debug.info("URL resolution", entry.to_dict())
        return resolved

    async def _acquire_videos(
        self,
        videos: Sequence[RawVideo],
        author: str,
        run: _Invocation,
    ) -> list[VideoOutcome]:
        if not videos:
            return []
        run.debug.info(f"Processing {len(videos)} video(s)")

        async def worker(video: RawVideo, index: int) -> VideoOutcome:
            return await self._acquire_video(video, index, author, run)

        return await run_bounded(list(videos), worker, self._video_concurrency)

    async def _acquire_video(self, video: RawVideo, index: int, author: str, run: _Invocation) -> VideoOutcome:
        downloaded = None
        try:
            downloaded = await self._videos.acquire(video, index, author=author)
            stored = None
            if self._storage.is_configured():
                content = await asyncio.to_thread(downloaded.local_path.read_bytes)
                stored = await self._storage.save(content, downloaded.filename)
            run.debug.info(f"Video {index + 1} processed", {"filename": downloaded.filename})
            return AcquiredVideo(
                index=index,
                source_url=downloaded.source_url,
                filename=downloaded.filename,
                size_bytes=downloaded.size_bytes,
                duration=downloaded.duration,
                resolution=downloaded.resolution,
                format=downloaded.format,
                stored=stored,
            )
        except Exception as exc:
            run.debug.error(f"Failed to process video {index + 1}: {exc}")
            return VideoFailure(index=index, source_url=video.url, error=str(exc))
        finally:
            if downloaded is not None:
                remove_temp_file(downloaded.local_path)

    async def _acquire_images(self, images: Sequence[RawImage], run: _Invocation) -> list[ImageOutcome]:
        if not images:
            return []
        run.debug.info(f"Processing {len(images)} image(s)")
        outcomes = await run_bounded(list(images), self._images.acquire, self._image_concurrency)
        for outcome in outcomes:
            if outcome.failed:
                run.debug.error(f"Failed to process image {outcome.index + 1}: {outcome.error}")
        return outcomes

    def _debug_info(
        self,
        client_debug: dict[str, Any] | None,
        resolved: Sequence[ResolvedUrl],
        run: _Invocation,
    ) -> dict[str, Any]:
        return {
            "client": client_debug or {},
            "server": {
                "appVersion": __version__,
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "startedAt": run.started_at.isoformat(),
                "urlsProcessed": len(resolved),
                "urlResolutionResults": [entry.to_dict() for entry in resolved],
                "logs": run.debug.snapshot(),
            },
        }
