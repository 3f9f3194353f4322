"""Composition root for the Notionally local server."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Optional

import httpx

from . import __version__
from .config import AppConfig, load_config
from .db import ActivityStore
from .errors import NotionallyError, ValidationError
from .logging_utils import log_event
from .models import ProcessingResult, RawPost
from .scheduler import TokenRefreshScheduler
from .services.images import ImageAcquirer
from .services.processing import PostProcessor
from .services.url_resolver import URLResolver
from .services.video import VideoAcquirer
from .sinks import DocumentSink, StorageSink, UnconfiguredStorage
from .sinks.dropbox import DropboxAuth, DropboxStorage
from .sinks.notion import NotionClient
from .utils.concurrency import RetryPolicy, Sleep

logger = logging.getLogger(__name__)


class NotionallyApp:
    """Builds every long-lived collaborator once and owns their lifecycle.

    The HTTP client, the Dropbox token and its refresh scheduler, and the
    activity ledger are shared by all requests. Each post is processed by a
    ``PostProcessor.process`` call that keeps its own state.
    """

    def __init__(
        self,
        config: Optional[AppConfig] = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        documents: DocumentSink | None = None,
        storage: StorageSink | None = None,
        store: ActivityStore | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.config = config or load_config()
        self.http = httpx.AsyncClient(transport=transport, headers={"User-Agent": self.config.resolver.user_agent})
        self.store = store or ActivityStore(self.config.database_path)

        self.dropbox_auth = DropboxAuth(self.config.dropbox, self.http)
        if storage is None:
            storage = (
                DropboxStorage(self.config.dropbox, self.dropbox_auth, self.http)
                if self.dropbox_auth.is_configured()
                else UnconfiguredStorage()
            )
        self.storage = storage
        self.notion = NotionClient(self.config.notion, self.http)
        self.documents = documents or self.notion

        self.videos = VideoAcquirer(
            self.config.video,
            self.http,
            RetryPolicy.from_settings(self.config.retry),
            sleep=sleep,
        )
        self.processor = PostProcessor(
            resolver=URLResolver(self.http, self.config.resolver),
            videos=self.videos,
            images=ImageAcquirer(self.storage, self.http, self.config.images),
            documents=self.documents,
            storage=self.storage,
            video_concurrency=self.config.video.concurrency,
            image_concurrency=self.config.images.concurrency,
        )
        self.token_scheduler = TokenRefreshScheduler(
            self.dropbox_auth,
            interval_hours=self.config.dropbox.token_refresh_hours,
            store=self.store,
        )
        self._is_running = False
        log_event(logger, logging.INFO, "app.initialized", environment=self.config.environment)

    @property
    def is_running(self) -> bool:
        return self._is_running

    async def start(self) -> None:
        if self._is_running:
            log_event(logger, logging.INFO, "app.start_ignored", reason="already_running")
            return
        self._is_running = True

        removed = await asyncio.to_thread(self.videos.cleanup_stale_files)
        if self.dropbox_auth.can_refresh:
            await self.token_scheduler.refresh_now()
        self.token_scheduler.start()
        await asyncio.to_thread(self.store.record_health, component="app", status="pass", detail="started")
        log_event(logger, logging.INFO, "app.started", stale_files_removed=removed, services=self.services())

    async def stop(self) -> None:
        if not self._is_running:
            try:
                await self.http.aclose()
            finally:
                self.store.close()
            return
        self._is_running = False
        try:
            self.token_scheduler.shutdown()
        finally:
            await self.http.aclose()
            self.store.close()
        log_event(logger, logging.INFO, "app.stopped")

    def services(self) -> dict[str, bool]:
        documents_ready = self.notion.is_configured() if self.documents is self.notion else True
        return {"notion": documents_ready, "dropbox": self.storage.is_configured()}

    async def process_post(
        self,
        post: RawPost,
        *,
        request_id: str,
        client_debug: dict[str, Any] | None = None,
    ) -> ProcessingResult:
        """Process one post and record the outcome in the activity ledger."""
        started = time.perf_counter()
        try:
            result = await self.processor.process(post, client_debug)
        except NotionallyError as exc:
            status = "rejected" if isinstance(exc, ValidationError) else "failure"
            await self._record_run(request_id, post, started, status=status, error=exc.message)
            raise
        await self._record_run(request_id, post, started, status="success", result=result)
        return result

    async def _record_run(
        self,
        request_id: str,
        post: RawPost,
        started: float,
        *,
        status: str,
        result: ProcessingResult | None = None,
        error: str | None = None,
    ) -> None:
        payload = result.to_dict() if result else {}
        try:
            await asyncio.to_thread(
                self.store.record_run,
                request_id=request_id,
                status=status,
                duration_ms=(time.perf_counter() - started) * 1000,
                author=post.author,
                source_url=post.url,
                document_url=payload.get("documentUrl"),
                counts=payload.get("stats"),
                error=error,
            )
        except Exception:
            logger.exception("Could not record processing run %s", request_id)

    async def health_snapshot(self) -> dict[str, Any]:
        recent = await asyncio.to_thread(self.store.count_runs)
        return {
            "status": "ok",
            "version": __version__,
            "environment": self.config.environment,
            "services": self.services(),
            "scheduler": self.token_scheduler.snapshot().to_dict(),
            "processedRuns": recent,
        }
