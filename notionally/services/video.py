"""Download, probe and compress videos referenced by a post."""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from datetime import datetime, timezone
from pathlib import Path
from urllib.parse import urlparse

import httpx

from ..config import VideoSettings
from ..errors import VideoAcquisitionError
from ..models import DownloadedVideo, RawVideo
from ..utils.concurrency import RetryPolicy, Sleep, retry_async
from ..utils.files import format_file_size, slugify
from ..utils.media import download_stream, is_stream_manifest, probe_video, transcode_video

logger = logging.getLogger(__name__)

KNOWN_VIDEO_EXTENSIONS = frozenset({"mp4", "mov", "webm", "mkv", "avi", "m4v"})


def _is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, VideoAcquisitionError):
        return exc.retryable
    return True


def source_extension(url: str) -> str:
    suffix = Path(urlparse(url).path).suffix.lstrip(".").lower()
    return suffix if suffix in KNOWN_VIDEO_EXTENSIONS else "mp4"


def build_temp_filename(author: str | None, index: int, extension: str) -> str:
    """``<timestamp>_<author-slug>_<index>_<short-uuid>.<ext>``, unique per request and video."""
    timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H-%M-%S")
    slug = slugify(author) or "unknown"
    return f"{timestamp}_{slug}_{index}_{uuid.uuid4().hex[:8]}.{extension}"


def remove_temp_file(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as exc:
        logger.warning("Could not remove temp file %s: %s", path, exc)


class VideoAcquirer:
    """Turns a remote video reference into a request-owned local file."""

    def __init__(
        self,
        settings: VideoSettings,
        client: httpx.AsyncClient,
        retry_policy: RetryPolicy,
        *,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._settings = settings
        self._client = client
        self._retry_policy = retry_policy
        self._sleep = sleep

    @property
    def temp_dir(self) -> Path:
        return self._settings.temp_dir

    async def acquire(self, video: RawVideo, index: int, *, author: str | None = None) -> DownloadedVideo:
        """Download, probe and, when needed, compress one video.

        Any failure removes the temp files created so far and raises
        ``VideoAcquisitionError``.
        """
        url = (video.url or "").strip()
        if not url:
            raise VideoAcquisitionError("Video source URL is missing", url=video.url)

        self.temp_dir.mkdir(parents=True, exist_ok=True)
        extension = "mp4" if is_stream_manifest(url) else source_extension(url)
        download_path = self.temp_dir / build_temp_filename(author, index, extension)
        owned: list[Path] = [download_path]

        try:
            try:
                await retry_async(
                    lambda: self._download(url, download_path),
                    self._retry_policy,
                    retryable=_is_retryable,
                    sleep=self._sleep,
                )
            except Exception as exc:
                raise VideoAcquisitionError(f"Download failed: {exc}", url=url) from exc

            try:
                probe = await asyncio.to_thread(probe_video, download_path)
            except Exception as exc:
                raise VideoAcquisitionError(f"Metadata extraction failed: {exc}", url=url) from exc
            if not probe.has_video:
                raise VideoAcquisitionError("No video stream found", url=url)

            final_path = download_path
            if self._needs_transcode(download_path):
                final_path = download_path.with_name(
                    f"{download_path.stem}_compressed.{self._settings.output_format}"
                )
                owned.append(final_path)
                await self._transcode(download_path, final_path, url)
                remove_temp_file(download_path)

            size = final_path.stat().st_size
            logger.info("Video processed: %s (%s)", final_path.name, format_file_size(size))
            return DownloadedVideo(
                index=index,
                source_url=url,
                local_path=final_path,
                filename=final_path.name,
                size_bytes=size,
                duration=probe.duration,
                width=probe.width,
                height=probe.height,
                format=final_path.suffix.lstrip("."),
            )
        except VideoAcquisitionError:
            for path in owned:
                remove_temp_file(path)
            raise
        except Exception as exc:
            for path in owned:
                remove_temp_file(path)
            raise VideoAcquisitionError(f"Video processing failed: {exc}", url=url) from exc

    async def _download(self, url: str, destination: Path) -> None:
        logger.info("Downloading video from %s", url)
        if is_stream_manifest(url):
            await asyncio.to_thread(
                download_stream,
                url,
                destination,
                user_agent=self._settings.user_agent,
                referer=self._settings.referer,
            )
            return

        response = await self._client.get(
            url,
            headers={"User-Agent": self._settings.user_agent, "Referer": self._settings.referer},
            timeout=self._settings.download_timeout_seconds,
            follow_redirects=True,
        )
        if not response.is_success:
            raise VideoAcquisitionError(
                f"HTTP {response.status_code}: {response.reason_phrase}",
                url=url,
                retryable=True,
            )
        await asyncio.to_thread(destination.write_bytes, response.content)
        logger.debug("Downloaded %s", format_file_size(len(response.content)))

    def _needs_transcode(self, path: Path) -> bool:
        size = path.stat().st_size
        extension = path.suffix.lstrip(".").lower()
        return size > self._settings.max_size_bytes or extension not in self._settings.formats

    async def _transcode(self, source: Path, destination: Path, url: str) -> None:
        logger.info(
            "Compressing %s (%s, target %s, preset %s)",
            source.name,
            format_file_size(source.stat().st_size),
            self._settings.max_size,
            self._settings.compression,
        )
        try:
            await asyncio.to_thread(
                transcode_video,
                source,
                destination,
                preset=self._settings.preset,
                codec=self._settings.codec,
                audio_codec=self._settings.audio_codec,
            )
        except Exception as exc:
            raise VideoAcquisitionError(f"Compression failed: {exc}", url=url) from exc

    def cleanup_stale_files(self) -> int:
        """Delete temp files older than the configured age; returns how many were removed."""
        if not self.temp_dir.exists():
            return 0
        cutoff = time.time() - self._settings.stale_after_hours * 3600
        removed = 0
        for path in self.temp_dir.iterdir():
            try:
                if path.is_file() and path.stat().st_mtime < cutoff:
                    path.unlink()
                    removed += 1
                    logger.info("Cleaned up old temp file: %s", path.name)
            except OSError as exc:
                logger.warning("Error cleaning up %s: %s", path.name, exc)
        return removed
