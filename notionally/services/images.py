"""Persist post images through the storage sink."""

from __future__ import annotations

import logging
import re
import time
from pathlib import Path
from urllib.parse import urlparse

import httpx

from ..config import ImageSettings
from ..errors import ImageAcquisitionError
from ..models import AcquiredImage, ImageFailure, ImageOutcome, RawImage
from ..sinks import StorageSink

logger = logging.getLogger(__name__)

_DATA_URI_RE = re.compile(r"^data:(?P<mime>[\w/+.-]+)?;base64,", re.I)
_MIME_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
    "image/svg+xml": "svg",
}
_URL_EXTENSIONS = frozenset({"jpg", "jpeg", "png", "gif", "webp", "svg"})


def split_data_uri(payload: str) -> tuple[str | None, str]:
    """Return ``(mime, base64_body)`` for a data URI or a bare base64 string."""
    match = _DATA_URI_RE.match(payload)
    if not match:
        return None, payload.strip()
    return match.group("mime"), payload[match.end():].strip()


def guess_extension(mime: str | None, url: str | None = None) -> str:
    if mime:
        extension = _MIME_EXTENSIONS.get(mime.split(";", 1)[0].strip().lower())
        if extension:
            return extension
    if url:
        suffix = Path(urlparse(url).path).suffix.lstrip(".").lower()
        if suffix in _URL_EXTENSIONS:
            return "jpg" if suffix == "jpeg" else suffix
    return "jpg"


class ImageAcquirer:
    """Acquire one image at a time; failures come back as ``ImageFailure`` values."""

    def __init__(self, storage: StorageSink, client: httpx.AsyncClient, settings: ImageSettings) -> None:
        self._storage = storage
        self._client = client
        self._settings = settings

    async def acquire(self, image: RawImage, index: int) -> ImageOutcome:
        alt = (image.alt or "").strip() or f"Image {index + 1}"
        try:
            if not self._storage.is_configured():
                return AcquiredImage(index=index, url=image.url, alt=alt)
            return await self._store(image, index, alt)
        except Exception as exc:
            logger.error("Failed to process image %s: %s", index + 1, exc)
            return ImageFailure(index=index, url=image.url, alt=alt, error=str(exc))

    async def _store(self, image: RawImage, index: int, alt: str) -> AcquiredImage:
        if image.base64:
            mime, body = split_data_uri(image.base64)
            content: bytes | str = body
            extension = guess_extension(mime, image.url)
        else:
            content, mime = await self._download(image.url or "")
            extension = guess_extension(mime, image.url)

        filename = f"image_{int(time.time() * 1000)}_{index}.{extension}"
        stored = await self._storage.save(content, filename)
        logger.info("Stored image %s as %s", index + 1, stored.path)
        return AcquiredImage(index=index, url=image.url, alt=alt, filename=filename, stored=stored)

    async def _download(self, url: str) -> tuple[bytes, str | None]:
        response = await self._client.get(
            url,
            headers={"User-Agent": self._settings.user_agent},
            timeout=self._settings.download_timeout_seconds,
            follow_redirects=True,
        )
        if not response.is_success:
            raise ImageAcquisitionError(
                f"HTTP {response.status_code} fetching image",
                context={"url": url, "status": response.status_code},
            )
        return response.content, response.headers.get("content-type")
