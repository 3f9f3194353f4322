"""Error taxonomy shared by the processing pipeline and the HTTP layer."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Literal

SinkErrorKind = Literal["authorization", "validation", "generic"]


class NotionallyError(Exception):
    """Base class for errors that carry an HTTP status and a stable code."""

    code = "APPLICATION_ERROR"
    status_code = 500

    def __init__(self, message: str, *, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}
        self.timestamp = datetime.now(timezone.utc).isoformat()

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": type(self).__name__,
            "message": self.message,
            "code": self.code,
            "context": self.context,
            "timestamp": self.timestamp,
        }


class ValidationError(NotionallyError):
    """The incoming post cannot be processed; raised before any side effect."""

    code = "VALIDATION_ERROR"
    status_code = 400

    def __init__(self, message: str, field: str, value: Any = None) -> None:
        super().__init__(message, context={"field": field, "value": value})
        self.field = field
        self.value = value


class ResolutionError(NotionallyError):
    """A single resolution strategy failed for one URL."""

    code = "URL_RESOLUTION_ERROR"

    def __init__(self, message: str, url: str) -> None:
        super().__init__(message, context={"url": url})
        self.url = url


class AcquisitionError(NotionallyError):
    code = "ACQUISITION_ERROR"


class VideoAcquisitionError(AcquisitionError):
    """Download, probe or transcode of one video failed."""

    code = "VIDEO_PROCESSING_ERROR"

    def __init__(self, message: str, *, url: str | None = None, retryable: bool = False) -> None:
        super().__init__(message, context={"url": url})
        self.url = url
        self.retryable = retryable


class ImageAcquisitionError(AcquisitionError):
    code = "IMAGE_PROCESSING_ERROR"


class SinkError(NotionallyError):
    """An external sink rejected or failed a call."""

    code = "SINK_ERROR"

    def __init__(
        self,
        message: str,
        *,
        kind: SinkErrorKind = "generic",
        status: int | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, context={"kind": kind, "status": status, **(context or {})})
        self.kind = kind
        self.status = status


class DocumentCreationError(SinkError):
    """The destination document could not be created; fatal to the request."""

    code = "DOCUMENT_CREATION_ERROR"
    status_code = 502


class MediaAttachmentError(SinkError):
    code = "MEDIA_ATTACHMENT_ERROR"


class StorageError(SinkError):
    code = "STORAGE_ERROR"
