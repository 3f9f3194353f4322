"""Payload models for scraped posts and the tagged results produced while processing them."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, ClassVar

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator

# --------------------------------------------------------------------------- #
# Inbound payload
# --------------------------------------------------------------------------- #


class RawVideo(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    url: str = Field(validation_alias=AliasChoices("url", "src"), max_length=4000)
    poster: str | None = Field(default=None, validation_alias=AliasChoices("poster", "thumbnail"))


class RawImage(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    url: str | None = Field(default=None, max_length=4000)
    alt: str | None = Field(default=None, max_length=500)
    base64: str | None = Field(default=None, validation_alias=AliasChoices("base64", "data"))

    @model_validator(mode="after")
    def _require_source(self) -> "RawImage":
        if not self.url and not self.base64:
            raise ValueError("image requires either a url or inline base64 data")
        return self


class RawMedia(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    videos: tuple[RawVideo, ...] = Field(default_factory=tuple, max_length=10)
    images: tuple[RawImage, ...] = Field(default_factory=tuple, max_length=10)


class RawPost(BaseModel):
    """A post as produced by the browser-side scraper."""

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    author: str = Field(default="Unknown author", max_length=200)
    author_profile_url: str | None = Field(
        default=None,
        validation_alias=AliasChoices("authorProfileUrl", "author_profile_url"),
        max_length=500,
    )
    url: str | None = Field(default=None, max_length=2000)
    text: str = ""
    timestamp: datetime | None = None
    urls: tuple[str, ...] = Field(default_factory=tuple, max_length=20)
    media: RawMedia = Field(default_factory=RawMedia)
    post_type: str | None = Field(default=None, validation_alias=AliasChoices("type", "post_type"))
    script_version: str | None = Field(
        default=None,
        validation_alias=AliasChoices("scriptVersion", "script_version"),
    )

    @model_validator(mode="before")
    @classmethod
    def _lift_top_level_media(cls, data: Any) -> Any:
        # Older userscripts send videos/images beside the text instead of under "media".
        if isinstance(data, dict) and ("videos" in data or "images" in data):
            data = dict(data)
            media = dict(data.get("media") or {})
            for key in ("videos", "images"):
                if key in data:
                    media.setdefault(key, data.pop(key))
            data["media"] = media
        return data

    @property
    def videos(self) -> tuple[RawVideo, ...]:
        return self.media.videos

    @property
    def images(self) -> tuple[RawImage, ...]:
        return self.media.images


# --------------------------------------------------------------------------- #
# URL resolution
# --------------------------------------------------------------------------- #


class ResolutionMethod(str, Enum):
    UNSHORTEN_SERVICE = "unshorten.it"
    HEAD_REDIRECT = "head-redirect"
    HTTP_REDIRECT = "http-redirect"
    HTML_SCAN = "html-scan"
    UNRESOLVED = "unresolved"


@dataclass(frozen=True, slots=True)
class ResolvedUrl:
    """Outcome of resolving one link; ``resolved`` falls back to ``original``."""

    original: str
    resolved: str
    was_shortened: bool
    method: ResolutionMethod | None = None
    error: str | None = None
    note: str | None = None

    @property
    def changed(self) -> bool:
        return self.resolved != self.original

    def to_dict(self) -> dict[str, Any]:
        return {
            "original": self.original,
            "resolved": self.resolved,
            "wasShortened": self.was_shortened,
            "method": self.method.value if self.method else None,
            "error": self.error,
            "note": self.note,
        }


# --------------------------------------------------------------------------- #
# Media acquisition
# --------------------------------------------------------------------------- #


@dataclass(frozen=True, slots=True)
class StoredFile:
    """Where the storage sink put a file and how to link to it."""

    path: str
    shareable_url: str
    streaming_url: str


@dataclass(frozen=True, slots=True)
class DownloadedVideo:
    """A video sitting in a request-owned temp file, ready for the storage sink."""

    index: int
    source_url: str
    local_path: Path
    filename: str
    size_bytes: int
    duration: float | None
    width: int | None
    height: int | None
    format: str

    @property
    def resolution(self) -> str | None:
        if self.width and self.height:
            return f"{self.width}x{self.height}"
        return None


@dataclass(frozen=True, slots=True)
class AcquiredVideo:
    failed: ClassVar[bool] = False

    index: int
    source_url: str
    filename: str
    size_bytes: int
    duration: float | None
    resolution: str | None
    format: str
    stored: StoredFile | None = None


@dataclass(frozen=True, slots=True)
class VideoFailure:
    failed: ClassVar[bool] = True

    index: int
    source_url: str
    error: str


@dataclass(frozen=True, slots=True)
class AcquiredImage:
    failed: ClassVar[bool] = False

    index: int
    url: str | None
    alt: str
    filename: str | None = None
    stored: StoredFile | None = None


@dataclass(frozen=True, slots=True)
class ImageFailure:
    failed: ClassVar[bool] = True

    index: int
    url: str | None
    alt: str
    error: str


VideoOutcome = AcquiredVideo | VideoFailure
ImageOutcome = AcquiredImage | ImageFailure


# --------------------------------------------------------------------------- #
# Destination document
# --------------------------------------------------------------------------- #


@dataclass(frozen=True, slots=True)
class DocumentFields:
    """Everything the destination sink needs to create a page; images excluded."""

    title: str
    text: str
    author: str
    author_profile_url: str | None
    source_url: str | None
    timestamp: datetime | None
    urls: tuple[ResolvedUrl, ...]
    videos: tuple[VideoOutcome, ...]
    post_type: str | None = None
    script_version: str | None = None
    debug: dict[str, Any] | None = None


@dataclass(frozen=True, slots=True)
class CreatedDocument:
    id: str
    url: str


@dataclass(frozen=True, slots=True)
class ProcessingCounts:
    videos_processed: int = 0
    images_processed: int = 0
    urls_resolved: int = 0


@dataclass(frozen=True, slots=True)
class ProcessingResult:
    """The only externally observable output of one processing invocation."""

    success: bool
    document_id: str | None
    document_url: str | None
    counts: ProcessingCounts = field(default_factory=ProcessingCounts)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "documentId": self.document_id,
            "documentUrl": self.document_url,
            "notionUrl": self.document_url,
            "stats": {
                "videosProcessed": self.counts.videos_processed,
                "imagesProcessed": self.counts.images_processed,
                "urlsResolved": self.counts.urls_resolved,
            },
        }


# --------------------------------------------------------------------------- #
# Per-invocation debug log
# --------------------------------------------------------------------------- #

_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARN": logging.WARNING,
    "ERROR": logging.ERROR,
}


@dataclass(frozen=True, slots=True)
class DebugEntry:
    timestamp: str
    level: str
    message: str
    data: Any = None

    def to_dict(self) -> dict[str, Any]:
        return {"timestamp": self.timestamp, "level": self.level, "message": self.message, "data": self.data}


class DebugLog:
    """Append-only log scoped to one invocation, mirrored to the module logger."""

    def __init__(self, logger: logging.Logger) -> None:
        self._logger = logger
        self._entries: list[DebugEntry] = []

    def log(self, level: str, message: str, data: Any = None) -> None:
        entry = DebugEntry(
            timestamp=datetime.now(timezone.utc).isoformat(),
            level=level,
            message=message,
            data=data,
        )
        self._entries.append(entry)
        if data is None:
            self._logger.log(_LEVELS.get(level, logging.INFO), message)
        else:
            self._logger.log(_LEVELS.get(level, logging.INFO), "%s | %s", message, data)

    def debug(self, message: str, data: Any = None) -> None:
        self.log("DEBUG", message, data)

    def info(self, message: str, data: Any = None) -> None:
        self.log("INFO", message, data)

    def warning(self, message: str, data: Any = None) -> None:
        self.log("WARN", message, data)

    def error(self, message: str, data: Any = None) -> None:
        self.log("ERROR", message, data)

    @property
    def entries(self) -> tuple[DebugEntry, ...]:
        return tuple(self._entries)

    def snapshot(self) -> list[dict[str, Any]]:
        return [entry.to_dict() for entry in self._entries]

    def __len__(self) -> int:
        return len(self._entries)
