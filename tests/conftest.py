"""Shared fixtures and test doubles."""

from __future__ import annotations

from pathlib import Path
from typing import Sequence

import pytest

from notionally.config import AppConfig
from notionally.errors import DocumentCreationError, MediaAttachmentError
from notionally.models import CreatedDocument, DocumentFields, ImageOutcome, StoredFile


class SleepRecorder:
    """Stand-in for ``asyncio.sleep`` that returns immediately."""

    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


class FakeDocuments:
    """Document sink that records calls instead of talking to Notion."""

    def __init__(self, *, create_error: Exception | None = None, attach_error: Exception | None = None) -> None:
        self.created: list[DocumentFields] = []
        self.attached: list[tuple[str, list[ImageOutcome], str | None]] = []
        self.create_error = create_error
        self.attach_error = attach_error

    async def create_document(self, fields: DocumentFields) -> CreatedDocument:
        if self.create_error is not None:
            raise self.create_error
        self.created.append(fields)
        return CreatedDocument(id="page-123", url="https://www.notion.so/page123")

    async def attach_images(self, document_id: str, images: Sequence[ImageOutcome], source_url: str | None) -> None:
        self.attached.append((document_id, list(images), source_url))
        if self.attach_error is not None:
            raise self.attach_error


class FakeStorage:
    def __init__(self) -> None:
        self.saved: list[tuple[bytes | str, str]] = []

    def is_configured(self) -> bool:
        return True

    async def save(self, content: bytes | str, filename: str) -> StoredFile:
        self.saved.append((content, filename))
        share = f"https://www.dropbox.com/s/abc/{filename}?dl=0"
        return StoredFile(path=f"/LinkedIn_Videos/2024-01-01/{filename}", shareable_url=share, streaming_url=share.replace("dl=0", "raw=1"))


@pytest.fixture
def sleep_recorder() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def config(tmp_path: Path) -> AppConfig:
    return AppConfig(
        _env_file=None,
        log_path=tmp_path / "logs" / "notionally.log",
        database_path=tmp_path / "data" / "notionally.db",
        notion={"api_key": "secret_abcdefghijklmnop", "data_source_id": "ds-1234"},
        video={"temp_dir": str(tmp_path / "temp")},
    )


@pytest.fixture
def creation_failure() -> DocumentCreationError:
    return DocumentCreationError("Notion API error: boom", status=500)


@pytest.fixture
def attachment_failure() -> MediaAttachmentError:
    return MediaAttachmentError("Failed to add blocks: boom", status=500)
