"""Contracts for the external systems a processed post is written to."""

from __future__ import annotations

from typing import Protocol, Sequence, runtime_checkable

from ..errors import StorageError
from ..models import CreatedDocument, DocumentFields, ImageOutcome, StoredFile


@runtime_checkable
class DocumentSink(Protocol):
    async def create_document(self, fields: DocumentFields) -> CreatedDocument:
        """Create the destination document; raises ``DocumentCreationError``."""
        ...

    async def attach_images(
        self,
        document_id: str,
        images: Sequence[ImageOutcome],
        source_url: str | None,
    ) -> None:
        """Append image blocks to an existing document; raises ``MediaAttachmentError``."""
        ...


@runtime_checkable
class StorageSink(Protocol):
    def is_configured(self) -> bool:
        ...

    async def save(self, content: bytes | str, filename: str) -> StoredFile:
        """Persist raw bytes (or a base64 string) and return where they landed."""
        ...


class UnconfiguredStorage:
    """Storage sink used when no credentials are present; never persists anything."""

    def is_configured(self) -> bool:
        return False

    async def save(self, content: bytes | str, filename: str) -> StoredFile:
        raise StorageError(f"Storage is not configured; cannot save {filename}")


__all__ = ["DocumentSink", "StorageSink", "UnconfiguredStorage"]
