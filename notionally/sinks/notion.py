"""Notion destination sink backed by the public REST API."""

from __future__ import annotations

import logging
from typing import Any, Sequence

import httpx

from ..config import NotionSettings
from ..errors import DocumentCreationError, MediaAttachmentError, SinkError, SinkErrorKind
from ..models import CreatedDocument, DocumentFields, ImageOutcome
from ..utils.secrets import secret_value
from . import notion_blocks

logger = logging.getLogger(__name__)


def _error_details(response: httpx.Response) -> tuple[str | None, str]:
    try:
        payload = response.json()
    except ValueError:
        return None, response.text[:500] or response.reason_phrase
    if not isinstance(payload, dict):
        return None, str(payload)[:500]
    return payload.get("code"), payload.get("message") or response.reason_phrase


def classify_failure(status: int, code: str | None) -> SinkErrorKind:
    if status in (401, 403) or code in ("unauthorized", "restricted_resource"):
        return "authorization"
    if status == 400 or code == "validation_error":
        return "validation"
    return "generic"


def describe_failure(kind: SinkErrorKind, message: str) -> str:
    if kind == "authorization":
        return "Notion API authorization failed. Check your API key and database permissions."
    if kind == "validation":
        return f"Notion validation error: {message}. Check your database schema and property names."
    return f"Notion API error: {message}"


class NotionClient:
    """Creates one page per post and appends image blocks afterwards."""

    def __init__(self, settings: NotionSettings, client: httpx.AsyncClient) -> None:
        self._settings = settings
        self._client = client

    def is_configured(self) -> bool:
        return bool(secret_value(self._settings.api_key) and self._parent())

    def _parent(self) -> dict[str, str] | None:
        if self._settings.data_source_id:
            return {"type": "data_source_id", "data_source_id": self._settings.data_source_id}
        if self._settings.database_id:
            return {"type": "database_id", "database_id": self._settings.database_id}
        return None

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {secret_value(self._settings.api_key) or ''}",
            "Notion-Version": self._settings.api_version,
            "Content-Type": "application/json",
        }

    async def _send(self, method: str, path: str, payload: dict[str, Any]) -> httpx.Response:
        return await self._client.request(
            method,
            f"{self._settings.base_url.rstrip('/')}{path}",
            json=payload,
            headers=self._headers(),
            timeout=self._settings.timeout_seconds,
        )

    async def create_document(self, fields: DocumentFields) -> CreatedDocument:
        parent = self._parent()
        if not secret_value(self._settings.api_key) or parent is None:
            raise DocumentCreationError("Notion is not configured", kind="authorization")

        blocks = notion_blocks.build_page_blocks(fields)
        batches = notion_blocks.batched(blocks)
        first = batches[0] if batches else []
        logger.info("Creating Notion page: %r (%s blocks)", fields.title[:50], len(blocks))

        try:
            response = await self._send(
                "POST",
                "/pages",
                {"parent": parent, "properties": notion_blocks.build_properties(fields), "children": first},
            )
        except httpx.HTTPError as exc:
            raise DocumentCreationError(f"Notion API error: {exc}") from exc
        if not response.is_success:
            code, message = _error_details(response)
            kind = classify_failure(response.status_code, code)
            raise DocumentCreationError(
                describe_failure(kind, message),
                kind=kind,
                status=response.status_code,
                context={"notion_code": code},
            )

        page_id = response.json()["id"]
        document = CreatedDocument(id=page_id, url=notion_blocks.page_url(page_id))
        logger.info("Notion page created: %s", document.url)

        for batch in batches[1:]:
            try:
                await self._append(page_id, batch)
            except SinkError as exc:
                logger.warning("Could not append overflow blocks to %s: %s", page_id, exc)
        return document

    async def attach_images(
        self,
        document_id: str,
        images: Sequence[ImageOutcome],
        source_url: str | None = None,
    ) -> None:
        blocks = notion_blocks.image_blocks(images)
        if not blocks:
            return
        if source_url and any(image.failed for image in images):
            blocks.append(
                {
                    "object": "block",
                    "type": "paragraph",
                    "paragraph": {
                        "rich_text": [
                            notion_blocks.text("Missing images can be viewed on the original post: "),
                            notion_blocks.text(source_url, link=source_url),
                        ]
                    },
                }
            )
        logger.info("Adding %s image(s) to Notion page %s", len(images), document_id)
        for batch in notion_blocks.batched(blocks):
            await self._append(document_id, batch)

    async def _append(self, block_id: str, children: list[dict[str, Any]]) -> None:
        try:
            response = await self._send("PATCH", f"/blocks/{block_id}/children", {"children": children})
        except httpx.HTTPError as exc:
            raise MediaAttachmentError(f"Failed to add blocks: {exc}") from exc
        if not response.is_success:
            code, message = _error_details(response)
            kind = classify_failure(response.status_code, code)
            raise MediaAttachmentError(
                f"Failed to add blocks: {message}",
                kind=kind,
                status=response.status_code,
                context={"notion_code": code},
            )
