"""Dropbox storage sink and the shared OAuth token it depends on."""

from __future__ import annotations

import asyncio
import base64
import binascii
import json
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable

import httpx

from ..config import DropboxSettings
from ..errors import StorageError
from ..models import StoredFile
from ..utils.files import sanitize_filename
from ..utils.secrets import secret_value

logger = logging.getLogger(__name__)


def streaming_url(share_url: str) -> str:
    """Rewrite a share link so it serves the raw file instead of the preview page."""
    if "raw=1" in share_url:
        return share_url
    if "dl=0" in share_url:
        return share_url.replace("dl=0", "raw=1")
    separator = "&" if "?" in share_url else "?"
    return f"{share_url}{separator}raw=1"


class DropboxAuth:
    """Holds the current access token and refreshes it behind a lock.

    One instance is shared by every request in the process; the background
    scheduler calls ``refresh`` on an interval and the storage sink calls it
    once more when an upload is rejected as unauthorized.
    """

    def __init__(self, settings: DropboxSettings, client: httpx.AsyncClient) -> None:
        self._settings = settings
        self._client = client
        self._token = secret_value(settings.access_token)
        self._lock = asyncio.Lock()
        self.refreshed_at: datetime | None = None

    @property
    def can_refresh(self) -> bool:
        return bool(
            self._settings.app_key
            and secret_value(self._settings.app_secret)
            and secret_value(self._settings.refresh_token)
        )

    def is_configured(self) -> bool:
        return bool(self._token) or self.can_refresh

    async def token(self) -> str:
        if self._token:
            return self._token
        return await self.refresh()

    async def refresh(self) -> str:
        if not self.can_refresh:
            if self._token:
                return self._token
            raise StorageError("Dropbox credentials are not configured", kind="authorization")

        async with self._lock:
            try:
                response = await self._client.post(
                    f"{self._settings.api_url}/oauth2/token",
                    data={
                        "grant_type": "refresh_token",
                        "refresh_token": secret_value(self._settings.refresh_token),
                        "client_id": self._settings.app_key,
                        "client_secret": secret_value(self._settings.app_secret),
                    },
                    timeout=self._settings.timeout_seconds,
                )
            except httpx.HTTPError as exc:
                raise StorageError(f"Dropbox token refresh failed: {exc}") from exc
            if not response.is_success:
                raise StorageError(
                    f"Dropbox token refresh failed: HTTP {response.status_code}",
                    kind="authorization",
                    status=response.status_code,
                )
            try:
                token = response.json()["access_token"]
            except (KeyError, TypeError, ValueError) as exc:
                raise StorageError("Dropbox token response did not include an access token", kind="authorization") from exc
            if not isinstance(token, str) or not token:
                raise StorageError("Dropbox token response did not include an access token", kind="authorization")
            self._token = token
            self.refreshed_at = datetime.now(timezone.utc)
        logger.info("Dropbox access token refreshed")
        return self._token


class DropboxStorage:
    """Uploads files into ``<folder>/<YYYY-MM-DD>/`` and returns shareable links."""

    def __init__(self, settings: DropboxSettings, auth: DropboxAuth, client: httpx.AsyncClient) -> None:
        self._settings = settings
        self._auth = auth
        self._client = client

    def is_configured(self) -> bool:
        return self._auth.is_configured()

    def remote_path(self, filename: str, *, today: datetime | None = None) -> str:
        day = (today or datetime.now(timezone.utc)).strftime("%Y-%m-%d")
        return f"{self._settings.folder}/{day}/{sanitize_filename(filename)}"

    async def save(self, content: bytes | str, filename: str) -> StoredFile:
        if isinstance(content, str):
            try:
                content = base64.b64decode(content)
            except (binascii.Error, ValueError) as exc:
                raise StorageError(f"Invalid base64 content for {filename}: {exc}") from exc

        path = self.remote_path(filename)
        logger.info("Uploading %s to Dropbox (%s bytes)", path, len(content))
        response = await self._with_token(lambda token: self._upload(token, path, content))
        if not response.is_success:
            raise StorageError(
                f"Dropbox upload failed: HTTP {response.status_code}",
                status=response.status_code,
                context={"path": path},
            )
        stored_path = response.json().get("path_display") or path
        share_url = await self._shared_link(stored_path)
        return StoredFile(path=stored_path, shareable_url=share_url, streaming_url=streaming_url(share_url))

    async def _with_token(self, send: Callable[[str], Awaitable[httpx.Response]]) -> httpx.Response:
        """Send once; on 401 refresh the token and send exactly one more time."""
        try:
            response = await send(await self._auth.token())
            if response.status_code == 401:
                logger.warning("Dropbox rejected the access token; refreshing and retrying once")
                response = await send(await self._auth.refresh())
        except httpx.HTTPError as exc:
            raise StorageError(f"Dropbox request failed: {exc}") from exc
        return response

    async def _upload(self, token: str, path: str, content: bytes) -> httpx.Response:
        arg = {"path": path, "mode": "add", "autorename": True, "mute": True}
        return await self._client.post(
            f"{self._settings.content_url}/2/files/upload",
            content=content,
            headers={
                "Authorization": f"Bearer {token}",
                "Content-Type": "application/octet-stream",
                "Dropbox-API-Arg": json.dumps(arg),
            },
            timeout=self._settings.timeout_seconds,
        )

    async def _shared_link(self, path: str) -> str:
        async def create(token: str) -> httpx.Response:
            return await self._client.post(
                f"{self._settings.api_url}/2/sharing/create_shared_link_with_settings",
                json={"path": path, "settings": {"requested_visibility": "public"}},
                headers={"Authorization": f"Bearer {token}"},
                timeout=self._settings.timeout_seconds,
            )

        response = await self._with_token(create)
        if response.is_success:
            return response.json()["url"]
        if response.status_code == 409:
            existing = self._existing_link(response)
            if existing:
                return existing
            return await self._list_shared_link(path)
        raise StorageError(
            f"Could not create shared link: HTTP {response.status_code}",
            status=response.status_code,
            context={"path": path},
        )

    @staticmethod
    def _existing_link(response: httpx.Response) -> str | None:
        try:
            error = response.json().get("error", {})
        except ValueError:
            return None
        metadata = error.get("shared_link_already_exists", {}).get("metadata") or {}
        return metadata.get("url")

    async def _list_shared_link(self, path: str) -> str:
        async def list_links(token: str) -> httpx.Response:
            return await self._client.post(
                f"{self._settings.api_url}/2/sharing/list_shared_links",
                json={"path": path, "direct_only": True},
                headers={"Authorization": f"Bearer {token}"},
                timeout=self._settings.timeout_seconds,
            )

        response = await self._with_token(list_links)
        links = response.json().get("links", []) if response.is_success else []
        if not links:
            raise StorageError("Shared link exists but could not be listed", context={"path": path})
        return links[0]["url"]
