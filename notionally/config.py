"""Configuration loader for the Notionally local server (Pydantic edition)."""

from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Final, Iterable, Literal, Mapping, Sequence

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, SecretStr, ValidationError, field_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

from .utils.files import parse_file_size
from .utils.secrets import mask_secret, secret_value

LOGGER = logging.getLogger(__name__)

CONFIG_FILE_ENV: Final = "NOTIONALLY_CONFIG_FILE"
DEFAULT_CONFIG_FILE: Final = Path("config.json")
DEFAULT_USER_AGENT: Final = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0 Safari/537.36"
)

# Flat variable names understood by earlier releases, mapped onto nested keys.
LEGACY_ENV_OVERRIDES: Final[tuple[tuple[str, tuple[str, str]], ...]] = (
    ("NOTION_API_KEY", ("notion", "api_key")),
    ("NOTION_DATABASE_ID", ("notion", "database_id")),
    ("NOTION_DATA_SOURCE_ID", ("notion", "data_source_id")),
    ("DROPBOX_APP_KEY", ("dropbox", "app_key")),
    ("DROPBOX_APP_SECRET", ("dropbox", "app_secret")),
    ("DROPBOX_REFRESH_TOKEN", ("dropbox", "refresh_token")),
    ("DROPBOX_ACCESS_TOKEN", ("dropbox", "access_token")),
    ("PORT", ("server", "port")),
    ("HOST", ("server", "host")),
)

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


class ConfigError(RuntimeError):
    """Raised when configuration cannot be loaded safely."""


@dataclass(frozen=True, slots=True)
class CompressionPreset:
    """Bitrates and bounding box applied when a video must be transcoded."""

    video_bitrate: str
    audio_bitrate: str
    max_width: int
    max_height: int


COMPRESSION_PRESETS: Final[dict[str, CompressionPreset]] = {
    "high": CompressionPreset("2000k", "128k", 1280, 720),
    "medium": CompressionPreset("1000k", "96k", 854, 480),
    "low": CompressionPreset("500k", "64k", 640, 360),
}


def _expand(value: Path) -> Path:
    expanded = value.expanduser()
    return expanded if expanded.is_absolute() else (Path.cwd() / expanded).resolve()


class _Section(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")


class ServerSettings(_Section):
    host: str = "localhost"
    port: int = Field(8765, ge=1000, le=65535)


class NotionSettings(_Section):
    api_key: SecretStr | None = None
    database_id: str | None = None
    data_source_id: str | None = None
    api_version: str = "2025-09-03"
    base_url: str = "https://api.notion.com/v1"
    timeout_seconds: float = Field(30.0, gt=0)


class DropboxSettings(_Section):
    app_key: str | None = None
    app_secret: SecretStr | None = None
    refresh_token: SecretStr | None = None
    access_token: SecretStr | None = None
    folder: str = "/LinkedIn_Videos"
    token_refresh_hours: float = Field(3.0, gt=0)
    timeout_seconds: float = Field(120.0, gt=0)
    api_url: str = "https://api.dropboxapi.com"
    content_url: str = "https://content.dropboxapi.com"

    @field_validator("folder")
    @classmethod
    def _normalise_folder(cls, value: str) -> str:
        stripped = value.strip().rstrip("/")
        if not stripped:
            return ""
        return stripped if stripped.startswith("/") else f"/{stripped}"


class VideoSettings(_Section):
    max_size: str = "50MB"
    formats: tuple[str, ...] = ("mp4", "mov", "webm")
    output_format: str = "mp4"
    codec: str = "libx264"
    audio_codec: str = "aac"
    compression: Literal["high", "medium", "low"] = "medium"
    user_agent: str = DEFAULT_USER_AGENT
    referer: str = "https://www.linkedin.com/"
    download_timeout_seconds: float = Field(120.0, gt=0)
    concurrency: int = Field(2, ge=1)
    temp_dir: Path = Path("temp")
    stale_after_hours: float = Field(24.0, gt=0)

    @field_validator("max_size")
    @classmethod
    def _check_size(cls, value: str) -> str:
        parse_file_size(value)
        return value

    @field_validator("formats", mode="before")
    @classmethod
    def _split_formats(cls, value: str | Sequence[str]) -> tuple[str, ...]:
        if isinstance(value, str):
            value = value.split(",")
        return tuple(part.strip().lstrip(".").lower() for part in value if part.strip())

    @field_validator("temp_dir", mode="after")
    @classmethod
    def _expand_temp_dir(cls, value: Path) -> Path:
        return _expand(value)

    @property
    def max_size_bytes(self) -> int:
        return parse_file_size(self.max_size)

    @property
    def preset(self) -> CompressionPreset:
        return COMPRESSION_PRESETS[self.compression]


class ImageSettings(_Section):
    concurrency: int = Field(5, ge=1)
    download_timeout_seconds: float = Field(30.0, gt=0)
    user_agent: str = DEFAULT_USER_AGENT


class ResolverSettings(_Section):
    unshorten_endpoint: str = "https://unshorten.it/api/v1/unshorten"
    timeout_seconds: float = Field(10.0, gt=0)
    user_agent: str = "Mozilla/5.0 (compatible; Notionally/1.0)"
    browser_user_agent: str = DEFAULT_USER_AGENT
    concurrency: int = Field(4, ge=1)


class RetrySettings(_Section):
    attempts: int = Field(3, ge=1)
    base_delay_seconds: float = Field(2.0, ge=0)
    max_delay_seconds: float = Field(60.0, ge=0)


class AppConfig(BaseSettings):
    """Strongly typed runtime configuration layered from file and environment."""

    model_config = SettingsConfigDict(
        env_prefix="NOTIONALLY_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
        validate_default=True,
    )

    environment: Literal["development", "staging", "production"] = "development"
    log_path: Path = Path("logs/notionally.log")
    database_path: Path = Path("data/notionally.db")

    server: ServerSettings = Field(default_factory=ServerSettings)
    notion: NotionSettings = Field(default_factory=NotionSettings)
    dropbox: DropboxSettings = Field(default_factory=DropboxSettings)
    video: VideoSettings = Field(default_factory=VideoSettings)
    images: ImageSettings = Field(default_factory=ImageSettings)
    resolver: ResolverSettings = Field(default_factory=ResolverSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # Init kwargs carry the base file; prefixed environment wins over it.
        return env_settings, dotenv_settings, init_settings, file_secret_settings

    @field_validator("log_path", "database_path", mode="after")
    @classmethod
    def _expand_path(cls, value: Path) -> Path:
        return _expand(value)

    def get(self, key_path: str, default: Any = None) -> Any:
        """Look up a value by dotted path, e.g. ``get("video.max_size")``."""
        node: Any = self
        for raw_part in key_path.split("."):
            part = _snake(raw_part)
            if isinstance(node, BaseModel):
                if part not in type(node).model_fields:
                    return default
                node = getattr(node, part)
            elif isinstance(node, Mapping):
                if part not in node:
                    return default
                node = node[part]
            else:
                return default
        return node

    def ensure_runtime_directories(self) -> None:
        """Create directories required for runtime operation."""
        _ensure_directories((self.log_path.parent, self.database_path.parent, self.video.temp_dir))

    @property
    def has_notion_credentials(self) -> bool:
        return bool(secret_value(self.notion.api_key) and (self.notion.database_id or self.notion.data_source_id))

    @property
    def has_dropbox_credentials(self) -> bool:
        refreshable = self.dropbox.app_key and secret_value(self.dropbox.app_secret) and secret_value(self.dropbox.refresh_token)
        return bool(refreshable or secret_value(self.dropbox.access_token))

    def describe(self) -> dict[str, Any]:
        """Summarise the loaded configuration with secrets masked."""
        if secret_value(self.dropbox.refresh_token):
            dropbox_auth = "refresh token"
        elif secret_value(self.dropbox.access_token):
            dropbox_auth = "access token (will expire)"
        else:
            dropbox_auth = "not configured"
        return {
            "environment": self.environment,
            "server": f"{self.server.host}:{self.server.port}",
            "notion_api_key": mask_secret(self.notion.api_key),
            "notion_database": mask_secret(self.notion.database_id),
            "notion_data_source": mask_secret(self.notion.data_source_id),
            "dropbox_auth": dropbox_auth,
            "dropbox_folder": self.dropbox.folder,
            "video_max_size": self.video.max_size,
            "video_compression": self.video.compression,
        }


def _snake(name: str) -> str:
    return _CAMEL_BOUNDARY.sub("_", name).lower()


def _snake_keys(data: Any) -> Any:
    if isinstance(data, Mapping):
        return {_snake(str(key)): _snake_keys(value) for key, value in data.items()}
    return data


def _ensure_directories(paths: Iterable[Path]) -> None:
    for directory in paths:
        directory.mkdir(parents=True, exist_ok=True)


def _read_base_file(path: Path) -> dict[str, Any]:
    if not path.exists():
        LOGGER.debug("No base configuration file at %s; using defaults.", path)
        return {}
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Failed to parse {path}: {exc}") from exc
    if not isinstance(raw, dict):
        raise ConfigError(f"Configuration file {path} must contain a JSON object")
    return _snake_keys(raw)


def _apply_legacy_overrides(base: dict[str, Any], environ: Mapping[str, str]) -> dict[str, Any]:
    for env_name, (section, key) in LEGACY_ENV_OVERRIDES:
        value = environ.get(env_name)
        if value is None or not value.strip():
            continue
        base.setdefault(section, {})[key] = value.strip()
    return base


def load_config(config_path: Path | None = None, env_path: Path | None = None) -> AppConfig:
    """Load configuration from the base JSON file, .env and environment with validation."""
    load_kwargs: dict[str, Any] = {}
    if env_path is not None:
        load_dotenv(env_path, override=False)
        load_kwargs["_env_file"] = str(env_path)
    else:
        load_dotenv(override=False)

    base_path = config_path or Path(os.getenv(CONFIG_FILE_ENV, str(DEFAULT_CONFIG_FILE)))
    base = _apply_legacy_overrides(_read_base_file(base_path), os.environ)
    try:
        config = AppConfig(**base, **load_kwargs)
    except ValidationError as exc:
        raise ConfigError(f"Invalid configuration: {exc}") from exc

    config.ensure_runtime_directories()

    LOGGER.info(
        "AppConfig loaded",
        extra={"event": "config.loaded", "extra_fields": config.describe()},
    )
    return config
