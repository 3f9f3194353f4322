"""Filename and file-size helpers shared by the media acquirers."""

from __future__ import annotations

import re
from typing import Final

SIZE_UNITS: Final[dict[str, int]] = {
    "B": 1,
    "KB": 1024,
    "MB": 1024**2,
    "GB": 1024**3,
}
_SIZE_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(B|KB|MB|GB)\s*$", re.IGNORECASE)
_UNSAFE_FILENAME_RE = re.compile(r'[<>:"/\\|?*\x00-\x1f]')


def slugify(text: str | None, max_length: int = 50) -> str:
    """Return a lowercase, filesystem-safe slug for author names and titles."""
    if not text:
        return ""
    slug = re.sub(r"\s+", "_", str(text).strip().lower())
    slug = re.sub(r"[^a-z0-9_-]", "", slug)
    return slug[:max_length]


def sanitize_filename(filename: str | None) -> str:
    if not filename:
        return "unnamed"
    cleaned = _UNSAFE_FILENAME_RE.sub("", filename).lstrip(".")
    return cleaned[:255] or "unnamed"


def parse_file_size(value: str | int) -> int:
    """Parse sizes such as ``"50MB"`` or ``"1.5 GB"`` into bytes."""
    if isinstance(value, int):
        return value
    match = _SIZE_RE.match(value)
    if not match:
        raise ValueError(f"Invalid file size format: {value!r}")
    amount, unit = match.groups()
    return int(float(amount) * SIZE_UNITS[unit.upper()])


def format_file_size(size_bytes: int) -> str:
    if size_bytes <= 0:
        return "0 Bytes"
    labels = ("Bytes", "KB", "MB", "GB")
    exponent = 0
    while size_bytes >= 1024 ** (exponent + 1) and exponent < len(labels) - 1:
        exponent += 1
    return f"{round(size_bytes / 1024**exponent, 2):g} {labels[exponent]}"
