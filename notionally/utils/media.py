"""Media processing utilities built around moviepy and yt-dlp.

Everything here blocks; callers run it through ``asyncio.to_thread``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yt_dlp  # type: ignore
from moviepy import VideoFileClip
from moviepy.video.io.ffmpeg_reader import ffmpeg_parse_infos

from ..config import CompressionPreset

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class VideoProbe:
    has_video: bool
    duration: float | None
    width: int | None
    height: int | None
    bitrate: int | None


def probe_video(path: Path) -> VideoProbe:
    """Read container metadata with ffmpeg; raises OSError for unreadable files."""
    infos: dict[str, Any] = ffmpeg_parse_infos(str(path))
    size = infos.get("video_size") or (None, None)
    probe = VideoProbe(
        has_video=bool(infos.get("video_found")),
        duration=infos.get("duration"),
        width=size[0],
        height=size[1],
        bitrate=infos.get("video_bitrate") or infos.get("bitrate"),
    )
    logger.debug("Probed %s: %s", path.name, probe)
    return probe


def fit_scale(width: int | None, height: int | None, preset: CompressionPreset) -> float:
    """Scale factor that keeps the frame inside the preset's bounding box, never upscaling."""
    if not width or not height:
        return 1.0
    return min(preset.max_width / width, preset.max_height / height, 1.0)


def transcode_video(
    source: Path,
    destination: Path,
    *,
    preset: CompressionPreset,
    codec: str = "libx264",
    audio_codec: str = "aac",
) -> None:
    """Re-encode ``source`` into ``destination`` using the compression preset."""
    logger.debug("Transcoding %s to %s with %s", source, destination, preset)
    with VideoFileClip(str(source)) as clip:
        scale = fit_scale(clip.w, clip.h, preset)
        output = clip.resized(scale) if scale < 1.0 else clip
        output.write_videofile(
            str(destination),
            codec=codec,
            audio_codec=audio_codec,
            bitrate=preset.video_bitrate,
            audio_bitrate=preset.audio_bitrate,
            temp_audiofile=str(destination.with_suffix(".temp-audio.m4a")),
            remove_temp=True,
            threads=2,
            logger=None,
        )


def is_stream_manifest(url: str) -> bool:
    return ".m3u8" in url.split("?", 1)[0].lower()


def download_stream(url: str, destination: Path, *, user_agent: str, referer: str) -> Path:
    """Fetch an HLS stream into a single mp4 file through yt-dlp."""
    ydl_opts = {
        "format": "best[ext=mp4]/best",
        "outtmpl": str(destination),
        "merge_output_format": "mp4",
        "quiet": True,
        "no_warnings": True,
        "noprogress": True,
        "ignoreerrors": False,
        "http_headers": {"User-Agent": user_agent, "Referer": referer},
    }
    with yt_dlp.YoutubeDL(ydl_opts) as ydl:
        ydl.download([url])
    if not destination.exists():
        raise OSError(f"Stream download produced no file for {url}")
    return destination
