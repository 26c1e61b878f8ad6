from __future__ import annotations

import asyncio
import json
import logging
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

from mixdown.core.config import settings
from mixdown.core.errors import UnreadableTrackError


@dataclass(frozen=True)
class TrackInfo:
    path: str
    duration_s: float
    channels: int | None = None
    codec: str | None = None


class TrackProbe(Protocol):
    async def probe(self, path: str, *, track: str | None = None) -> TrackInfo:
        ...


class FfprobeTrackProbe:
    """Reads duration (and first audio stream codec/channels) with ffprobe's JSON writer."""

    def __init__(self, *, ffprobe_bin: str | None = None) -> None:
        self.ffprobe_bin = ffprobe_bin or settings.FFPROBE_BIN
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    def build_command(self, path: str) -> list[str]:
        return [
            self.ffprobe_bin,
            "-v", "error",
            "-select_streams", "a:0",
            "-show_entries", "format=duration:stream=codec_name,channels",
            "-of", "json",
            path,
        ]

    async def probe(self, path: str, *, track: str | None = None) -> TrackInfo:
        name = track or Path(path).name
        if not Path(path).is_file():
            raise UnreadableTrackError(name, "file not found")

        try:
            proc = await asyncio.create_subprocess_exec(
                *self.build_command(path),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise UnreadableTrackError(name, f"could not start {self.ffprobe_bin}: {e}") from e

        stdout, stderr = await proc.communicate()
        if proc.returncode != 0:
            diagnostic = (stderr or b"").decode("utf-8", errors="replace").strip()
            self.logger.warning("ffprobe failed for %s: %s", path, diagnostic)
            raise UnreadableTrackError(name, diagnostic)

        info = self._parse(path, stdout)
        if info is None:
            raise UnreadableTrackError(name, "no audio duration reported")
        self.logger.debug("Probed %s: %.3fs", path, info.duration_s)
        return info

    def _parse(self, path: str, stdout: bytes) -> TrackInfo | None:
        try:
            payload = json.loads(stdout or b"{}")
        except json.JSONDecodeError:
            return None
        if not isinstance(payload, dict):
            return None

        fmt = payload.get("format") or {}
        duration = self._to_optional_float(fmt.get("duration"))
        if duration is None or duration < 0:
            return None

        streams = payload.get("streams") or []
        stream: dict[str, Any] = streams[0] if streams and isinstance(streams[0], dict) else {}
        if not stream:
            return None

        channels = stream.get("channels")
        return TrackInfo(
            path=path,
            duration_s=duration,
            channels=int(channels) if isinstance(channels, int) else None,
            codec=stream.get("codec_name"),
        )

    def _to_optional_float(self, v: Any) -> float | None:
        try:
            f = float(v)
        except (TypeError, ValueError):
            return None
        if not math.isfinite(f):
            return None
        return f
