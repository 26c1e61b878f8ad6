from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from mixdown.core.config import settings
from mixdown.core.errors import EncodeError, InvalidPlanError
from mixdown.planning.graph import MixPlan
from mixdown.renderers.ffmpeg_graph import build_filter_complex, output_pad


@dataclass(frozen=True)
class OutputSpec:
    codec: str = "aac"
    bitrate: str = "128k"
    container: str = "adts"
    mime: str = "audio/aac"
    ext: str = ".aac"

    @classmethod
    def from_settings(cls) -> OutputSpec:
        return cls(
            codec=settings.OUTPUT_CODEC,
            bitrate=settings.OUTPUT_BITRATE,
            container=settings.OUTPUT_FORMAT,
            mime=settings.OUTPUT_MIME,
            ext=settings.OUTPUT_EXT,
        )


@dataclass(frozen=True)
class RenderRequest:
    """
    main_path is submitted as input 0 and clip_paths as inputs 1..N, in order.
    The plan's Source indices are positions in exactly that list.
    """
    main_path: str
    clip_paths: tuple[str, ...]
    plan: MixPlan
    output_path: str
    output_spec: OutputSpec = field(default_factory=OutputSpec)
    total_duration_s: float | None = None

    @property
    def input_paths(self) -> list[str]:
        return [self.main_path, *self.clip_paths]


@dataclass(frozen=True)
class RenderedArtifact:
    path: str
    mime: str
    duration_s: float | None
    elapsed_s: float


class MixRenderer(Protocol):
    async def render(self, request: RenderRequest) -> RenderedArtifact:
        ...

    async def trim(self, src_path: str, dst_path: str, duration_s: float, output_spec: OutputSpec) -> str:
        ...


class FfmpegMixRenderer:
    """
    Runs the ffmpeg CLI as the external render capability.

    - one process per call, never retried here
    - output is encoded to a `.part` sibling and moved into place only on success
    - cancelling the awaiting task kills the process and removes the partial output
    """
    STDERR_TAIL_CHARS = 2000

    def __init__(
        self,
        *,
        ffmpeg_bin: str | None = None,
        enable_timing_logs: bool = True,
    ) -> None:
        self.ffmpeg_bin = ffmpeg_bin or settings.FFMPEG_BIN
        self.enable_timing_logs = enable_timing_logs
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    # ---------- public API ----------

    def build_command(self, request: RenderRequest, out_path: str) -> list[str]:
        max_index = max(request.plan.source_indices, default=0)
        if max_index > len(request.clip_paths):
            raise InvalidPlanError(
                f"plan references input {max_index} but only {len(request.input_paths)} inputs were submitted"
            )

        cmd = [self.ffmpeg_bin, "-hide_banner", "-nostdin", "-y"]
        for path in request.input_paths:
            cmd += ["-i", path]
        cmd += [
            "-filter_complex", build_filter_complex(request.plan),
            "-map", output_pad(request.plan),
        ]
        cmd += self._encode_args(request.output_spec)
        if request.total_duration_s is not None:
            cmd += ["-t", f"{request.total_duration_s:.3f}"]
        cmd += ["-f", request.output_spec.container, out_path]
        return cmd

    def build_trim_command(self, src_path: str, out_path: str, duration_s: float, output_spec: OutputSpec) -> list[str]:
        cmd = [self.ffmpeg_bin, "-hide_banner", "-nostdin", "-y", "-i", src_path]
        cmd += ["-ss", "0", "-t", f"{duration_s:.3f}", "-map", "0:a"]
        cmd += self._encode_args(output_spec)
        cmd += ["-f", output_spec.container, out_path]
        return cmd

    async def render(self, request: RenderRequest) -> RenderedArtifact:
        start = time.perf_counter()
        await self._run_to_path(
            lambda tmp: self.build_command(request, tmp),
            request.output_path,
        )
        elapsed = time.perf_counter() - start
        if self.enable_timing_logs:
            self.logger.info("Rendered %s in %.3fs", request.output_path, elapsed)
        return RenderedArtifact(
            path=request.output_path,
            mime=request.output_spec.mime,
            duration_s=request.total_duration_s,
            elapsed_s=elapsed,
        )

    async def trim(self, src_path: str, dst_path: str, duration_s: float, output_spec: OutputSpec) -> str:
        await self._run_to_path(
            lambda tmp: self.build_trim_command(src_path, tmp, duration_s, output_spec),
            dst_path,
        )
        return dst_path

    # ---------- internals ----------

    def _encode_args(self, output_spec: OutputSpec) -> list[str]:
        return ["-c:a", output_spec.codec, "-b:a", output_spec.bitrate]

    async def _run_to_path(self, make_cmd, final_path: str) -> None:
        final = Path(final_path)
        final.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = final.with_name(final.name + ".part")

        cmd = make_cmd(str(tmp_path))
        self.logger.debug("ffmpeg command: %s", cmd)
        try:
            await self._run(cmd)
            os.replace(tmp_path, final)
        except BaseException:
            tmp_path.unlink(missing_ok=True)
            raise

    async def _run(self, cmd: list[str]) -> None:
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise EncodeError(f"could not start {cmd[0]}", str(e)) from e

        try:
            _, stderr = await proc.communicate()
        except asyncio.CancelledError:
            self.logger.warning("Render cancelled; killing ffmpeg pid %s", proc.pid)
            if proc.returncode is None:
                with contextlib.suppress(ProcessLookupError):
                    proc.kill()
                await proc.wait()
            raise

        if proc.returncode != 0:
            text = (stderr or b"").decode("utf-8", errors="replace")
            self.logger.error("ffmpeg exited with code %s: %s", proc.returncode, text)
            raise EncodeError(
                f"ffmpeg exited with code {proc.returncode}",
                text[-self.STDERR_TAIL_CHARS:].strip(),
            )
