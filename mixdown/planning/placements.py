from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass
from typing import Any, Literal, Protocol

import numpy as np

from mixdown.core.config import settings
from mixdown.core.errors import MetadataFormatError

logger = logging.getLogger(__name__)

PlacementMode = Literal["explicit", "randomized"]
PLACEMENT_MODES: tuple[str, ...] = ("explicit", "randomized")

# Shortest span a clip may resolve to; also the tolerance on `start + span <= main`.
MIN_SPAN_S = 0.001


@dataclass(frozen=True)
class ClipPlacement:
    """
    Canonical placement of one clip track inside the main track's timeline.

    source_index: 0-based position among the clip tracks of the request
    start_offset_s: where the clip starts in the main timeline
    span_s: audible length of the clip once trimmed
    gain: linear volume in (0, 1]
    fade_out_s: fade applied at the tail of the span (0 = none)
    """
    source_index: int
    start_offset_s: float
    span_s: float
    gain: float = 1.0
    fade_out_s: float = 0.0

    @property
    def end_s(self) -> float:
        return self.start_offset_s + self.span_s

    def to_dict(self) -> dict[str, Any]:
        return {
            "source_index": self.source_index,
            "start_offset_s": self.start_offset_s,
            "span_s": self.span_s,
            "gain": self.gain,
            "fade_out_s": self.fade_out_s,
        }


class OffsetSampler(Protocol):
    def uniform(self, low: float, high: float) -> float:
        ...


@dataclass(frozen=True)
class PlacementPolicy:
    """
    explicit:   timestamp/duration/volume from metadata; a missing timestamp means 0,
                a missing duration means "until the end of the main track", missing volume means 1.
    randomized: missing timestamps are drawn uniformly from [0, main - span), missing
                durations use the fixed stinger span and missing volumes the stinger gain.
    Explicit metadata fields always win over policy defaults.
    """
    mode: PlacementMode = "explicit"
    stinger_span_s: float = 4.0
    stinger_gain: float = 0.4
    default_fade_out_s: float = 0.0
    seed: int | None = None

    @classmethod
    def from_settings(cls, *, mode: str | None = None, seed: int | None = None) -> PlacementPolicy:
        resolved = (mode or settings.DEFAULT_PLACEMENT_MODE).strip().lower()
        if resolved not in PLACEMENT_MODES:
            raise ValueError(f"placement_mode must be one of {list(PLACEMENT_MODES)}, got '{mode}'")
        return cls(
            mode=resolved,  # type: ignore[arg-type]
            stinger_span_s=settings.STINGER_SPAN_S,
            stinger_gain=settings.STINGER_GAIN,
            default_fade_out_s=settings.DEFAULT_FADE_OUT_S,
            seed=seed,
        )

    @property
    def randomized(self) -> bool:
        return self.mode == "randomized"


def parse_clip_metadata(raw: str | bytes | list | None) -> list[dict[str, Any]]:
    """
    Parse the raw clip metadata payload (JSON text, index-aligned with the clip tracks).

    Absent or blank input means "no metadata". `null` entries become {}.
    Anything that is not a JSON array of objects raises MetadataFormatError.
    """
    if raw is None:
        return []

    if isinstance(raw, (str, bytes)):
        if not raw.strip():
            return []
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise MetadataFormatError(f"clip_metadata must be valid JSON: {e}") from e
    else:
        data = raw

    if not isinstance(data, list):
        raise MetadataFormatError("clip_metadata must be a JSON array")

    out: list[dict[str, Any]] = []
    for i, item in enumerate(data):
        if item is None:
            out.append({})
            continue
        if not isinstance(item, dict):
            raise MetadataFormatError(f"clip_metadata[{i}] must be an object")
        out.append(item)
    return out


def resolve_placements(
    raw_metadata: list[dict[str, Any]] | None,
    clip_count: int,
    main_duration_s: float,
    policy: PlacementPolicy | None = None,
    *,
    rng: OffsetSampler | None = None,
) -> list[ClipPlacement]:
    """
    Produce one ClipPlacement per clip track, applying policy defaults and clamps so that
    0 <= start, 0 < span and start + span <= main (within MIN_SPAN_S) for any input.
    """
    policy = policy or PlacementPolicy()
    entries = list(raw_metadata or [])
    if len(entries) > clip_count:
        logger.warning(
            "Ignoring %d clip metadata entries beyond clip count %d",
            len(entries) - clip_count,
            clip_count,
        )

    main = _to_optional_float(main_duration_s)
    main = max(0.0, main) if main is not None else 0.0

    if policy.randomized and rng is None:
        rng = np.random.default_rng(policy.seed)

    placements: list[ClipPlacement] = []
    for i in range(max(0, clip_count)):
        meta = entries[i] if i < len(entries) else {}
        placement = _resolve_one(i, meta or {}, main, policy, rng)
        logger.debug("Resolved clip %d placement: %s", i, placement)
        placements.append(placement)
    return placements


def _resolve_one(
    index: int,
    meta: dict[str, Any],
    main: float,
    policy: PlacementPolicy,
    rng: OffsetSampler | None,
) -> ClipPlacement:
    timestamp = _to_optional_float(meta.get("timestamp"))
    duration = _to_positive_float(meta.get("duration"))
    volume = _to_positive_float(meta.get("volume"))
    fade = _to_optional_float(_first_present(meta, "fade_out", "fadeOut"))

    if duration is None and policy.randomized:
        duration = policy.stinger_span_s

    if timestamp is None:
        timestamp = _draw_offset(rng, main, duration) if policy.randomized else 0.0

    if volume is None:
        volume = policy.stinger_gain if policy.randomized else 1.0
    gain = min(volume, 1.0)

    start = min(max(timestamp, 0.0), main)
    remaining = main - start
    span = remaining if duration is None else min(duration, remaining)
    span = max(span, MIN_SPAN_S)
    if start + span > main:
        # offsets at (or past) the end keep a near-zero span at the very end
        start = max(0.0, main - span)

    if fade is None:
        fade = policy.default_fade_out_s
    fade = min(max(fade, 0.0), span)

    return ClipPlacement(
        source_index=index,
        start_offset_s=start,
        span_s=span,
        gain=gain,
        fade_out_s=fade,
    )


def _draw_offset(rng: OffsetSampler | None, main: float, span: float | None) -> float:
    high = main - (span or 0.0)
    if rng is None or high <= 0:
        return 0.0
    return float(rng.uniform(0.0, high))


# ---------- Parse helpers ----------

def _first_present(meta: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if meta.get(key) is not None:
            return meta[key]
    return None


def _to_optional_float(v: Any) -> float | None:
    if isinstance(v, bool):
        return None
    try:
        f = float(v)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(f):
        return None
    return f


def _to_positive_float(v: Any) -> float | None:
    f = _to_optional_float(v)
    if f is None or f <= 0:
        return None
    return f
