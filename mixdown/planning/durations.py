from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Literal

from mixdown.planning.placements import ClipPlacement

logger = logging.getLogger(__name__)

DurationPolicyKind = Literal["match_main", "match_longest_clip", "fixed"]
DURATION_POLICY_KINDS: tuple[str, ...] = ("match_main", "match_longest_clip", "fixed")

# Encoders round output length to whole frames; anything within this is "the same length".
DEFAULT_RETRIEVAL_TOLERANCE_S = 0.010


@dataclass(frozen=True)
class OutputDurationPolicy:
    kind: DurationPolicyKind = "match_main"
    seconds: float | None = None

    @classmethod
    def match_main(cls) -> OutputDurationPolicy:
        return cls("match_main")

    @classmethod
    def match_longest_clip(cls) -> OutputDurationPolicy:
        return cls("match_longest_clip")

    @classmethod
    def fixed(cls, seconds: float) -> OutputDurationPolicy:
        if seconds is None or not seconds > 0:
            raise ValueError(f"fixed output duration must be > 0, got {seconds}")
        return cls("fixed", float(seconds))

    @classmethod
    def parse(cls, kind: str | None, seconds: float | None = None) -> OutputDurationPolicy:
        """Build a policy from API/CLI style arguments."""
        resolved = (kind or "match_main").strip().lower()
        if resolved == "match_main":
            return cls.match_main()
        if resolved == "match_longest_clip":
            return cls.match_longest_clip()
        if resolved == "fixed":
            if seconds is None:
                raise ValueError("fixed_duration_s is required when duration_policy is 'fixed'")
            return cls.fixed(seconds)
        raise ValueError(f"duration_policy must be one of {list(DURATION_POLICY_KINDS)}, got '{kind}'")


@dataclass(frozen=True)
class TrimDecision:
    action: Literal["unchanged", "trim"]
    duration_s: float | None = None

    @classmethod
    def unchanged(cls) -> TrimDecision:
        return cls("unchanged")

    @classmethod
    def trim_to(cls, duration_s: float) -> TrimDecision:
        return cls("trim", float(duration_s))

    @property
    def needs_trim(self) -> bool:
        return self.action == "trim"


def resolve_output_duration(
    main_duration_s: float,
    placements: Iterable[ClipPlacement],
    policy: OutputDurationPolicy,
) -> float:
    if policy.kind == "match_main":
        return float(main_duration_s)
    if policy.kind == "fixed":
        return float(policy.seconds)  # type: ignore[arg-type]
    longest = max((p.end_s for p in placements), default=0.0)
    return max(float(main_duration_s), longest)


def reconcile_on_retrieval(
    artifact_duration_s: float,
    reference_duration_s: float,
    *,
    tolerance_s: float = DEFAULT_RETRIEVAL_TOLERANCE_S,
) -> TrimDecision:
    """
    Decide whether a rendered artifact must be cut back to a reference length.
    Only ever shortens: an artifact shorter than the reference is returned as is.
    """
    if artifact_duration_s <= reference_duration_s + tolerance_s:
        return TrimDecision.unchanged()
    logger.info(
        "Artifact is %.3fs, reference is %.3fs; trimming",
        artifact_duration_s,
        reference_duration_s,
    )
    return TrimDecision.trim_to(reference_duration_s)
