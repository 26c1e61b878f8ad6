from mixdown.planning.compiler import compile_plan
from mixdown.planning.durations import (
    OutputDurationPolicy,
    TrimDecision,
    reconcile_on_retrieval,
    resolve_output_duration,
)
from mixdown.planning.graph import Delay, FadeOut, Gain, Mix, MixPlan, Source, Trim
from mixdown.planning.placements import (
    ClipPlacement,
    PlacementPolicy,
    parse_clip_metadata,
    resolve_placements,
)

__all__ = [
    "ClipPlacement",
    "Delay",
    "FadeOut",
    "Gain",
    "Mix",
    "MixPlan",
    "OutputDurationPolicy",
    "PlacementPolicy",
    "Source",
    "Trim",
    "TrimDecision",
    "compile_plan",
    "parse_clip_metadata",
    "reconcile_on_retrieval",
    "resolve_output_duration",
    "resolve_placements",
]
