from __future__ import annotations

import logging
from typing import Sequence

from mixdown.core.errors import EmptyPlacementListError
from mixdown.planning.durations import OutputDurationPolicy, resolve_output_duration
from mixdown.planning.graph import (
    Delay,
    FadeOut,
    Gain,
    GraphOp,
    InputRef,
    Mix,
    MixDurationPolicy,
    MixPlan,
    Source,
    Trim,
)
from mixdown.planning.placements import ClipPlacement

logger = logging.getLogger(__name__)

MAIN_SOURCE = Source(0)
OUTPUT_LABEL = "out"

_MIX_DURATION: dict[str, MixDurationPolicy] = {
    "match_main": "first",
    "match_longest_clip": "longest",
    "fixed": "longest",
}


def compile_plan(
    main_duration_s: float,
    placements: Sequence[ClipPlacement],
    duration_policy: OutputDurationPolicy | None = None,
    *,
    require_clips: bool = False,
    main_gain: float | None = None,
    normalize: bool = True,
) -> MixPlan:
    """
    Turn placements into an ordered graph.

    Per clip: trim -> gain -> (fade out) -> delay. The delay goes last so the clip's own
    timeline starts at 0 when it is shifted into the main timeline.
    All chains then feed one mix whose first input is the main track, followed by the clip
    chains in ascending source_index. A trailing trim is added for match_main and fixed.

    Clip i is read from Source(i + 1); the renderer submits the main track first.
    """
    duration_policy = duration_policy or OutputDurationPolicy.match_main()
    ordered = sorted(placements, key=lambda p: p.source_index)
    if not ordered and require_clips:
        raise EmptyPlacementListError("at least one clip track is required")

    output_duration = resolve_output_duration(main_duration_s, ordered, duration_policy)
    trailing_trim = duration_policy.kind in ("match_main", "fixed")

    ops: list[GraphOp] = []

    main_ref: InputRef = MAIN_SOURCE
    if main_gain is not None or not ordered:
        # With no clips the plan is the main track through an identity gain.
        label = "main_gain" if (ordered or trailing_trim) else OUTPUT_LABEL
        ops.append(Gain(MAIN_SOURCE, 1.0 if main_gain is None else float(main_gain), label))
        main_ref = label

    if not ordered:
        if trailing_trim:
            ops.append(Trim(main_ref, 0.0, output_duration, OUTPUT_LABEL))
        return _finish(ops)

    terminals: list[InputRef] = [main_ref]
    for placement in ordered:
        terminals.append(_emit_clip_chain(ops, placement))

    mix_label = "mixed" if trailing_trim else OUTPUT_LABEL
    ops.append(Mix(tuple(terminals), _MIX_DURATION[duration_policy.kind], mix_label, normalize))
    if trailing_trim:
        ops.append(Trim(mix_label, 0.0, output_duration, OUTPUT_LABEL))
    return _finish(ops)


def _emit_clip_chain(ops: list[GraphOp], placement: ClipPlacement) -> str:
    prefix = f"clip{placement.source_index}"
    source = Source(placement.source_index + 1)

    ops.append(Trim(source, placement.start_offset_s, placement.end_s, f"{prefix}_trim"))
    ops.append(Gain(f"{prefix}_trim", placement.gain, f"{prefix}_gain"))
    current = f"{prefix}_gain"

    if placement.fade_out_s > 0:
        fade_start = max(0.0, placement.span_s - placement.fade_out_s)
        ops.append(FadeOut(current, fade_start, placement.fade_out_s, f"{prefix}_fade"))
        current = f"{prefix}_fade"

    delay_ms = int(round(placement.start_offset_s * 1000))
    ops.append(Delay(current, delay_ms, f"{prefix}_delay"))
    return f"{prefix}_delay"


def _finish(ops: list[GraphOp]) -> MixPlan:
    plan = MixPlan(ops=tuple(ops), output=OUTPUT_LABEL)
    plan.validate()
    logger.debug("Compiled mix plan with %d ops", len(plan.ops))
    return plan
