from __future__ import annotations

from mixdown.planning.graph import Delay, FadeOut, Gain, GraphOp, InputRef, Mix, MixPlan, Source, Trim


def _format_value(val: float) -> str:
    text = f"{float(val):.6f}".rstrip("0").rstrip(".")
    return text or "0"


def _pad(ref: InputRef) -> str:
    if isinstance(ref, Source):
        return f"[{ref.index}:a]"
    return f"[{ref}]"


def _filter_for(op: GraphOp) -> str:
    if isinstance(op, Trim):
        # reset timestamps so downstream filters see the clip starting at 0
        return f"atrim=start={_format_value(op.start_s)}:end={_format_value(op.end_s)},asetpts=PTS-STARTPTS"
    if isinstance(op, Gain):
        return f"volume={_format_value(op.factor)}"
    if isinstance(op, FadeOut):
        return f"afade=t=out:st={_format_value(op.start_s)}:d={_format_value(op.duration_s)}"
    if isinstance(op, Delay):
        return f"adelay=delays={int(op.delay_ms)}:all=1"
    if isinstance(op, Mix):
        normalize = 1 if op.normalize else 0
        return f"amix=inputs={len(op.inputs)}:duration={op.duration}:dropout_transition=0:normalize={normalize}"
    raise TypeError(f"unsupported graph op: {op!r}")


def build_filter_complex(plan: MixPlan) -> str:
    """
    Serialize a plan into an ffmpeg -filter_complex string, one chain per op in emission order.
    The output pad is `[<plan.output>]`.
    """
    plan.validate()
    chains = []
    for op in plan.ops:
        pads = "".join(_pad(ref) for ref in op.inputs)
        chains.append(f"{pads}{_filter_for(op)}[{op.label}]")
    return ";".join(chains)


def output_pad(plan: MixPlan) -> str:
    return f"[{plan.output}]"
