from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, ClassVar, Literal, Union

from mixdown.core.errors import InvalidPlanError

MixDurationPolicy = Literal["first", "longest", "shortest"]


@dataclass(frozen=True)
class Source:
    """Positional reference into the submitted input list (0 = main track, 1.. = clips)."""
    index: int

    def to_ref(self) -> str:
        return f"#{self.index}"


InputRef = Union[Source, str]


@dataclass(frozen=True)
class Trim:
    kind: ClassVar[str] = "trim"
    input: InputRef
    start_s: float
    end_s: float
    label: str

    @property
    def inputs(self) -> tuple[InputRef, ...]:
        return (self.input,)


@dataclass(frozen=True)
class Gain:
    kind: ClassVar[str] = "gain"
    input: InputRef
    factor: float
    label: str

    @property
    def inputs(self) -> tuple[InputRef, ...]:
        return (self.input,)


@dataclass(frozen=True)
class FadeOut:
    kind: ClassVar[str] = "fade_out"
    input: InputRef
    start_s: float
    duration_s: float
    label: str

    @property
    def inputs(self) -> tuple[InputRef, ...]:
        return (self.input,)


@dataclass(frozen=True)
class Delay:
    kind: ClassVar[str] = "delay"
    input: InputRef
    delay_ms: int
    label: str

    @property
    def inputs(self) -> tuple[InputRef, ...]:
        return (self.input,)


@dataclass(frozen=True)
class Mix:
    kind: ClassVar[str] = "mix"
    inputs: tuple[InputRef, ...]
    duration: MixDurationPolicy
    label: str
    normalize: bool = True


GraphOp = Union[Trim, Gain, FadeOut, Delay, Mix]


@dataclass(frozen=True)
class MixPlan:
    """
    Ordered graph ops; emission order is the render order.
    `output` names the single terminal label.
    """
    ops: tuple[GraphOp, ...]
    output: str

    @property
    def source_indices(self) -> list[int]:
        found = {ref.index for op in self.ops for ref in op.inputs if isinstance(ref, Source)}
        return sorted(found)

    def validate(self) -> None:
        if not self.ops:
            raise InvalidPlanError("mix plan has no ops")

        produced: set[str] = set()
        consumed: set[str] = set()
        for pos, op in enumerate(self.ops):
            for ref in op.inputs:
                if isinstance(ref, Source):
                    if ref.index < 0:
                        raise InvalidPlanError(f"op {pos} ({op.kind}) references negative source {ref.index}")
                    continue
                if ref not in produced:
                    raise InvalidPlanError(f"op {pos} ({op.kind}) references unknown or later label '{ref}'")
                consumed.add(ref)
            if op.label in produced:
                raise InvalidPlanError(f"label '{op.label}' is produced twice")
            produced.add(op.label)

        terminals = produced - consumed
        if terminals != {self.output}:
            raise InvalidPlanError(
                f"plan must have exactly one terminal label '{self.output}', found {sorted(terminals)}"
            )

    def to_dict(self) -> dict[str, Any]:
        return {
            "output": self.output,
            "ops": [_op_to_dict(op) for op in self.ops],
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"))


def _ref_to_json(ref: InputRef) -> Any:
    return ref.to_ref() if isinstance(ref, Source) else ref


def _op_to_dict(op: GraphOp) -> dict[str, Any]:
    out: dict[str, Any] = {"op": op.kind, "label": op.label}
    if isinstance(op, Mix):
        out["inputs"] = [_ref_to_json(r) for r in op.inputs]
        out["duration"] = op.duration
        out["normalize"] = op.normalize
        return out

    out["input"] = _ref_to_json(op.input)
    if isinstance(op, Trim):
        out.update(start_s=op.start_s, end_s=op.end_s)
    elif isinstance(op, Gain):
        out["factor"] = op.factor
    elif isinstance(op, FadeOut):
        out.update(start_s=op.start_s, duration_s=op.duration_s)
    elif isinstance(op, Delay):
        out["delay_ms"] = op.delay_ms
    return out
