#!/usr/bin/env python
"""Probe + resolve + compile (+ optionally render) a mix without DB/service dependencies."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
from pathlib import Path
from typing import Any

from mixdown.analyzers.track_probe import FfprobeTrackProbe
from mixdown.planning import (
    OutputDurationPolicy,
    PlacementPolicy,
    compile_plan,
    parse_clip_metadata,
    resolve_output_duration,
    resolve_placements,
)
from mixdown.renderers.ffmpeg_graph import build_filter_complex
from mixdown.renderers.mix_renderer import FfmpegMixRenderer, OutputSpec, RenderRequest


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Compile the mix plan for a main track and clip tracks, and optionally render it."
    )
    parser.add_argument("main_audio", help="Main audio track.")
    parser.add_argument("clip_audios", nargs="*", help="Clip tracks, in source index order.")
    parser.add_argument(
        "--metadata-json",
        default=None,
        help="Optional JSON file with a list of {timestamp, duration, volume, fade_out} (index-aligned with clips).",
    )
    parser.add_argument(
        "--placement-mode",
        default=None,
        choices=["explicit", "randomized"],
        help="Placement policy for fields missing from the metadata.",
    )
    parser.add_argument("--seed", type=int, default=None, help="Seed for randomized placement.")
    parser.add_argument(
        "--duration-policy",
        default="match_main",
        choices=["match_main", "match_longest_clip", "fixed"],
        help="Output duration policy.",
    )
    parser.add_argument(
        "--fixed-duration",
        type=float,
        default=None,
        help="Output duration in seconds (required with --duration-policy fixed).",
    )
    parser.add_argument(
        "--output-audio",
        default=None,
        help="Render to this path. Without it only the plan is printed.",
    )
    parser.add_argument(
        "--output-plan-json",
        default=None,
        help="Write the plan summary JSON here (default: stdout).",
    )
    return parser.parse_args()


def _load_metadata(path: str | None) -> list[dict[str, Any]]:
    if path is None:
        return []
    metadata_path = Path(path).expanduser().resolve()
    return parse_clip_metadata(metadata_path.read_text(encoding="utf-8"))


async def _run(args: argparse.Namespace) -> dict[str, Any]:
    main_path = Path(args.main_audio).expanduser().resolve()
    clip_paths = [Path(p).expanduser().resolve() for p in args.clip_audios]

    probe = FfprobeTrackProbe()
    main_info = await probe.probe(str(main_path), track="main_audio")
    clip_infos = [await probe.probe(str(p), track=f"clip_audios[{i}]") for i, p in enumerate(clip_paths)]

    policy = PlacementPolicy.from_settings(mode=args.placement_mode, seed=args.seed)
    out_policy = OutputDurationPolicy.parse(args.duration_policy, args.fixed_duration)
    placements = resolve_placements(_load_metadata(args.metadata_json), len(clip_paths), main_info.duration_s, policy)
    plan = compile_plan(main_info.duration_s, placements, out_policy)
    output_duration = resolve_output_duration(main_info.duration_s, placements, out_policy)

    summary: dict[str, Any] = {
        "main_audio": {"path": str(main_path), "duration_s": main_info.duration_s},
        "clip_audios": [
            {"path": str(p), "duration_s": info.duration_s} for p, info in zip(clip_paths, clip_infos)
        ],
        "placement_mode": policy.mode,
        "duration_policy": out_policy.kind,
        "output_duration_s": output_duration,
        "placements": [p.to_dict() for p in placements],
        "plan": plan.to_dict(),
        "filter_complex": build_filter_complex(plan),
    }

    if args.output_audio:
        output_spec = OutputSpec.from_settings()
        output_path = Path(args.output_audio).expanduser().resolve()
        if not output_path.suffix:
            output_path = output_path.with_suffix(output_spec.ext)
        artifact = await FfmpegMixRenderer().render(RenderRequest(
            main_path=str(main_path),
            clip_paths=tuple(str(p) for p in clip_paths),
            plan=plan,
            output_path=str(output_path),
            output_spec=output_spec,
            total_duration_s=output_duration,
        ))
        summary["output_audio"] = {
            "path": artifact.path,
            "mime": artifact.mime,
            "elapsed_s": artifact.elapsed_s,
        }
    return summary


def main() -> int:
    args = parse_args()

    logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(message)s")

    summary = asyncio.run(_run(args))
    payload = json.dumps(summary, indent=2)
    if args.output_plan_json:
        out = Path(args.output_plan_json).expanduser().resolve()
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_text(payload, encoding="utf-8")
        print(f"[OK] Plan summary: {out}")
    else:
        print(payload)

    if "output_audio" in summary:
        print(f"[OK] Rendered mix: {summary['output_audio']['path']}")
    print(f"[OK] Ops: {len(summary['plan']['ops'])} | Length: {summary['output_duration_s']:.3f} s")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
