"""Thin CLI entry point: builds a Manifest and calls the engine."""

import argparse
import logging
import sys
from pathlib import Path

from introfinder.engine import process
from introfinder.manifest import EpisodeEntry, Manifest, SeasonEntry, load_manifest
from introfinder.models import AnalysisMode


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="introfinder",
        description="introfinder: detect shared intros and end credits across a season.",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command")

    analyze = sub.add_parser("analyze", help="Analyze one season or a manifest of seasons")
    analyze.add_argument("episodes", nargs="*", type=Path, help="Episode files of a single season")
    analyze.add_argument("--manifest", "-m", type=Path, help="Path to a JSON manifest file")
    analyze.add_argument("--output", "-o", type=Path, help="Write results as JSON to this path")
    analyze.add_argument("--series", type=str, default="Unknown series", help="Series name for positional episodes")
    analyze.add_argument("--season", type=int, default=1, help="Season number for positional episodes")
    analyze.add_argument(
        "--mode",
        choices=[m.value for m in AnalysisMode],
        action="append",
        help="Analysis mode (repeatable; default: all)",
    )
    analyze.add_argument("--parallelism", type=int, help="Number of seasons analyzed at once")

    serve = sub.add_parser("serve", help="Launch the HTTP API")
    serve.add_argument("--port", type=int, default=8321, help="Port to listen on")
    serve.add_argument("--host", type=str, default="127.0.0.1", help="Host to bind to")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    if args.command == "serve":
        from introfinder.web import create_app
        app = create_app()
        print(f"introfinder API: http://{args.host}:{args.port}")
        app.run(host=args.host, port=args.port, debug=False)
        return

    if args.manifest:
        m = load_manifest(args.manifest)
    elif args.episodes:
        m = Manifest(
            seasons=[
                SeasonEntry(
                    series=args.series,
                    season_number=args.season,
                    episodes=[EpisodeEntry(id=p.stem, path=p) for p in args.episodes],
                )
            ],
        )
    else:
        print("Error: provide either EPISODE files or --manifest.", file=sys.stderr)
        sys.exit(1)

    if args.output:
        m.output = args.output
    if args.mode:
        m.modes = [AnalysisMode(v) for v in args.mode]
    if args.parallelism:
        m.max_parallelism = args.parallelism

    def on_progress(stage: str, frac: float) -> None:
        print(f"  [{frac:3.0%}] {stage}")

    result = process(m, on_progress=on_progress)

    print()
    print(f"Done! Episodes queued: {result.episodes_queued}")
    data = result.store.to_dict()
    for episode_id, modes in data["segments"].items():
        for mode, seg in modes.items():
            if seg["valid"]:
                print(f"  {episode_id} {mode}: {seg['start']:.2f}s -> {seg['end']:.2f}s")
    for mode, ids in data["unmatched"].items():
        if ids:
            print(f"  No {mode} found: {', '.join(ids)}")
    if result.warnings:
        print(f"  Warnings: {', '.join(result.warnings)}")
    if result.output_path:
        print(f"  Results: {result.output_path}")
