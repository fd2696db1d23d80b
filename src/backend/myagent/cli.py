"""
Command-line entry point for a single refinement run.

Usage:
    cd src/backend
    python -m myagent.cli "Write a sentence about Duolingo."          # interactive
    python -m myagent.cli "Write a sentence about Duolingo." \\
        --non-interactive --context "Nothing else. Just the sentence." --json
    python -m myagent.cli --config config/models.json --max-attempts 3 "..."

Exit codes: 0 completed, 1 failed run or bad configuration, 2 missing task.
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError

from myagent.agent.orchestrator import AgentOrchestrator, MissingInputError
from myagent.agent.turns import ConsoleTurnProvider
from myagent.config import Settings
from myagent.models.schemas import RunPhase, RunProgress, RunResult, RunStatus
from myagent.tools.renderer import REPORT_FORMATS

logger = logging.getLogger(__name__)


def positive_int(value: str) -> int:
    number = int(value)
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be a positive integer, got {value}")
    return number


def score_value(value: str) -> int:
    number = int(value)
    if not 0 <= number <= 10:
        raise argparse.ArgumentTypeError(f"must be between 0 and 10, got {value}")
    return number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Iterative refinement agent")
    parser.add_argument("task", nargs="*", help="Task description (joined with spaces)")
    parser.add_argument("--context", type=str, default=None, help="Pre-supplied context; skips clarifying questions")
    parser.add_argument("--non-interactive", action="store_true", help="Never prompt; no follow-up chat")
    parser.add_argument("--config", type=str, default=None, help="JSON config file (models.json layout)")
    parser.add_argument("--rules-file", type=str, default=None, help="File with the standing system instruction")
    parser.add_argument("--max-attempts", type=positive_int, default=None)
    parser.add_argument("--target-score", type=score_value, default=None)
    parser.add_argument("--report-format", choices=REPORT_FORMATS, default=None, help="Override the configured report format")
    parser.add_argument("--json", action="store_true", help="Print the run result as JSON")
    parser.add_argument("--quiet", action="store_true")
    return parser


def load_settings(config_path: Optional[str], rules_file: Optional[str]) -> Settings:
    app_settings = Settings.from_json_file(config_path) if config_path else Settings()
    if rules_file:
        rules = Path(rules_file).read_text(encoding="utf-8").strip()
        app_settings = app_settings.model_copy(update={"standing_instructions": rules})
    return app_settings


def print_progress(progress: RunProgress) -> None:
    if progress.phase == RunPhase.ITERATING:
        print(f"[{progress.percent:3d}%] {progress.message}")
    else:
        print(f"[{progress.percent:3d}%] {progress.phase.value}: {progress.message}")


def print_summary(result: RunResult) -> None:
    """Pretty-print the run outcome to the console."""
    print(f"\n{'='*60}")
    print(f"  Run {result.status.value.upper()}")
    print(f"{'='*60}")
    print(f"  Attempts:         {result.attempts}")
    print(f"  Last score:       {result.last_score}/10")
    print(f"  Budget exhausted: {result.max_attempts_reached}")
    if result.report and result.report.export_path:
        print(f"  Report:           {result.report.export_path}")
    if result.error:
        print(f"  Error:            {result.error}")
    tokens = result.usage.get("total_tokens")
    if tokens is not None:
        print(f"  Tokens used:      {tokens}")
    print(f"{'='*60}\n")


async def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.WARNING if args.quiet else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        app_settings = load_settings(args.config, args.rules_file)
    except (OSError, ValueError, ValidationError) as e:
        print(f"ABORT: invalid configuration: {e}", file=sys.stderr)
        return 1
    if args.report_format:
        app_settings = app_settings.model_copy(update={"report_format": args.report_format})
    if args.config:
        logger.info(f"Loaded configuration from {args.config}")

    interactive = not args.non_interactive
    show_progress = interactive and not args.quiet and not args.json
    orchestrator = AgentOrchestrator(
        app_settings,
        turns=ConsoleTurnProvider() if interactive else None,
        on_progress=print_progress if show_progress else None,
        max_attempts=args.max_attempts,
        target_score=args.target_score,
    )

    try:
        result = await orchestrator.run(
            " ".join(args.task) or None,
            context=args.context,
            interactive=interactive,
        )
    except MissingInputError as e:
        print(f"ABORT: {e}", file=sys.stderr)
        return 2
    finally:
        await orchestrator.gateway.aclose()

    if args.json:
        print(result.model_dump_json(indent=2))
    else:
        if not interactive and result.report:
            print(result.report.markdown)
        print_summary(result)

    return 0 if result.status == RunStatus.COMPLETED else 1


def run() -> None:
    """Console-script entry point."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
