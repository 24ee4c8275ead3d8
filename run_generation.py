#!/usr/bin/env python3
"""Generate game content from the command line.

Runs one or more phase pipelines concurrently and prints the results as
JSON: the public payload and the answer key of every phase, plus usage and
degradation details.

Exit Codes:
    0 - Success (every phase accepted)
    1 - Partial failure (a phase degraded or failed)
    2 - Complete failure (no phase produced content)
    3 - Configuration error
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import Any, Dict, List

from dotenv import load_dotenv

load_dotenv()

from quizgen.config.config import Settings  # noqa: E402
from quizgen.data.models import (  # noqa: E402
    DEFAULT_TOPIC,
    Difficulty,
    Language,
    Phase,
    PhaseResult,
)
from quizgen.exceptions import PipelineExhaustedError  # noqa: E402
from quizgen.logging_config import setup_logging  # noqa: E402
from quizgen.pipeline import create_pipeline  # noqa: E402

EXIT_SUCCESS = 0
EXIT_PARTIAL_FAILURE = 1
EXIT_COMPLETE_FAILURE = 2
EXIT_CONFIG_ERROR = 3


def parse_arguments() -> argparse.Namespace:
    """Parse command-line arguments.

    Returns:
        Parsed arguments namespace
    """
    parser = argparse.ArgumentParser(
        description="Generate trivia game content",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Generate every phase, each on a generated theme
  python run_generation.py

  # Generate the MCQ rounds about space, in English
  python run_generation.py --phases phase1 phase4 --topic "Space" --language en

  # Complete an existing round with 3 more questions
  python run_generation.py --phases phase1 --complete-count 3
        """,
    )

    parser.add_argument(
        "--phases",
        nargs="+",
        choices=[p.value for p in Phase],
        default=[p.value for p in Phase],
        help="Phases to generate (default: all phases)",
    )

    parser.add_argument(
        "--topic",
        type=str,
        default=DEFAULT_TOPIC,
        help="Game topic (default: an original theme is generated per phase)",
    )

    parser.add_argument(
        "--difficulty",
        choices=[d.value for d in Difficulty],
        default=Difficulty.NORMAL.value,
        help="Difficulty level (default: normal)",
    )

    parser.add_argument(
        "--language",
        choices=[lang.value for lang in Language],
        default=Language.FR.value,
        help="Content language (default: fr)",
    )

    parser.add_argument(
        "--complete-count",
        type=int,
        default=None,
        help="Completion mode: number of items to add to a single phase (1-20)",
    )

    parser.add_argument(
        "--output",
        "-o",
        type=str,
        default=None,
        help="Write the JSON result to this file instead of stdout",
    )

    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose (DEBUG) logging",
    )

    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Emit logs as JSON lines",
    )

    return parser.parse_args()


def result_to_dict(result: PhaseResult) -> Dict[str, Any]:
    """Serialize a phase result for output."""
    return {
        "data": result.to_public(),
        "answer_key": result.answer_key(),
        "degraded": result.degraded,
        "warnings": result.warnings,
        "iterations": result.iterations,
        "topic": result.topic,
        "fallback_count": result.fallback_count,
        "usage": result.usage.to_dict(),
    }


async def run(args: argparse.Namespace, config: Settings) -> Dict[str, Any]:
    """Run the requested phases and collect their output."""
    async with create_pipeline(config) as pipeline:
        if args.complete_count is not None:
            phase = Phase(args.phases[0])
            try:
                result = await pipeline.run_phase_pipeline(
                    phase,
                    args.topic,
                    args.difficulty,
                    args.language,
                    target_count=args.complete_count,
                )
            except PipelineExhaustedError as e:
                return {phase.value: e}
            return {phase.value: result}
        results = await pipeline.run_game(
            args.phases, args.topic, args.difficulty, args.language
        )
        return {phase.value: outcome for phase, outcome in results.items()}


def main() -> int:
    """Main entry point.

    Returns:
        Exit code
    """
    args = parse_arguments()

    try:
        config = Settings()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    setup_logging(
        log_level="DEBUG" if args.verbose else config.log_level,
        log_file=config.log_file,
        json_format=args.json_logs,
    )
    logger = logging.getLogger(__name__)

    if args.complete_count is not None:
        if len(args.phases) != 1:
            logger.error("--complete-count requires exactly one phase")
            return EXIT_CONFIG_ERROR
        if not 1 <= args.complete_count <= 20:
            logger.error("--complete-count must be between 1 and 20")
            return EXIT_CONFIG_ERROR

    logger.info(
        f"Generating {', '.join(args.phases)} for '{args.topic}' "
        f"({args.difficulty}, {args.language})"
    )

    try:
        outcomes = asyncio.run(run(args, config))
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        return EXIT_CONFIG_ERROR

    output: Dict[str, Any] = {}
    errors: List[str] = []
    degraded = False
    for phase, outcome in outcomes.items():
        if isinstance(outcome, BaseException):
            errors.append(phase)
            output[phase] = {"error": str(outcome)}
        else:
            degraded = degraded or outcome.degraded
            output[phase] = result_to_dict(outcome)

    text = json.dumps(output, ensure_ascii=False, indent=2)
    if args.output:
        with open(args.output, "w", encoding="utf-8") as f:
            f.write(text)
        logger.info(f"Wrote results to {args.output}")
    else:
        print(text)

    if len(errors) == len(outcomes):
        return EXIT_COMPLETE_FAILURE
    if errors or degraded:
        return EXIT_PARTIAL_FAILURE
    return EXIT_SUCCESS


if __name__ == "__main__":
    sys.exit(main())
