#!/usr/bin/env python3
"""Main entry point for PlayProbe."""
import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path

from playprobe_agent.outcome import FrameDiffClassifier, UnknownOutcomeClassifier
from playprobe_agent.runner import ProbeRunner
from playprobe_runtime.config import ConfigError, load_config


def setup_logging(level: int = logging.INFO) -> logging.Logger:
    """Configure logging for the application.

    Args:
        level: Logging level (default: INFO)

    Returns:
        Root logger instance
    """
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    return logging.getLogger()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Load a web game, start it and play it with vision guidance.")
    parser.add_argument("url", help="URL of the game page")
    parser.add_argument("--config", type=Path, default=Path("config.yaml"), help="Path to config.yaml")
    parser.add_argument("--game-id", help="Identifier used for cached outcomes and artifacts")
    parser.add_argument("--attempts", type=int, help="Override gameplay.attempt_ceiling")
    parser.add_argument("--mechanics", default="", help="Free-text description of the game's controls")
    parser.add_argument("--headed", action="store_true", help="Show the browser window")
    parser.add_argument("--record", action="store_true", help="Record a gameplay video (requires ffmpeg)")
    parser.add_argument("--timeout", type=float, help="Overall session deadline in seconds")
    parser.add_argument(
        "--classifier",
        default="unknown",
        choices=["unknown", "frame-diff"],
        help="Outcome classifier used to decide which actions to cache",
    )
    parser.add_argument(
        "--prompt-style",
        choices=["actions", "slingshot"],
        help="Override gameplay.prompt_style",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging verbosity",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)
    logger = setup_logging(level=getattr(logging, args.log_level.upper()))

    logger.info("=" * 70)
    logger.info("PlayProbe - vision-guided web game probing")
    logger.info("=" * 70)

    if not args.config.exists():
        logger.warning("%s not found; using defaults", args.config)

    try:
        config = load_config(args.config)
    except ConfigError as exc:
        logger.error("Failed to load configuration: %s", exc)
        return 2

    if args.headed:
        config.browser.headless = False
    if args.record:
        config.recording.enabled = True
    if args.prompt_style:
        config.gameplay.prompt_style = args.prompt_style
    if args.attempts is not None:
        if args.attempts < 1:
            logger.error("--attempts must be at least 1")
            return 2
        config.gameplay.attempt_ceiling = args.attempts

    logger.info("Configuration loaded successfully")
    logger.info("  Viewport: %dx%d (headless=%s)", config.browser.viewport_width, config.browser.viewport_height, config.browser.headless)
    logger.info("  Grid: %dx%d (enabled=%s)", config.grid.columns, config.grid.rows, config.grid.enabled)
    logger.info("  Perception model: %s", config.perception.model)
    logger.info("  Attempt ceiling: %d", config.gameplay.attempt_ceiling)
    logger.info("  Playability evaluation: %s", "on" if config.evaluation.enabled else "off")
    logger.info("  Logs dir: %s", config.gameplay.logs_dir)

    if not os.environ.get(config.perception.api_key_env):
        logger.error("%s environment variable not set", config.perception.api_key_env)
        logger.error("Please set it before running: export %s='your-key-here'", config.perception.api_key_env)
        return 2

    classifier = FrameDiffClassifier(logger=logger) if args.classifier == "frame-diff" else UnknownOutcomeClassifier()
    runner = ProbeRunner(config, logger, classifier=classifier)

    try:
        report = asyncio.run(
            runner.run(
                args.url,
                game_id=args.game_id,
                mechanics=args.mechanics,
                timeout_s=args.timeout,
            )
        )
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 1

    logger.info("=" * 70)
    logger.info("Probe %s for %s", "succeeded" if report.succeeded else "failed", report.game_id)
    if report.playability is not None:
        logger.info("Playability: %d/100 (%s)", report.playability.overall_score, report.playability.reasoning or "no reasoning given")
    if report.report_path:
        logger.info("Report: %s", report.report_path)
    for error in report.errors:
        logger.info("  error: %s", error)
    return 0 if report.succeeded else 1


if __name__ == "__main__":
    sys.exit(main())
