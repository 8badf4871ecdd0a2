"""Command-line helper for capturing a single frame of a game page."""
from __future__ import annotations

import argparse
import asyncio
import logging
from pathlib import Path

from playprobe_runtime.browser import BrowserSession
from playprobe_runtime.capture import FrameCapture, FramePhase
from playprobe_runtime.config import ConfigError, load_config
from playprobe_runtime.errors import CategorizedError

from .annotator import annotate_grid
from .grid import GridSpec


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Open a page and capture one frame.")
    parser.add_argument("url", help="Page to capture")
    parser.add_argument("--config", type=Path, help="Path to config.yaml", default=Path("config.yaml"))
    parser.add_argument("--label", default="manual", help="Label used in capture filenames")
    parser.add_argument("--grid", action="store_true", help="Also save a copy with the grid overlay")
    parser.add_argument("--headed", action="store_true", help="Show the browser window")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging verbosity",
    )
    return parser


async def capture_once(url: str, config_path: Path, label: str, grid: bool, headed: bool) -> int:
    config = load_config(config_path)
    config.capture.save_frames = True
    if headed:
        config.browser.headless = False

    async with BrowserSession(config.browser) as session:
        await session.navigate(url)
        await asyncio.sleep(config.browser.page_settle_s)
        capture = FrameCapture(session, config.capture)
        frame = await capture.capture(FramePhase.INITIAL, label)
        logging.info(
            "Captured %dx%d frame (mean luminance %.2f / std %.2f, blank=%s) into %s",
            frame.width,
            frame.height,
            frame.stats.mean_luminance if frame.stats else 0.0,
            frame.stats.stddev_luminance if frame.stats else 0.0,
            frame.stats.blank if frame.stats else None,
            capture.output_dir,
        )
        if grid:
            annotated = annotate_grid(frame, GridSpec(config.grid.columns, config.grid.rows))
            path = capture.save(annotated, f"grid_{label}")
            logging.info("Grid overlay stored at %s", path)
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(level=getattr(logging, args.log_level.upper()), format="[%(levelname)s] %(message)s")

    try:
        return asyncio.run(capture_once(args.url, args.config, args.label, args.grid, args.headed))
    except ConfigError as exc:
        logging.error("Invalid configuration: %s", exc)
        return 2
    except CategorizedError as exc:
        logging.error("Capture failed: %s", exc)
        return 1


if __name__ == "__main__":  # pragma: no cover - manual entry point
    raise SystemExit(main())
