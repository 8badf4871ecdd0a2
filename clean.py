#!/usr/bin/env python3
"""Empty the logs, captures and recordings directories."""

import argparse
import shutil
from pathlib import Path
from typing import List

TARGETS = {
    "all": [Path("logs"), Path("captures"), Path("recordings")],
    "log": [Path("logs")],
    "cap": [Path("captures")],
    "rec": [Path("recordings")],
}


def clean_directory(dir_path: Path) -> int:
    """Remove all contents of a directory but keep the directory itself."""
    if not dir_path.exists():
        print(f"  {dir_path} does not exist, skipping")
        return 0

    if not dir_path.is_dir():
        print(f"  {dir_path} is not a directory, skipping")
        return 0

    count = 0
    for item in dir_path.iterdir():
        if item.is_dir():
            shutil.rmtree(item)
        else:
            item.unlink()
        count += 1

    print(f"  Removed {count} items from {dir_path}")
    return count


def resolve_targets(target: str | None) -> List[Path]:
    if target is None:
        return [Path("logs"), Path("captures")]
    return TARGETS[target]


def main(argv: List[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        description="Clean up probe artifact directories",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python clean.py       # Clean logs and captures (default)
  python clean.py all   # Clean logs, captures and recordings
  python clean.py rec   # Clean only the recordings/ directory
        """,
    )
    parser.add_argument(
        "target",
        nargs="?",
        default=None,
        choices=sorted(TARGETS),
        help="What to clean. If omitted, cleans logs and captures.",
    )
    args = parser.parse_args(argv)

    for dir_path in resolve_targets(args.target):
        clean_directory(dir_path)

    print("Done!")


if __name__ == "__main__":
    main()
