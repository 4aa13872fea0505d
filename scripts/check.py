#!/usr/bin/env python3
"""Run the local checks (lint, tests, types) or start a development server.

Usage:
    python scripts/check.py              # ruff, pytest, pyright
    python scripts/check.py --fail-fast  # stop at the first failing check
    python scripts/check.py --serve      # uvicorn with reload on :8000
"""

import argparse
import subprocess
import sys
import time
from pathlib import Path

PROJECT_ROOT = Path(__file__).parent.parent.resolve()

CHECKS: list[tuple[str, list[str]]] = [
    ("ruff format", [sys.executable, "-m", "ruff", "format", "--check", "."]),
    ("ruff check", [sys.executable, "-m", "ruff", "check", "."]),
    ("pytest", [sys.executable, "-m", "pytest"]),
    ("pyright", [sys.executable, "-m", "pyright"]),
]


def serve(port: int) -> int:
    """Run the application with auto-reload, returning uvicorn's exit code."""
    cmd = [sys.executable, "-m", "uvicorn", "allyfilter.main:app", "--reload", "--reload-dir", "src", "--port", str(port)]
    return subprocess.call(cmd, cwd=PROJECT_ROOT)


def run_checks(fail_fast: bool) -> int:
    failed: list[str] = []
    for name, cmd in CHECKS:
        start = time.monotonic()
        code = subprocess.call(cmd, cwd=PROJECT_ROOT)
        status = "PASS" if code == 0 else "FAIL"
        print(f"{name:<12} {status} ({time.monotonic() - start:.1f}s)")
        if code:
            failed.append(name)
            if fail_fast:
                break

    if failed:
        print(f"Failed: {', '.join(failed)}")
        return 1
    print(f"All {len(CHECKS)} checks passed")
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("--fail-fast", action="store_true", help="Stop on the first failure.")
    parser.add_argument("--serve", action="store_true", help="Start a development server instead.")
    parser.add_argument("--port", type=int, default=8000)
    args = parser.parse_args()

    sys.exit(serve(args.port) if args.serve else run_checks(args.fail_fast))


if __name__ == "__main__":
    main()
