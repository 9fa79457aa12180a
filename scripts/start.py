#!/usr/bin/env python3
"""
Container entry point: migrate + seed, then exec gunicorn on $PORT (default 8080).

Usage:
    python scripts/start.py
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

DEFAULT_PORT = 8080
WORKERS = "2"
TIMEOUT_SECONDS = "60"


def _port() -> int:
    raw = os.environ.get("PORT", "").strip() or str(DEFAULT_PORT)
    try:
        port = int(raw)
    except ValueError:
        port = -1
    if not 1 <= port <= 65535:
        print(f"ERROR: PORT must be an integer 1-65535 (got {raw!r}).", flush=True)
        sys.exit(1)
    return port


def _gunicorn_argv(port: int) -> list[str]:
    return [
        "gunicorn",
        "app.wsgi:app",
        "--bind", f"0.0.0.0:{port}",
        "--workers", WORKERS,
        "--timeout", TIMEOUT_SECONDS,
        "--preload",
        "--access-logfile", "-",
        "--error-logfile", "-",
    ]


def main() -> None:
    port = _port()

    from scripts.release import run_release
    try:
        run_release()
    except Exception as e:
        print(f"Release failed: {e}", flush=True)
        sys.exit(1)

    print(f"Starting gunicorn on 0.0.0.0:{port}", flush=True)
    os.execvp("gunicorn", _gunicorn_argv(port))


if __name__ == "__main__":
    main()
