#!/usr/bin/env python3
"""
Production startup script.

1. Runs migrations + seed (release.py)
2. Starts gunicorn (replaces this process via os.execvp)

Usage:
    python scripts/start.py
"""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

logger = logging.getLogger("ims.start")


def parse_port(raw: str | None) -> int:
    port = (raw or "").strip() or "8080"
    value = int(port)
    if value < 1 or value > 65535:
        raise ValueError("Port out of range")
    return value


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    if not (os.environ.get("PORT") or "").strip():
        logger.warning("PORT not set, using default 8080")
    try:
        port = parse_port(os.environ.get("PORT"))
    except ValueError:
        logger.error("Invalid PORT value %r. Must be integer 1-65535.", os.environ.get("PORT"))
        sys.exit(1)

    logger.info("=== Running release phase ===")
    from scripts.release import run_release

    try:
        run_release()
    except Exception:
        logger.exception("Release failed")
        sys.exit(1)

    logger.info("=== Starting gunicorn on 0.0.0.0:%s (health check at /healthz) ===", port)
    # exec keeps gunicorn as PID 1 for signal handling
    os.execvp(
        "gunicorn",
        [
            "gunicorn",
            "app.wsgi:app",
            "--bind", f"0.0.0.0:{port}",
            "--workers", "2",
            "--timeout", "60",
            "--preload",
            "--access-logfile", "-",
            "--error-logfile", "-",
        ],
    )


if __name__ == "__main__":
    main()
