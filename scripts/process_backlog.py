#!/usr/bin/env python3
"""
CLI utility to convert every proof currently in SAVED_PROOFS_DIR, then exit.

Useful for re-running files that failed while the service was up, without
starting the long-lived watcher.

Usage:
    SAVED_PROOFS_DIR=/data/saved_proofs python scripts/process_backlog.py
"""

import argparse
import asyncio
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.main import serve
from proofbridge_core.config import settings
from proofbridge_core.logging import setup_logging


def main():
    parser = argparse.ArgumentParser(description="Convert the current proof backlog and exit")
    parser.add_argument(
        "--log-level",
        default=None,
        help="Override log level (defaults to settings.LOG_LEVEL)",
    )
    args = parser.parse_args()

    setup_logging(level=args.log_level or settings.LOG_LEVEL, json_output=settings.LOG_JSON)
    sys.exit(asyncio.run(serve(watch=False)))


if __name__ == "__main__":
    main()
