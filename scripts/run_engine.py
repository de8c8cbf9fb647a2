#!/usr/bin/env python3
"""
Run one scoring pass for a single user from the command line.

Uses the same configuration as the service (DATABASE_URL, OPENAI_API_KEY,
DISCOURSE_URL, ...). Exit code 0 on success, 2 on configuration errors,
1 on any other failure.

  python scripts/run_engine.py --platform discourse --user-id U --project-id P
"""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys

from signal_engine.engine import configure_logging, run_engine
from signal_engine.errors import ConfigurationError

logger = logging.getLogger("run_engine")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Score one user on one platform.")
    parser.add_argument("--platform", required=True, help="platform key, e.g. discourse")
    parser.add_argument("--user-id", required=True)
    parser.add_argument("--project-id", required=True)
    parser.add_argument("--signal", dest="signal_strength_name", default=None,
                        help="signal strength name (defaults to the platform's configured signal)")
    parser.add_argument("--force-smart", action="store_true",
                        help="regenerate yesterday's smart score even if one exists")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging()
    payload = {
        "platform": args.platform,
        "user_id": args.user_id,
        "project_id": args.project_id,
        "signal_strength_name": args.signal_strength_name,
        "force_smart": args.force_smart,
    }
    try:
        result = asyncio.run(run_engine(payload))
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return 2
    except Exception as e:
        logger.exception(f"Run failed: {e}")
        return 1
    print(json.dumps(result.to_dict(), indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
