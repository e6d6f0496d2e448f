#!/usr/bin/env python3
"""Report capture/group counts and check registry integrity."""

from __future__ import annotations

import argparse
import logging
import sys
from typing import List, Optional

from persongroup.config import add_config_arguments, config_from_args
from persongroup.io_utils import dumps_json, setup_logging
from persongroup.resolution.workflows import status_report
from persongroup.store import Database

LOGGER = logging.getLogger("scripts.db_status")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Show resolver database status")
    add_config_arguments(parser)
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging()
    config = config_from_args(args)

    report = status_report(Database(config.database_path, busy_timeout_s=config.busy_timeout_s))
    print(dumps_json(report))
    if not report["healthy"]:
        LOGGER.warning("Integrity problems found: %s", report["integrity"])
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
