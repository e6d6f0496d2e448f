#!/usr/bin/env python3
"""CLI for exporting the person-group table to CSV or Parquet."""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import List, Optional

from persongroup.config import add_config_arguments, config_from_args
from persongroup.export import export_groups
from persongroup.io_utils import setup_logging
from persongroup.store import Database

LOGGER = logging.getLogger("scripts.export_groups")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Export person groups to CSV or Parquet")
    parser.add_argument(
        "--output",
        type=Path,
        default=Path("data/person_groups.csv"),
        help="Output path; a .parquet suffix writes Parquet (default data/person_groups.csv)",
    )
    add_config_arguments(parser)
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> None:
    args = parse_args(argv)
    setup_logging()
    config = config_from_args(args)

    db = Database(config.database_path, busy_timeout_s=config.busy_timeout_s)
    output_path = export_groups(db, args.output)
    LOGGER.info("Group export written to %s", output_path)


if __name__ == "__main__":
    main()
