#!/usr/bin/env python3
"""Re-run the describer for captures missing a structured description."""

from __future__ import annotations

import argparse
import logging
import sys
from typing import List, Optional

from persongroup.config import add_config_arguments, config_from_args
from persongroup.errors import PersonGroupError
from persongroup.io_utils import dumps_json, setup_logging
from persongroup.resolution import ResolutionOrchestrator
from persongroup.resolution.workflows import REFRESH_DEFAULT_LIMIT, refresh_descriptions
from persongroup.services.openai_services import build_services

LOGGER = logging.getLogger("scripts.refresh_descriptions")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Refresh missing capture descriptions")
    parser.add_argument(
        "--limit",
        type=int,
        default=REFRESH_DEFAULT_LIMIT,
        help="Maximum captures to refresh (1-200, default 50)",
    )
    parser.add_argument("--resolve", action="store_true", help="Resolve ungrouped captures once described")
    parser.add_argument("--no-progress", action="store_true", help="Hide the progress bar")
    add_config_arguments(parser)
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging()
    config = config_from_args(args)

    try:
        describer, classifier, comparator = build_services(config)
    except PersonGroupError as exc:
        LOGGER.error("Cannot start refresh: %s", exc)
        return 1
    orchestrator = ResolutionOrchestrator.from_config(config, classifier, comparator)
    report = refresh_descriptions(
        orchestrator,
        describer,
        limit=args.limit,
        resolve=args.resolve,
        progress=not args.no_progress,
    )
    print(dumps_json(report.to_dict()))
    return 0 if not report.failures else 1


if __name__ == "__main__":
    sys.exit(main())
