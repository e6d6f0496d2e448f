#!/usr/bin/env python3
"""Show the closest other person groups for a capture."""

from __future__ import annotations

import argparse
import logging
import sys
from typing import List, Optional

from persongroup.config import add_config_arguments, config_from_args
from persongroup.errors import PersonGroupError
from persongroup.io_utils import dumps_json, setup_logging
from persongroup.resolution import ResolutionOrchestrator
from persongroup.resolution.workflows import NEIGHBOR_LIMIT, group_neighbors
from persongroup.services.openai_services import build_services

LOGGER = logging.getLogger("scripts.group_neighbors")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="List the nearest person groups for a capture")
    parser.add_argument("capture_id", type=int, help="Capture id to score")
    parser.add_argument("--limit", type=int, default=NEIGHBOR_LIMIT, help="Number of neighbors to return")
    add_config_arguments(parser)
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging()
    config = config_from_args(args)

    try:
        _, classifier, _ = build_services(config)
        orchestrator = ResolutionOrchestrator.from_config(config, classifier)
        neighbors = group_neighbors(orchestrator, args.capture_id, limit=max(1, args.limit))
    except (PersonGroupError, ValueError) as exc:
        LOGGER.error("Neighbor lookup failed: %s", exc)
        return 1

    print(dumps_json({"capture_id": args.capture_id, "neighbors": neighbors}))
    return 0


if __name__ == "__main__":
    sys.exit(main())
