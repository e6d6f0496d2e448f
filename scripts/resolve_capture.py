#!/usr/bin/env python3
"""Resolve a stored capture to an existing or new person group."""

from __future__ import annotations

import argparse
import logging
import sys
from typing import List, Optional

from persongroup.config import add_config_arguments, config_from_args
from persongroup.errors import InvalidCaptureError, PersonGroupError
from persongroup.io_utils import dumps_json, setup_logging
from persongroup.resolution import ResolutionOrchestrator
from persongroup.services.openai_services import build_services

LOGGER = logging.getLogger("scripts.resolve_capture")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Assign a person group to a stored capture")
    parser.add_argument("capture_ids", type=int, nargs="*", help="Capture id(s) to resolve")
    parser.add_argument("--pending", action="store_true", help="Also resolve every described, ungrouped capture")
    parser.add_argument("--force", action="store_true", help="Re-resolve captures that already have a group")
    add_config_arguments(parser)
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging()
    config = config_from_args(args)

    try:
        _, classifier, comparator = build_services(config)
    except PersonGroupError as exc:
        LOGGER.error("Cannot start resolver: %s", exc)
        return 1
    orchestrator = ResolutionOrchestrator.from_config(config, classifier, comparator)

    capture_ids = list(args.capture_ids)
    if args.pending:
        capture_ids.extend(c.id for c in orchestrator.captures.list_ungrouped() if c.id not in capture_ids)
    if not capture_ids:
        LOGGER.warning("Nothing to resolve; pass capture ids or --pending")
        return 0

    exit_code = 0
    for capture_id in capture_ids:
        try:
            result = orchestrator.resolve(capture_id, force=args.force)
        except InvalidCaptureError as exc:
            LOGGER.error("Capture %d rejected: %s", capture_id, exc)
            exit_code = 2
            continue
        except PersonGroupError as exc:
            LOGGER.error("Capture %d failed: %s", capture_id, exc)
            exit_code = 1
            continue
        if result.status == "aborted":
            exit_code = max(exit_code, 1)
        print(dumps_json(result.to_dict()))
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
