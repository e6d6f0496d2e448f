#!/usr/bin/env python3
"""Store a new capture, describe it and resolve it to a person group."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from persongroup.config import add_config_arguments, config_from_args
from persongroup.errors import PersonGroupError
from persongroup.io_utils import dumps_json, setup_logging
from persongroup.resolution import ResolutionOrchestrator
from persongroup.resolution.workflows import ingest_capture
from persongroup.services.openai_services import build_services

LOGGER = logging.getLogger("scripts.ingest_capture")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Ingest a captured photo and assign it a person group")
    parser.add_argument("image", type=Path, help="Path to the cropped person photo")
    parser.add_argument("--captured-at", default=None, help="ISO-8601 capture time (defaults to unknown)")
    parser.add_argument("--role", default="single", help="Capture role label (default: single)")
    parser.add_argument("--no-resolve", action="store_true", help="Store and describe only")
    add_config_arguments(parser)
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging()
    config = config_from_args(args)

    if not args.image.exists():
        LOGGER.error("Image not found: %s", args.image)
        return 2

    try:
        describer, classifier, comparator = build_services(config)
        orchestrator = ResolutionOrchestrator.from_config(config, classifier, comparator)
        result = ingest_capture(
            orchestrator,
            str(args.image.resolve()),
            captured_at=args.captured_at,
            role=args.role,
            describer=describer,
            resolve=not args.no_resolve,
        )
    except PersonGroupError as exc:
        LOGGER.error("Ingest failed: %s", exc)
        return 1

    print(dumps_json(result.to_dict()))
    if result.resolution is not None and result.resolution.status == "aborted":
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
