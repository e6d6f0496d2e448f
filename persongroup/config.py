"""Resolver configuration: YAML file, then environment overrides, then CLI."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from dotenv import load_dotenv

from persongroup.io_utils import load_yaml

LOGGER = logging.getLogger("persongroup.config")

DEFAULT_CONFIG_PATH = Path("configs/resolver.yaml")
DEFAULT_MATCH_THRESHOLD = 75
DEFAULT_VISION_SHORTLIST_LIMIT = 3
DEFAULT_VISION_ACCEPT_SIMILARITY = 90
VISION_CONFIDENCE_CHOICES = ("high", "any")

ENV_OVERRIDES = {
    "MATCH_THRESHOLD": "match_threshold",
    "VISION_SHORTLIST_LIMIT": "vision_shortlist_limit",
    "VISION_ACCEPT_SIMILARITY": "vision_accept_similarity",
    "VISION_ACCEPT_CONFIDENCE": "vision_accept_confidence",
    "VISION_ENABLED": "vision_enabled",
    "PERSONGROUP_DB": "database_path",
    "PERSONGROUP_MODEL": "model",
}


@dataclass(frozen=True)
class ResolverConfig:
    match_threshold: int = DEFAULT_MATCH_THRESHOLD
    vision_enabled: bool = True
    vision_shortlist_limit: int = DEFAULT_VISION_SHORTLIST_LIMIT
    vision_accept_similarity: int = DEFAULT_VISION_ACCEPT_SIMILARITY
    vision_accept_confidence: str = "high"
    # Caller-enforced timeouts for external calls (seconds)
    classifier_timeout_s: float = 30.0
    comparator_timeout_s: float = 45.0
    describer_timeout_s: float = 45.0
    database_path: str = "data/persongroup.sqlite3"
    busy_timeout_s: float = 30.0
    model: str = "gpt-4o-mini"
    max_image_side: int = 768


def bound_threshold(value: Any, default: int = DEFAULT_MATCH_THRESHOLD) -> int:
    """Round and clamp a 0-100 threshold; non-numeric input yields ``default``."""
    if isinstance(value, bool):
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if number != number:
        return default
    return int(min(100, max(0, round(number))))


def _parse_bool(value: Any, default: bool) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return default
    text = str(value).strip().lower()
    if text in {"1", "true", "yes", "on"}:
        return True
    if text in {"0", "false", "no", "off"}:
        return False
    return default


def _coerce(name: str, raw: Any) -> Any:
    defaults = ResolverConfig()
    default = getattr(defaults, name)
    if name == "match_threshold":
        return bound_threshold(raw, default)
    if name == "vision_accept_similarity":
        try:
            number = float(raw)
        except (TypeError, ValueError):
            number = float("nan")
        if not 0 <= number <= 100:
            LOGGER.warning("Ignoring vision_accept_similarity=%r (expected 0-100)", raw)
            return default
        return int(round(number))
    if name == "vision_shortlist_limit":
        try:
            number = int(float(raw))
        except (TypeError, ValueError):
            number = 0
        if number <= 0:
            LOGGER.warning("Ignoring vision_shortlist_limit=%r (expected positive integer)", raw)
            return default
        return number
    if name == "vision_accept_confidence":
        text = str(raw or "").strip().lower()
        if text not in VISION_CONFIDENCE_CHOICES:
            LOGGER.warning("Ignoring vision_accept_confidence=%r (expected high|any)", raw)
            return default
        return text
    if isinstance(default, bool):
        return _parse_bool(raw, default)
    if isinstance(default, float):
        try:
            number = float(raw)
        except (TypeError, ValueError):
            return default
        return number if number > 0 else default
    if isinstance(default, int):
        try:
            number = int(float(raw))
        except (TypeError, ValueError):
            return default
        return number if number > 0 else default
    return str(raw)


def config_from_mapping(data: Mapping[str, Any], base: Optional[ResolverConfig] = None) -> ResolverConfig:
    """Apply recognized keys from ``data`` on top of ``base``; unknown keys are ignored."""
    base = base or ResolverConfig()
    known = {f.name for f in fields(ResolverConfig)}
    updates: Dict[str, Any] = {}
    for key, raw in data.items():
        if key not in known:
            LOGGER.debug("Ignoring unknown config key %s", key)
            continue
        if raw is None:
            continue
        updates[key] = _coerce(key, raw)
    return replace(base, **updates)


def load_config(
    path: Optional[Path] = None,
    env: Optional[Mapping[str, str]] = None,
    overrides: Optional[Mapping[str, Any]] = None,
) -> ResolverConfig:
    """Build the effective config.

    Precedence (lowest first): dataclass defaults, YAML file, environment,
    explicit ``overrides`` (CLI flags).
    """
    if env is None:
        load_dotenv()
        env = os.environ

    config = ResolverConfig()
    config_path = path if path is not None else DEFAULT_CONFIG_PATH
    if config_path.exists():
        payload = load_yaml(config_path)
        section = payload.get("resolver", payload)
        config = config_from_mapping(section, config)
    elif path is not None:
        raise FileNotFoundError(f"Config file not found: {path}")

    env_values = {field_name: env[key] for key, field_name in ENV_OVERRIDES.items() if env.get(key)}
    if env_values:
        LOGGER.debug("Applying environment overrides: %s", sorted(env_values))
        config = config_from_mapping(env_values, config)

    if overrides:
        config = config_from_mapping(overrides, config)
    return config


def add_config_arguments(parser) -> None:
    """Register the flags shared by every CLI (config file, database, threshold)."""
    parser.add_argument("--config", type=Path, default=None, help="Resolver YAML config (default configs/resolver.yaml)")
    parser.add_argument("--db", dest="database_path", default=None, help="SQLite database path")
    parser.add_argument("--threshold", dest="match_threshold", type=float, default=None, help="Match threshold 0-100")
    parser.add_argument(
        "--no-vision",
        dest="vision_enabled",
        action="store_false",
        default=None,
        help="Disable vision verification of shortlisted groups",
    )


def config_from_args(args) -> ResolverConfig:
    overrides = {
        name: getattr(args, name, None)
        for name in ("database_path", "match_threshold", "vision_enabled")
        if getattr(args, name, None) is not None
    }
    return load_config(getattr(args, "config", None), overrides=overrides)
