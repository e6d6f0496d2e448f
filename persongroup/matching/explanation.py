"""Grouping explanations: packed score breakdowns and readable vision summaries."""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

from persongroup.io_utils import normalize_timestamp
from persongroup.types import VerificationOutcome

LOGGER = logging.getLogger("persongroup.matching.explanation")

SENTINEL_START = "\n\n===SCORE_BREAKDOWN_JSON_START===\n"
SENTINEL_END = "\n===SCORE_BREAKDOWN_JSON_END===\n"


def pack_explanation(explanation: Optional[str], details: Optional[Dict[str, Any]]) -> str:
    """Append a machine-readable JSON breakdown to a human explanation."""
    if not details:
        return explanation or ""
    try:
        serialized = json.dumps(details, default=str)
    except (TypeError, ValueError) as exc:
        LOGGER.warning("Failed to serialize grouping explanation details: %s", exc)
        return explanation or ""
    return f"{explanation or ''}{SENTINEL_START}{serialized}{SENTINEL_END}"


def unpack_explanation(packed: Optional[str]) -> Tuple[str, Optional[Dict[str, Any]]]:
    """Split a packed explanation into ``(text, details)``."""
    if not isinstance(packed, str) or not packed:
        return packed or "", None
    start = packed.find(SENTINEL_START)
    end = packed.find(SENTINEL_END)
    if start == -1 or end == -1 or end <= start:
        return packed, None
    text = packed[:start].rstrip()
    json_slice = packed[start + len(SENTINEL_START):end].strip()
    details = None
    if json_slice:
        try:
            details = json.loads(json_slice)
        except ValueError as exc:
            LOGGER.warning("Failed to parse grouping explanation details JSON: %s", exc)
    trailing = packed[end + len(SENTINEL_END):].strip()
    if trailing:
        text = f"{text}\n{trailing}".strip()
    return text, details


def _format_time(value: Optional[str]) -> str:
    normalized = normalize_timestamp(value)
    if normalized is None:
        return "time unknown"
    return datetime.fromisoformat(normalized).strftime("%Y-%m-%d %H:%M:%S")


def _sanitize(text: Any) -> str:
    if not isinstance(text, str):
        return ""
    return " ".join(text.split())


def build_vision_summary(outcome: Optional[VerificationOutcome]) -> str:
    if outcome is None:
        return ""
    if not outcome.applied:
        if outcome.reason in (None, "empty_shortlist", "disabled"):
            return ""
        if outcome.reason == "missing_candidate_image":
            return "Vision verification skipped: candidate image unavailable."
        return f"Vision verification skipped: {outcome.reason}."
    if not outcome.comparisons:
        return "Vision verification ran but produced no comparisons."

    lines = []
    for comparison in outcome.comparisons:
        if comparison.skipped:
            lines.append(
                f"Vision check skipped for group {comparison.group_id}: {comparison.reason or 'unknown reason'}."
            )
            continue
        reference = (
            f"capture #{comparison.reference_capture_id}"
            if comparison.reference_capture_id
            else f"group {comparison.group_id}"
        )
        if comparison.fatal_mismatch:
            status = f"fatal mismatch ({comparison.fatal_mismatch})"
        else:
            status = f"{comparison.score}% ({comparison.confidence or 'unknown'})"
        reasoning = _sanitize(comparison.explanation)
        reasoning_text = f" Reasoning: {reasoning}" if reasoning else ""
        lines.append(
            f"Vision check vs {reference} ({_format_time(comparison.reference_captured_at)}) "
            f"using new capture ({_format_time(comparison.new_captured_at)}): {status}.{reasoning_text}"
        )

    if outcome.approved_group_id is not None:
        lines.append(f"Vision approval: group {outcome.approved_group_id} confirmed.")
    else:
        lines.append("Vision verification rejected all shortlisted groups.")
    return " ".join(lines)
