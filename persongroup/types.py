"""Common dataclasses and type aliases used across the persongroup package."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from persongroup.labels import int_to_label

Schema = Dict[str, Any]

CONFIDENCE_LEVELS = ("high", "medium", "low")


@dataclass
class Capture:
    """One analyzed photo as persisted by the description store."""

    id: int
    image_ref: Optional[str]
    description_schema: Optional[Schema] = None
    natural_summary: Optional[str] = None
    captured_at: Optional[str] = None
    created_at: Optional[str] = None
    group_id: Optional[int] = None
    role: str = "single"
    grouping_probability: Optional[int] = None
    grouping_explanation: Optional[str] = None

    @property
    def has_description(self) -> bool:
        return bool(self.description_schema)

    def canonical_description(self) -> Optional[Any]:
        """Comparison artifact for this capture: schema first, summary as fallback."""
        if self.description_schema:
            return self.description_schema
        if self.natural_summary and self.natural_summary.strip():
            return self.natural_summary.strip()
        return None

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "image_ref": self.image_ref,
            "description_schema": self.description_schema,
            "natural_summary": self.natural_summary,
            "captured_at": self.captured_at,
            "created_at": self.created_at,
            "group_id": self.group_id,
            "role": self.role,
            "grouping_probability": self.grouping_probability,
            "grouping_explanation": self.grouping_explanation,
        }


@dataclass
class Group:
    """Canonical identity bucket."""

    id: int
    representative_capture_id: int
    member_count: int = 0
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @property
    def label(self) -> str:
        return int_to_label(self.id)

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "label": self.label,
            "representative_capture_id": self.representative_capture_id,
            "member_count": self.member_count,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass(frozen=True)
class CandidateGroup:
    """A group offered to the shortlister, described by its representative."""

    id: int
    canonical_description: Any


@dataclass
class ShortlistEntry:
    group_id: int
    probability: int
    explanation: str = ""

    def to_dict(self) -> Dict:
        return {
            "group_id": self.group_id,
            "probability": self.probability,
            "explanation": self.explanation,
        }


@dataclass
class ComparisonResult:
    """Outcome of one pairwise visual comparison, or a skipped candidate."""

    group_id: int
    probability: Optional[int] = None
    score: Optional[int] = None
    confidence: Optional[str] = None
    fatal_mismatch: Optional[str] = None
    explanation: str = ""
    skipped: bool = False
    reason: Optional[str] = None
    reference_capture_id: Optional[int] = None
    reference_captured_at: Optional[str] = None
    new_captured_at: Optional[str] = None

    def to_dict(self) -> Dict:
        payload: Dict[str, Any] = {
            "group_id": self.group_id,
            "probability": self.probability,
        }
        if self.skipped:
            payload.update({"skipped": True, "reason": self.reason})
            return payload
        payload.update(
            {
                "similarity": self.score,
                "confidence": self.confidence,
                "fatal_mismatch": self.fatal_mismatch,
                "explanation": self.explanation,
                "reference_capture_id": self.reference_capture_id,
                "reference_captured_at": self.reference_captured_at,
                "new_captured_at": self.new_captured_at,
            }
        )
        return payload


@dataclass
class VerificationOutcome:
    approved_group_id: Optional[int] = None
    comparisons: List[ComparisonResult] = field(default_factory=list)
    applied: bool = False
    reason: Optional[str] = None


class ResolutionState(str, Enum):
    UNRESOLVED = "unresolved"
    EVALUATING = "evaluating"
    MATCHED_EXISTING = "matched_existing"
    CREATED_NEW = "created_new"
    COMMITTED = "committed"
    ABORTED = "aborted"


@dataclass
class ResolutionResult:
    """What the caller of the resolver receives for one capture."""

    capture_id: int
    state: ResolutionState
    matched: bool = False
    created: bool = False
    group: Optional[Group] = None
    threshold: int = 75
    shortlist: List[ShortlistEntry] = field(default_factory=list)
    verification: Optional[VerificationOutcome] = None
    reason: Optional[str] = None
    note: Optional[str] = None

    @property
    def status(self) -> str:
        if self.state == ResolutionState.ABORTED:
            return "aborted"
        if self.created:
            return "created"
        return "matched"

    @property
    def group_id(self) -> Optional[int]:
        return self.group.id if self.group is not None else None

    def to_dict(self) -> Dict:
        return {
            "capture_id": self.capture_id,
            "status": self.status,
            "matched": self.matched,
            "created": self.created,
            "threshold": self.threshold,
            "group": self.group.to_dict() if self.group is not None else None,
            "shortlist": [entry.to_dict() for entry in self.shortlist],
            "comparisons": [
                comparison.to_dict()
                for comparison in (self.verification.comparisons if self.verification else [])
            ],
            "reason": self.reason,
            "note": self.note,
        }


@dataclass
class DescriptionResult:
    schema: Schema
    natural_summary: str


def clamp_score(value: Any, default: int = 0) -> int:
    """Coerce a 0-100 score; non-numeric input yields ``default``."""
    if isinstance(value, bool):
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if math.isnan(number):
        return default
    if math.isinf(number):
        return 100 if number > 0 else 0
    return int(max(0, min(100, round(number))))


def parse_group_id(value: Any) -> Optional[int]:
    """Parse a group id emitted by an external service; ``None`` when unusable."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value > 0 else None
    if isinstance(value, float):
        if math.isnan(value) or not value.is_integer():
            return None
        return int(value) if value > 0 else None
    if isinstance(value, str):
        text = value.strip()
        if not text.lstrip("-").isdigit():
            return None
        parsed = int(text)
        return parsed if parsed > 0 else None
    return None


def normalize_confidence(value: Any) -> str:
    if isinstance(value, str) and value.strip().lower() in CONFIDENCE_LEVELS:
        return value.strip().lower()
    return "medium"
