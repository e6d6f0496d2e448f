"""Image-grounded second opinion on the strongest shortlist candidates."""

from __future__ import annotations

import logging
import math
from typing import Any, Dict, Mapping, Optional, Sequence

from persongroup.errors import ExternalServiceError, VerificationError
from persongroup.io_utils import run_with_timeout
from persongroup.matching.shortlist import rank_entries
from persongroup.types import (
    Capture,
    ComparisonResult,
    ShortlistEntry,
    VerificationOutcome,
    clamp_score,
    normalize_confidence,
)

LOGGER = logging.getLogger("persongroup.matching.verifier")


def comparison_context(capture: Capture) -> Dict[str, Any]:
    return {
        "capture_id": capture.id,
        "description_schema": capture.description_schema,
        "natural_summary": capture.natural_summary,
        "captured_at": capture.captured_at,
    }


def parse_comparator_output(raw: Any) -> Dict[str, Any]:
    """Validate a comparator response; a missing numeric similarity is an error."""
    if not isinstance(raw, Mapping):
        raise ExternalServiceError(f"Comparator returned {type(raw).__name__}, expected an object")
    similarity = raw.get("similarity")
    if isinstance(similarity, bool) or not isinstance(similarity, (int, float)) or math.isnan(similarity):
        raise ExternalServiceError("Comparator response missing similarity value")
    fatal = raw.get("fatal_mismatch", raw.get("fatalMismatch"))
    fatal = fatal.strip() if isinstance(fatal, str) and fatal.strip() else None
    explanation = raw.get("explanation", raw.get("reasoning"))
    return {
        "similarity": clamp_score(similarity),
        "confidence": normalize_confidence(raw.get("confidence")),
        "fatal_mismatch": fatal,
        "explanation": explanation if isinstance(explanation, str) else "No reasoning provided",
    }


class VisionVerifier:
    """Pairwise visual comparison against group representatives, most likely first.

    Stops at the first candidate that clears the similarity floor with the
    required confidence and no fatal mismatch. A comparator failure aborts the
    whole pass with :class:`VerificationError`.
    """

    def __init__(
        self,
        comparator,
        shortlist_limit: int = 3,
        accept_similarity: int = 90,
        accept_confidence: str = "high",
        timeout_s: Optional[float] = 45.0,
    ) -> None:
        self.comparator = comparator
        self.shortlist_limit = max(1, int(shortlist_limit))
        self.accept_similarity = accept_similarity
        self.accept_confidence = accept_confidence
        self.timeout_s = timeout_s

    def accepts(self, comparison: ComparisonResult) -> bool:
        if comparison.skipped or comparison.score is None:
            return False
        passes_similarity = comparison.score >= self.accept_similarity
        passes_confidence = self.accept_confidence == "any" or comparison.confidence == "high"
        return passes_similarity and passes_confidence and comparison.fatal_mismatch is None

    def verify(
        self,
        new_capture: Capture,
        shortlist: Sequence[ShortlistEntry],
        representatives: Mapping[int, Optional[Capture]],
    ) -> VerificationOutcome:
        if not shortlist:
            return VerificationOutcome(applied=False, reason="empty_shortlist")
        if not (new_capture.image_ref or "").strip():
            return VerificationOutcome(applied=False, reason="missing_candidate_image")

        outcome = VerificationOutcome(applied=True)
        ranked = rank_entries(shortlist)
        limit = max(1, min(self.shortlist_limit, len(ranked)))

        for entry in ranked[:limit]:
            representative = representatives.get(entry.group_id)
            if representative is None:
                outcome.comparisons.append(
                    ComparisonResult(
                        group_id=entry.group_id,
                        probability=entry.probability,
                        skipped=True,
                        reason="missing_reference_image",
                    )
                )
                continue
            if not (representative.image_ref or "").strip():
                outcome.comparisons.append(
                    ComparisonResult(
                        group_id=entry.group_id,
                        probability=entry.probability,
                        skipped=True,
                        reason="missing_reference_payload",
                        reference_capture_id=representative.id,
                    )
                )
                continue

            try:
                raw = run_with_timeout(
                    self.comparator.compare,
                    self.timeout_s,
                    new_capture.image_ref,
                    representative.image_ref,
                    comparison_context(new_capture),
                    comparison_context(representative),
                )
                parsed = parse_comparator_output(raw)
            except ExternalServiceError as exc:
                LOGGER.error("Vision comparison failed for group %d: %s", entry.group_id, exc)
                raise VerificationError(
                    f"Vision comparison failed for group {entry.group_id}: {exc}",
                    group_id=entry.group_id,
                    comparisons=outcome.comparisons,
                ) from exc

            comparison = ComparisonResult(
                group_id=entry.group_id,
                probability=entry.probability,
                score=parsed["similarity"],
                confidence=parsed["confidence"],
                fatal_mismatch=parsed["fatal_mismatch"],
                explanation=parsed["explanation"],
                reference_capture_id=representative.id,
                reference_captured_at=representative.captured_at or representative.created_at,
                new_captured_at=new_capture.captured_at or new_capture.created_at,
            )
            outcome.comparisons.append(comparison)
            LOGGER.info(
                "Vision check capture %d vs group %d: similarity=%d confidence=%s fatal=%s",
                new_capture.id,
                entry.group_id,
                comparison.score,
                comparison.confidence,
                comparison.fatal_mismatch,
            )

            if self.accepts(comparison):
                outcome.approved_group_id = entry.group_id
                return outcome

        return outcome
