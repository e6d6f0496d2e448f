"""Candidate shortlisting via the external grouping classifier."""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from persongroup.errors import ExternalServiceError, ExternalTimeoutError
from persongroup.io_utils import run_with_timeout
from persongroup.types import CandidateGroup, ShortlistEntry, clamp_score, parse_group_id

LOGGER = logging.getLogger("persongroup.matching.shortlist")

ScoreMap = Dict[int, Tuple[int, str]]


def _iter_rows(raw: Any) -> Iterable[Dict[str, Any]]:
    """Yield score rows from the shapes a classifier may return."""
    if isinstance(raw, list):
        for row in raw:
            if isinstance(row, dict):
                yield row
        return
    if not isinstance(raw, dict):
        return
    for key in ("scores", "groups", "results"):
        rows = raw.get(key)
        if isinstance(rows, list):
            yield from _iter_rows(rows)
            return
    if "best_group_id" in raw:
        yield {
            "group_id": raw.get("best_group_id"),
            "probability": raw.get("best_group_probability"),
            "explanation": raw.get("explanation"),
        }
        return
    if "group_id" in raw:
        yield raw


def parse_classifier_output(raw: Any, candidate_ids: Set[int]) -> ScoreMap:
    """Strictly parse classifier output into ``{group_id: (probability, explanation)}``.

    Rows whose group id is missing, unparsable, or not a candidate are dropped.
    Probabilities are clamped into [0, 100]; non-numeric ones count as 0. When a
    group appears twice the higher probability wins.
    """
    scores: ScoreMap = {}
    for row in _iter_rows(raw):
        group_id = parse_group_id(row.get("group_id", row.get("id")))
        if group_id is None or group_id not in candidate_ids:
            LOGGER.debug("Dropping classifier row with unusable group id: %r", row)
            continue
        probability = clamp_score(row.get("probability", row.get("score")))
        explanation = row.get("explanation")
        explanation = explanation.strip() if isinstance(explanation, str) else ""
        previous = scores.get(group_id)
        if previous is None or probability > previous[0]:
            scores[group_id] = (probability, explanation)
    return scores


def rank_entries(entries: Iterable[ShortlistEntry]) -> List[ShortlistEntry]:
    """Probability descending, ties by ascending group id."""
    return sorted(entries, key=lambda entry: (-entry.probability, entry.group_id))


def select_match(entries: Sequence[ShortlistEntry], threshold: int) -> Optional[ShortlistEntry]:
    """Top-ranked entry if it meets ``threshold`` (inclusive), else None."""
    ranked = rank_entries(entries)
    if not ranked:
        return None
    top = ranked[0]
    return top if top.probability >= threshold else None


class CandidateShortlister:
    """Scores a new description against candidate groups.

    The classifier is asked once for the whole candidate set. If that call
    fails the candidates are scored one by one, and a candidate whose own call
    fails scores 0 instead of aborting the shortlist. A timed-out batch call
    scores every candidate 0 without falling back.
    """

    def __init__(self, classifier, timeout_s: Optional[float] = 30.0) -> None:
        self.classifier = classifier
        self.timeout_s = timeout_s

    def score(self, new_description: Any, candidates: Sequence[CandidateGroup]) -> List[ShortlistEntry]:
        if not candidates:
            return []
        candidate_ids = {c.id for c in candidates}
        failures: Dict[int, str] = {}

        try:
            scores = self._call(new_description, candidates)
        except ExternalTimeoutError as exc:
            # No per-candidate retries: the timeout must bound the whole shortlist.
            LOGGER.warning("Batched classifier call timed out for %d candidates (%s)", len(candidates), exc)
            scores, failures = {}, {c.id: "timeout" for c in candidates}
        except ExternalServiceError as exc:
            LOGGER.warning(
                "Batched classifier call failed for %d candidates (%s); scoring individually",
                len(candidates),
                exc,
            )
            scores, failures = self._score_individually(new_description, candidates)

        entries = []
        for candidate in candidates:
            if candidate.id in failures:
                entries.append(
                    ShortlistEntry(candidate.id, 0, f"classifier_error: {failures[candidate.id]}")
                )
                continue
            probability, explanation = scores.get(candidate.id, (0, "no score returned"))
            entries.append(ShortlistEntry(candidate.id, probability, explanation))

        ranked = rank_entries(entries)
        LOGGER.info(
            "Shortlist scored %d candidates: %s",
            len(candidate_ids),
            ", ".join(f"{e.group_id}={e.probability}" for e in ranked[:5]),
        )
        return ranked

    def _call(self, new_description: Any, candidates: Sequence[CandidateGroup]) -> ScoreMap:
        payload = [{"id": c.id, "canonical_description": c.canonical_description} for c in candidates]
        raw = run_with_timeout(self.classifier.score_groups, self.timeout_s, new_description, payload)
        return parse_classifier_output(raw, {c.id for c in candidates})

    def _score_individually(
        self, new_description: Any, candidates: Sequence[CandidateGroup]
    ) -> Tuple[ScoreMap, Dict[int, str]]:
        scores: ScoreMap = {}
        failures: Dict[int, str] = {}
        for candidate in candidates:
            try:
                scores.update(self._call(new_description, [candidate]))
            except ExternalServiceError as exc:
                LOGGER.warning("Classifier call failed for group %d: %s", candidate.id, exc)
                failures[candidate.id] = str(exc)
        return scores, failures
