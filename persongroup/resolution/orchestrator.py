"""Resolution state machine: match a capture to an existing group or create one.

Each call to :meth:`ResolutionOrchestrator.resolve` walks

    UNRESOLVED -> EVALUATING -> {MATCHED_EXISTING | CREATED_NEW} -> COMMITTED

or ends in ABORTED when vision verification fails. Every state has one
transition method; the networking lives behind the shortlister and verifier,
so the accept/reject/abort logic can be driven with fakes.

Commits re-read the capture inside a ``BEGIN IMMEDIATE`` transaction. If a
concurrent request grouped it first, the existing assignment is returned
unchanged. New group ids come from the allocator before the transaction opens;
an id left unused by a lost race is a gap, never a reuse.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from persongroup.config import ResolverConfig, bound_threshold
from persongroup.errors import InvalidCaptureError, StorageError, VerificationError
from persongroup.matching.explanation import build_vision_summary, pack_explanation
from persongroup.matching.shortlist import CandidateShortlister, select_match
from persongroup.matching.verifier import VisionVerifier
from persongroup.store import CaptureStore, Database, GroupRegistry, IdentifierAllocator
from persongroup.types import (
    CandidateGroup,
    Capture,
    ResolutionResult,
    ResolutionState,
    ShortlistEntry,
    VerificationOutcome,
)

LOGGER = logging.getLogger("persongroup.resolution.orchestrator")

TERMINAL_STATES = (ResolutionState.COMMITTED, ResolutionState.ABORTED)


@dataclass
class ResolutionAttempt:
    """Mutable working state of one resolution request."""

    capture_id: int
    force: bool
    threshold: int
    state: ResolutionState = ResolutionState.UNRESOLVED
    capture: Optional[Capture] = None
    shortlist: List[ShortlistEntry] = field(default_factory=list)
    verification: Optional[VerificationOutcome] = None
    target_group_id: Optional[int] = None
    target_probability: Optional[int] = None
    result: Optional[ResolutionResult] = None

    def finish(self, **kwargs: Any) -> ResolutionState:
        self.result = ResolutionResult(
            capture_id=self.capture_id,
            threshold=self.threshold,
            shortlist=list(self.shortlist),
            verification=self.verification,
            **kwargs,
        )
        return self.result.state

    @property
    def best(self) -> Optional[ShortlistEntry]:
        return self.shortlist[0] if self.shortlist else None


class ResolutionOrchestrator:
    def __init__(
        self,
        db: Database,
        shortlister: CandidateShortlister,
        verifier: Optional[VisionVerifier] = None,
        config: Optional[ResolverConfig] = None,
    ) -> None:
        self.db = db
        self.config = config or ResolverConfig()
        self.captures = CaptureStore(db)
        self.groups = GroupRegistry(db)
        self.allocator = IdentifierAllocator(db)
        self.shortlister = shortlister
        self.verifier = verifier if self.config.vision_enabled else None
        self._transitions: Dict[ResolutionState, Callable[[ResolutionAttempt], ResolutionState]] = {
            ResolutionState.UNRESOLVED: self._on_unresolved,
            ResolutionState.EVALUATING: self._on_evaluating,
            ResolutionState.MATCHED_EXISTING: self._on_matched_existing,
            ResolutionState.CREATED_NEW: self._on_created_new,
        }

    @classmethod
    def from_config(cls, config: ResolverConfig, classifier, comparator=None) -> "ResolutionOrchestrator":
        db = Database(config.database_path, busy_timeout_s=config.busy_timeout_s)
        shortlister = CandidateShortlister(classifier, timeout_s=config.classifier_timeout_s)
        verifier = None
        if comparator is not None:
            verifier = VisionVerifier(
                comparator,
                shortlist_limit=config.vision_shortlist_limit,
                accept_similarity=config.vision_accept_similarity,
                accept_confidence=config.vision_accept_confidence,
                timeout_s=config.comparator_timeout_s,
            )
        return cls(db, shortlister, verifier=verifier, config=config)

    def resolve(self, capture_id: int, force: bool = False, threshold: Optional[Any] = None) -> ResolutionResult:
        """Resolve one capture.

        Raises :class:`InvalidCaptureError` for input problems (before any
        external call) and :class:`StorageError` when a commit fails. External
        verification failures are reported as an ``aborted`` result.
        """
        attempt = ResolutionAttempt(
            capture_id=capture_id,
            force=bool(force),
            threshold=(
                bound_threshold(threshold, self.config.match_threshold)
                if threshold is not None
                else self.config.match_threshold
            ),
        )
        while attempt.state not in TERMINAL_STATES:
            previous = attempt.state
            attempt.state = self._transitions[previous](attempt)
            LOGGER.debug("Capture %d: %s -> %s", capture_id, previous.value, attempt.state.value)
        return attempt.result

    # Transitions

    def _on_unresolved(self, attempt: ResolutionAttempt) -> ResolutionState:
        capture = self.captures.require(attempt.capture_id)
        if not capture.has_description:
            raise InvalidCaptureError(
                f"Capture {capture.id} has no structured description; describe it before grouping"
            )
        if not (capture.image_ref or "").strip():
            raise InvalidCaptureError(f"Capture {capture.id} is missing its image reference")
        attempt.capture = capture

        if capture.group_id is not None and not attempt.force:
            return self._finish_existing(attempt, capture.group_id, note="already_assigned")

        if capture.group_id is not None:
            pinned = self.groups.find_by_representative(capture.id)
            if pinned is not None:
                LOGGER.info("Capture %d represents group %d; forced re-resolution keeps it", capture.id, pinned.id)
                return self._finish_existing(attempt, pinned.id, note="representative_pinned")
        return ResolutionState.EVALUATING

    def _on_evaluating(self, attempt: ResolutionAttempt) -> ResolutionState:
        capture = attempt.capture
        representatives: Dict[int, Optional[Capture]] = {}
        candidates: List[CandidateGroup] = []
        for entry in self.groups.list_with_representatives():
            representative = entry.representative
            if representative is None or representative.id == capture.id:
                continue
            canonical = representative.canonical_description()
            if canonical is None:
                continue
            representatives[entry.group.id] = representative
            candidates.append(CandidateGroup(entry.group.id, canonical))

        attempt.shortlist = self.shortlister.score(capture.description_schema, candidates)
        if not attempt.shortlist:
            LOGGER.info("Capture %d: no existing groups to compare against", capture.id)
            return ResolutionState.CREATED_NEW

        if self.verifier is not None:
            worth_checking = [entry for entry in attempt.shortlist if entry.probability > 0]
            try:
                attempt.verification = self.verifier.verify(capture, worth_checking, representatives)
            except VerificationError as exc:
                attempt.verification = VerificationOutcome(
                    comparisons=exc.comparisons, applied=True, reason="vision_error"
                )
                LOGGER.warning("Capture %d: resolution aborted: %s", capture.id, exc)
                return attempt.finish(state=ResolutionState.ABORTED, reason=str(exc))
            if attempt.verification.approved_group_id is not None:
                approved = attempt.verification.approved_group_id
                attempt.target_group_id = approved
                attempt.target_probability = next(
                    (e.probability for e in attempt.shortlist if e.group_id == approved), None
                )
                return ResolutionState.MATCHED_EXISTING

        match = select_match(attempt.shortlist, attempt.threshold)
        if match is not None and not self._contradicted(attempt.verification, match.group_id):
            attempt.target_group_id = match.group_id
            attempt.target_probability = match.probability
            return ResolutionState.MATCHED_EXISTING

        if match is not None:
            LOGGER.info(
                "Capture %d: shortlist match group %d (%d) vetoed by vision verification",
                capture.id,
                match.group_id,
                match.probability,
            )
        return ResolutionState.CREATED_NEW

    def _on_matched_existing(self, attempt: ResolutionAttempt) -> ResolutionState:
        target = attempt.target_group_id
        explanation = self._explain(attempt, decision="matched_existing")
        with self.db.transaction() as conn:
            current = self.captures.require(attempt.capture_id, conn=conn)
            settled = self._settled_concurrently(attempt, current, conn)
            if settled is not None:
                return settled
            if self.groups.get(target, conn=conn) is None:
                raise InvalidCaptureError(f"Matched group {target} no longer exists")
            previous = current.group_id
            if not self.captures.assign_group(
                conn, current.id, target, previous, attempt.target_probability, explanation
            ):
                raise StorageError(f"Capture {current.id} changed while assigning group {target}")
            if previous != target:
                if previous is not None:
                    self.groups.adjust_member_count(conn, previous, -1)
                self.groups.adjust_member_count(conn, target, +1)
            group = self.groups.get(target, conn=conn)
        LOGGER.info(
            "Capture %d matched group %d (%s) probability=%s",
            attempt.capture_id,
            group.id,
            group.label,
            attempt.target_probability,
        )
        return attempt.finish(state=ResolutionState.COMMITTED, matched=True, group=group)

    def _on_created_new(self, attempt: ResolutionAttempt) -> ResolutionState:
        new_id = self.allocator.allocate()
        best = attempt.best
        explanation = self._explain(attempt, decision="created_new")
        with self.db.transaction() as conn:
            current = self.captures.require(attempt.capture_id, conn=conn)
            settled = self._settled_concurrently(attempt, current, conn)
            if settled is not None:
                LOGGER.info("Allocated group id %d left unused for capture %d", new_id, current.id)
                return settled
            previous = current.group_id
            group = self.groups.insert(conn, new_id, current.id)
            if not self.captures.assign_group(
                conn, current.id, new_id, previous, best.probability if best else None, explanation
            ):
                raise StorageError(f"Capture {current.id} changed while creating group {new_id}")
            if previous is not None:
                self.groups.adjust_member_count(conn, previous, -1)
        LOGGER.info("Capture %d created group %d (%s)", attempt.capture_id, group.id, group.label)
        return attempt.finish(state=ResolutionState.COMMITTED, created=True, group=group)

    # Helpers

    def _finish_existing(self, attempt: ResolutionAttempt, group_id: int, note: str) -> ResolutionState:
        group = self.groups.get(group_id)
        return attempt.finish(state=ResolutionState.COMMITTED, matched=True, group=group, note=note)

    def _settled_concurrently(
        self, attempt: ResolutionAttempt, current: Capture, conn: sqlite3.Connection
    ) -> Optional[ResolutionState]:
        """Finish early when another request changed this capture since evaluation."""
        original = attempt.capture.group_id
        if current.group_id == original:
            if original is None or self.groups.find_by_representative(current.id, conn=conn) is None:
                return None
        LOGGER.info(
            "Capture %d was resolved concurrently (group %s); keeping existing assignment",
            current.id,
            current.group_id,
        )
        group = self.groups.get(current.group_id, conn=conn) if current.group_id is not None else None
        return attempt.finish(
            state=ResolutionState.COMMITTED, matched=group is not None, group=group, note="resolved_concurrently"
        )

    @staticmethod
    def _contradicted(verification: Optional[VerificationOutcome], group_id: int) -> bool:
        """True when vision verification looked at ``group_id`` and did not approve it."""
        if verification is None or not verification.applied:
            return False
        if verification.approved_group_id == group_id:
            return False
        return any(comparison.group_id == group_id for comparison in verification.comparisons)

    def _explain(self, attempt: ResolutionAttempt, decision: str) -> str:
        best = attempt.best
        parts = []
        if best is not None and best.explanation:
            parts.append(best.explanation)
        vision = build_vision_summary(attempt.verification)
        if vision:
            parts.append(vision)
        details = {
            "decision": decision,
            "threshold": attempt.threshold,
            "target_group_id": attempt.target_group_id,
            "shortlist": [entry.to_dict() for entry in attempt.shortlist],
            "comparisons": [
                comparison.to_dict()
                for comparison in (attempt.verification.comparisons if attempt.verification else [])
            ],
        }
        return pack_explanation(" ".join(parts), details)
