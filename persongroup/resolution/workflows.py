"""Capture workflows built on the resolver: ingest, refresh, neighbors, status."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from tqdm import tqdm

from persongroup.errors import ExternalServiceError, PersonGroupError
from persongroup.io_utils import run_with_timeout
from persongroup.matching.clarity import extract_clarity
from persongroup.resolution.orchestrator import ResolutionOrchestrator
from persongroup.store import CaptureStore, Database, GroupRegistry, IdentifierAllocator
from persongroup.types import CandidateGroup, Capture, DescriptionResult, ResolutionResult

LOGGER = logging.getLogger("persongroup.resolution.workflows")

REFRESH_DEFAULT_LIMIT = 50
REFRESH_MAX_LIMIT = 200
NEIGHBOR_LIMIT = 3


@dataclass
class IngestResult:
    capture: Capture
    resolution: Optional[ResolutionResult] = None
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "capture_id": self.capture.id,
            "described": self.capture.has_description,
            "resolution": self.resolution.to_dict() if self.resolution is not None else None,
            "reason": self.reason,
        }


@dataclass
class RefreshReport:
    processed: int = 0
    updated: int = 0
    failures: List[Dict[str, Any]] = field(default_factory=list)
    resolutions: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "processed": self.processed,
            "updated": self.updated,
            "failures": list(self.failures),
            "resolutions": list(self.resolutions),
        }


def clamp_refresh_limit(value: Any) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return REFRESH_DEFAULT_LIMIT
    return max(1, min(REFRESH_MAX_LIMIT, number))


def describe_capture(describer, image_ref: str, timeout_s: Optional[float]) -> Optional[DescriptionResult]:
    """Describe one image; ``None`` when the describer produced nothing usable."""
    result = run_with_timeout(describer.describe, timeout_s, image_ref)
    if result is None or not result.schema or not (result.natural_summary or "").strip():
        return None
    return result


def ingest_capture(
    orchestrator: ResolutionOrchestrator,
    image_ref: str,
    captured_at: Any = None,
    role: Optional[str] = None,
    describer=None,
    resolve: bool = True,
) -> IngestResult:
    """Store a capture, describe it when a describer is available, then resolve it.

    A capture whose description cannot be produced stays stored and ungrouped.
    """
    if not (image_ref or "").strip():
        raise ValueError("image_ref is required")
    captures = orchestrator.captures
    capture = captures.insert(image_ref.strip(), captured_at=captured_at, role=role)

    if describer is None:
        return IngestResult(capture=capture, reason="no_describer")
    try:
        description = describe_capture(describer, capture.image_ref, orchestrator.config.describer_timeout_s)
    except ExternalServiceError as exc:
        LOGGER.warning("Describer failed for capture %d: %s", capture.id, exc)
        return IngestResult(capture=capture, reason=f"describer_error: {exc}")
    if description is None:
        LOGGER.warning("No description for capture %d; left ungrouped", capture.id)
        return IngestResult(capture=capture, reason="description_unavailable")

    capture = captures.update_description(capture.id, description.schema, description.natural_summary)
    if not resolve:
        return IngestResult(capture=capture)
    resolution = orchestrator.resolve(capture.id)
    return IngestResult(capture=captures.require(capture.id), resolution=resolution)


def refresh_descriptions(
    orchestrator: ResolutionOrchestrator,
    describer,
    limit: Any = REFRESH_DEFAULT_LIMIT,
    resolve: bool = False,
    progress: bool = True,
) -> RefreshReport:
    """Re-describe captures missing a schema or summary, newest first."""
    captures = orchestrator.captures
    pending = captures.list_missing_descriptions(clamp_refresh_limit(limit))
    report = RefreshReport(processed=len(pending))
    for capture in tqdm(pending, desc="Refreshing descriptions", disable=not progress):
        try:
            description = describe_capture(describer, capture.image_ref, orchestrator.config.describer_timeout_s)
        except ExternalServiceError as exc:
            report.failures.append({"id": capture.id, "reason": str(exc) or "unknown_error"})
            continue
        if description is None:
            report.failures.append({"id": capture.id, "reason": "empty_description_or_schema"})
            continue
        captures.update_description(capture.id, description.schema, description.natural_summary)
        report.updated += 1
        if resolve and capture.group_id is None:
            try:
                result = orchestrator.resolve(capture.id)
            except PersonGroupError as exc:
                report.failures.append({"id": capture.id, "reason": f"resolve_failed: {exc}"})
                continue
            report.resolutions.append(result.to_dict())
    LOGGER.info("Refreshed %d/%d description(s), %d failure(s)", report.updated, report.processed, len(report.failures))
    return report


def group_neighbors(orchestrator: ResolutionOrchestrator, capture_id: int, limit: int = NEIGHBOR_LIMIT) -> List[Dict[str, Any]]:
    """Score every other group against one capture, one classifier call per group."""
    capture = orchestrator.captures.require(capture_id)
    if not capture.has_description:
        raise ValueError(f"Capture {capture_id} has no structured description yet")

    scored = []
    for entry in orchestrator.groups.list_with_representatives():
        representative = entry.representative
        if representative is None or representative.id == capture.id:
            continue
        if entry.group.id == capture.group_id:
            continue
        canonical = representative.canonical_description()
        if canonical is None:
            continue
        ranked = orchestrator.shortlister.score(
            capture.description_schema, [CandidateGroup(entry.group.id, canonical)]
        )
        if not ranked or ranked[0].probability <= 0:
            continue
        scored.append(
            {
                "group_id": entry.group.id,
                "label": entry.group.label,
                "score": ranked[0].probability,
                "explanation": ranked[0].explanation,
                "member_count": entry.group.member_count,
                "representative_capture_id": representative.id,
                "representative_image_ref": representative.image_ref,
                "representative_captured_at": representative.captured_at,
                "representative_created_at": representative.created_at,
            }
        )
    scored.sort(key=lambda row: (-row["score"], row["group_id"]))
    return scored[:limit]


def status_report(db: Database) -> Dict[str, Any]:
    captures = CaptureStore(db)
    groups = GroupRegistry(db)
    report: Dict[str, Any] = dict(captures.counts())
    report["groups"] = groups.count()
    report["sequence"] = IdentifierAllocator(db).current()
    report["integrity"] = groups.integrity_report()
    report["healthy"] = not any(report["integrity"].values())
    return report


def group_summaries(db: Database) -> List[Dict[str, Any]]:
    """One row per group with its representative and clarity, ordered by id."""
    rows = []
    for entry in GroupRegistry(db).list_with_representatives():
        representative = entry.representative
        rows.append(
            {
                "group_id": entry.group.id,
                "label": entry.group.label,
                "representative_capture_id": entry.group.representative_capture_id,
                "representative_image_ref": representative.image_ref if representative else None,
                "member_count": entry.group.member_count,
                "clarity": extract_clarity(representative.description_schema) if representative else 0,
                "created_at": entry.group.created_at,
                "updated_at": entry.group.updated_at,
            }
        )
    return rows
