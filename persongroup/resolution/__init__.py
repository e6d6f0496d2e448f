"""Resolution state machine and the capture workflows built on it."""

from persongroup.resolution.orchestrator import ResolutionOrchestrator

__all__ = ["ResolutionOrchestrator"]
