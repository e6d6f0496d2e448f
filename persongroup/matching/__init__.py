"""Candidate shortlisting and vision verification."""

from persongroup.matching.shortlist import CandidateShortlister, select_match
from persongroup.matching.verifier import VisionVerifier

__all__ = ["CandidateShortlister", "VisionVerifier", "select_match"]
