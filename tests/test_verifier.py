import pytest

from fakes import FakeComparator, make_schema
from persongroup.errors import ExternalServiceError, VerificationError
from persongroup.matching.verifier import VisionVerifier, parse_comparator_output
from persongroup.types import Capture, ShortlistEntry


def _capture(capture_id, image_ref):
    return Capture(id=capture_id, image_ref=image_ref, description_schema=make_schema(f"p{capture_id}"))


NEW = _capture(10, "images/new.jpg")
REPS = {1: _capture(1, "images/rep1.jpg"), 2: _capture(2, "images/rep2.jpg"), 3: _capture(3, "images/rep3.jpg")}


def test_first_accepted_candidate_wins():
    comparator = FakeComparator(
        {
            "images/rep1.jpg": {"similarity": 70, "confidence": "high"},
            "images/rep2.jpg": {"similarity": 92, "confidence": "high", "fatal_mismatch": None},
        }
    )
    shortlist = [ShortlistEntry(1, 90), ShortlistEntry(2, 80), ShortlistEntry(3, 70)]

    outcome = VisionVerifier(comparator).verify(NEW, shortlist, REPS)

    assert outcome.applied
    assert outcome.approved_group_id == 2
    assert [c.group_id for c in outcome.comparisons] == [1, 2]
    assert len(comparator.calls) == 2


def test_fatal_mismatch_vetoes_high_similarity():
    comparator = FakeComparator(
        {"images/rep1.jpg": {"similarity": 95, "confidence": "high", "fatal_mismatch": "outfit"}}
    )
    outcome = VisionVerifier(comparator, shortlist_limit=1).verify(NEW, [ShortlistEntry(1, 88)], REPS)

    assert outcome.approved_group_id is None
    assert outcome.comparisons[0].fatal_mismatch == "outfit"


def test_confidence_policy():
    comparator = FakeComparator({"images/rep1.jpg": {"similarity": 95, "confidence": "medium"}})
    shortlist = [ShortlistEntry(1, 88)]

    strict = VisionVerifier(comparator, accept_confidence="high").verify(NEW, shortlist, REPS)
    relaxed = VisionVerifier(comparator, accept_confidence="any").verify(NEW, shortlist, REPS)

    assert strict.approved_group_id is None
    assert relaxed.approved_group_id == 1


def test_similarity_floor_is_inclusive():
    comparator = FakeComparator({"images/rep1.jpg": {"similarity": 90, "confidence": "high"}})
    outcome = VisionVerifier(comparator).verify(NEW, [ShortlistEntry(1, 60)], REPS)
    assert outcome.approved_group_id == 1


def test_only_top_candidates_are_compared():
    comparator = FakeComparator()
    shortlist = [ShortlistEntry(3, 50), ShortlistEntry(1, 90), ShortlistEntry(2, 70)]

    outcome = VisionVerifier(comparator, shortlist_limit=2).verify(NEW, shortlist, REPS)

    assert [c.group_id for c in outcome.comparisons] == [1, 2]


def test_missing_references_are_skipped_not_compared():
    comparator = FakeComparator()
    reps = {1: None, 2: _capture(2, "  ")}
    outcome = VisionVerifier(comparator).verify(NEW, [ShortlistEntry(1, 90), ShortlistEntry(2, 80)], reps)

    assert [(c.group_id, c.skipped, c.reason) for c in outcome.comparisons] == [
        (1, True, "missing_reference_image"),
        (2, True, "missing_reference_payload"),
    ]
    assert outcome.approved_group_id is None
    assert comparator.calls == []


def test_not_applied_without_shortlist_or_image():
    verifier = VisionVerifier(FakeComparator())
    assert verifier.verify(NEW, [], REPS).reason == "empty_shortlist"
    no_image = Capture(id=11, image_ref=None, description_schema=make_schema("x"))
    outcome = verifier.verify(no_image, [ShortlistEntry(1, 90)], REPS)
    assert not outcome.applied
    assert outcome.reason == "missing_candidate_image"


def test_comparator_failure_aborts_with_partial_comparisons():
    comparator = FakeComparator(
        {
            "images/rep1.jpg": {"similarity": 30, "confidence": "high"},
            "images/rep2.jpg": RuntimeError("vision service down"),
        }
    )
    with pytest.raises(VerificationError) as excinfo:
        VisionVerifier(comparator).verify(NEW, [ShortlistEntry(1, 90), ShortlistEntry(2, 80)], REPS)

    assert excinfo.value.group_id == 2
    assert [c.group_id for c in excinfo.value.comparisons] == [1]


def test_missing_similarity_is_an_error():
    comparator = FakeComparator({"images/rep1.jpg": {"confidence": "high"}})
    with pytest.raises(VerificationError):
        VisionVerifier(comparator).verify(NEW, [ShortlistEntry(1, 90)], REPS)


def test_parse_comparator_output_normalizes_fields():
    parsed = parse_comparator_output(
        {"similarity": 120, "confidence": "HIGH", "fatalMismatch": " ", "reasoning": "+ same coat"}
    )
    assert parsed == {
        "similarity": 100,
        "confidence": "high",
        "fatal_mismatch": None,
        "explanation": "+ same coat",
    }
    with pytest.raises(ExternalServiceError):
        parse_comparator_output(["not", "a", "mapping"])
