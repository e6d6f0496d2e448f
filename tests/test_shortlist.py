import time

from fakes import BlockingClassifier, FakeClassifier, make_schema
from persongroup.matching.shortlist import CandidateShortlister, parse_classifier_output, select_match
from persongroup.types import CandidateGroup, ShortlistEntry


def _candidates(*people):
    return [CandidateGroup(index + 1, make_schema(person)) for index, person in enumerate(people)]


def test_parse_clamps_and_drops_unknown_groups():
    raw = {
        "scores": [
            {"group_id": 1, "probability": 140, "explanation": " strong "},
            {"group_id": "2", "probability": -5},
            {"group_id": 9, "probability": 80},
            {"group_id": None, "probability": 80},
            {"group_id": 3, "probability": "high"},
        ]
    }
    parsed = parse_classifier_output(raw, {1, 2, 3})

    assert parsed == {1: (100, "strong"), 2: (0, ""), 3: (0, "")}


def test_parse_accepts_best_group_shape():
    raw = {"best_group_id": "4", "best_group_probability": 77.6, "explanation": "same coat"}
    assert parse_classifier_output(raw, {4}) == {4: (78, "same coat")}


def test_parse_ambiguous_output_yields_nothing():
    assert parse_classifier_output("not json", {1}) == {}
    assert parse_classifier_output({"best_group_id": 0.5}, {1}) == {}


def test_score_ranks_by_probability_then_id():
    classifier = FakeClassifier(scores={("new", "alice"): 80, ("new", "bob"): 80, ("new", "carol"): 90})
    shortlister = CandidateShortlister(classifier, timeout_s=5.0)

    ranked = shortlister.score(make_schema("new"), _candidates("bob", "alice", "carol"))

    assert [(e.group_id, e.probability) for e in ranked] == [(3, 90), (1, 80), (2, 80)]
    assert classifier.calls == [[1, 2, 3]]


def test_missing_scores_count_as_zero():
    classifier = FakeClassifier(raw={"scores": [{"group_id": 2, "probability": 60}]})
    ranked = CandidateShortlister(classifier).score(make_schema("new"), _candidates("alice", "bob"))

    assert [(e.group_id, e.probability) for e in ranked] == [(2, 60), (1, 0)]
    assert ranked[1].explanation == "no score returned"


def test_batch_failure_falls_back_to_individual_calls():
    classifier = FakeClassifier(
        scores={("new", "alice"): 85, ("new", "bob"): 40},
        fail_batch=True,
        fail_for={"carol"},
    )
    ranked = CandidateShortlister(classifier, timeout_s=5.0).score(
        make_schema("new"), _candidates("alice", "bob", "carol")
    )

    assert classifier.calls == [[1, 2, 3], [1], [2], [3]]
    assert [(e.group_id, e.probability) for e in ranked] == [(1, 85), (2, 40), (3, 0)]
    assert ranked[2].explanation.startswith("classifier_error:")


def test_no_candidates_means_no_call():
    classifier = FakeClassifier()
    assert CandidateShortlister(classifier).score(make_schema("new"), []) == []
    assert classifier.calls == []


def test_select_match_threshold_is_inclusive():
    entries = [ShortlistEntry(1, 75), ShortlistEntry(2, 60)]
    assert select_match(entries, 75).group_id == 1
    assert select_match([ShortlistEntry(1, 74)], 75) is None
    assert select_match([], 75) is None


def test_batch_timeout_scores_zero_without_individual_calls():
    classifier = BlockingClassifier()
    started = time.monotonic()
    try:
        ranked = CandidateShortlister(classifier, timeout_s=0.2).score(
            make_schema("new"), _candidates("a", "b", "c", "d", "e")
        )
    finally:
        classifier.release.set()
    elapsed = time.monotonic() - started

    assert classifier.calls == [[1, 2, 3, 4, 5]]
    assert elapsed < 1.0
    assert [(e.group_id, e.probability) for e in ranked] == [(1, 0), (2, 0), (3, 0), (4, 0), (5, 0)]
    assert all(e.explanation == "classifier_error: timeout" for e in ranked)
