import pandas as pd

from fakes import FakeClassifier, FakeDescriber, make_schema
from persongroup.export import export_groups, groups_frame
from persongroup.resolution.workflows import (
    clamp_refresh_limit,
    group_neighbors,
    ingest_capture,
    refresh_descriptions,
    status_report,
)


def test_ingest_describes_and_resolves(store, make_orchestrator):
    describer = FakeDescriber({"images/a.jpg": make_schema("alice")})
    orchestrator = make_orchestrator(FakeClassifier())

    result = ingest_capture(orchestrator, "images/a.jpg", captured_at="2024-05-01T10:00:00Z", describer=describer)

    assert result.resolution.status == "created"
    assert result.capture.group_id == result.resolution.group_id
    assert result.capture.natural_summary == "Person alice."
    assert describer.calls == ["images/a.jpg"]


def test_ingest_without_description_leaves_capture_ungrouped(store, make_orchestrator):
    classifier = FakeClassifier()
    orchestrator = make_orchestrator(classifier)

    empty = ingest_capture(orchestrator, "images/blurry.jpg", describer=FakeDescriber())
    failing = ingest_capture(
        orchestrator, "images/error.jpg", describer=FakeDescriber({"images/error.jpg": RuntimeError("quota")})
    )

    assert empty.resolution is None
    assert empty.reason == "description_unavailable"
    assert failing.reason.startswith("describer_error")
    assert store.counts() == {"captures": 2, "grouped": 0, "described": 0}
    assert classifier.calls == []


def test_refresh_limit_is_clamped():
    assert clamp_refresh_limit(0) == 1
    assert clamp_refresh_limit(500) == 200
    assert clamp_refresh_limit("many") == 50


def test_refresh_updates_missing_descriptions(store, add_capture, make_orchestrator):
    add_capture("already")
    good = store.insert("images/good.jpg")
    bad = store.insert("images/bad.jpg")
    describer = FakeDescriber({"images/good.jpg": make_schema("good")})

    report = refresh_descriptions(make_orchestrator(), describer, limit=10, resolve=True, progress=False)

    assert report.processed == 2
    assert report.updated == 1
    assert report.failures == [{"id": bad.id, "reason": "empty_description_or_schema"}]
    assert report.resolutions[0]["status"] == "created"
    assert store.require(good.id).has_description
    assert sorted(describer.calls) == ["images/bad.jpg", "images/good.jpg"]


def test_neighbors_return_top_positive_groups(add_capture, make_orchestrator):
    for person in ("alice", "bob", "carol", "dave", "erin"):
        make_orchestrator().resolve(add_capture(person).id)
    newcomer = add_capture("newcomer")
    classifier = FakeClassifier(
        scores={("newcomer", "alice"): 30, ("newcomer", "bob"): 80, ("newcomer", "carol"): 55, ("newcomer", "dave"): 55}
    )

    neighbors = group_neighbors(make_orchestrator(classifier), newcomer.id)

    assert [(n["group_id"], n["score"]) for n in neighbors] == [(2, 80), (3, 55), (4, 55)]
    assert neighbors[0]["label"] == "AC"
    assert len(classifier.calls) == 5
    assert all(len(call) == 1 for call in classifier.calls)


def test_status_report_and_export(tmp_path, db, add_capture, make_orchestrator):
    make_orchestrator().resolve(add_capture("alice").id)
    add_capture("pending")

    report = status_report(db)

    assert report["captures"] == 2
    assert report["grouped"] == 1
    assert report["groups"] == 1
    assert report["sequence"] == 1
    assert report["healthy"] is True

    frame = groups_frame(db)
    assert list(frame["label"]) == ["AB"]
    assert int(frame.loc[0, "member_count"]) == 1

    output = export_groups(db, tmp_path / "out" / "groups.csv")
    exported = pd.read_csv(output)
    assert list(exported["group_id"]) == [1]
    assert exported.loc[0, "clarity"] >= 0
