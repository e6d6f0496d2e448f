import json

from fakes import FakeClassifier
from scripts import db_status, export_groups, refresh_descriptions, resolve_capture


def test_parse_args_accept_shared_flags():
    args = resolve_capture.parse_args(["3", "4", "--force", "--db", "x.sqlite3", "--threshold", "80", "--no-vision"])

    assert args.capture_ids == [3, 4]
    assert args.force
    assert args.database_path == "x.sqlite3"
    assert args.match_threshold == 80.0
    assert args.vision_enabled is False


def test_vision_flag_defaults_to_config():
    args = refresh_descriptions.parse_args([])
    assert args.vision_enabled is None
    assert args.limit == 50


def test_status_and_export_commands(tmp_path, capsys, db, add_capture, make_orchestrator, monkeypatch):
    monkeypatch.chdir(tmp_path)
    make_orchestrator(FakeClassifier()).resolve(add_capture("alice").id)

    exit_code = db_status.main(["--db", str(db.path)])
    report = json.loads(capsys.readouterr().out)
    assert exit_code == 0
    assert report["groups"] == 1

    output = tmp_path / "groups.parquet"
    export_groups.main(["--db", str(db.path), "--output", str(output)])
    assert output.exists()
