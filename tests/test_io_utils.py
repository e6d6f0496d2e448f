import threading
from dataclasses import dataclass
from datetime import datetime

import pytest

from persongroup.errors import ExternalServiceError, ExternalTimeoutError
from persongroup.io_utils import dumps_json, minutes_between, normalize_timestamp, run_with_timeout
from persongroup.types import ResolutionState


def test_run_with_timeout_returns_value():
    assert run_with_timeout(lambda a, b=0: a + b, 1.0, 2, b=3) == 5


def test_run_with_timeout_wraps_failures():
    def boom():
        raise KeyError("missing field")

    with pytest.raises(ExternalServiceError):
        run_with_timeout(boom, 1.0)
    with pytest.raises(ExternalServiceError):
        run_with_timeout(boom, None)


def test_run_with_timeout_enforces_deadline():
    release = threading.Event()
    try:
        with pytest.raises(ExternalTimeoutError):
            run_with_timeout(release.wait, 0.05, 5)
    finally:
        release.set()


def test_timestamps_are_normalized_to_utc_iso():
    assert normalize_timestamp("2024-05-01T10:00:00Z") == "2024-05-01T10:00:00+00:00"
    assert normalize_timestamp(datetime(2024, 5, 1, 10, 0)) == "2024-05-01T10:00:00+00:00"
    assert normalize_timestamp("yesterday") is None
    assert minutes_between("2024-05-01T10:30:00Z", "2024-05-01T10:00:00Z") == 30.0
    assert minutes_between(None, "2024-05-01T10:00:00Z") is None


def test_dumps_json_handles_dataclasses_and_enums():
    @dataclass
    class Row:
        state: ResolutionState

    assert dumps_json({"row": Row(ResolutionState.COMMITTED)}, indent=None) == '{"row": {"state": "committed"}}'
