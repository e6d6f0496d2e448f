import base64
import io
import json
from types import SimpleNamespace

import pytest
from PIL import Image

from persongroup.config import ResolverConfig
from persongroup.errors import ExternalServiceError
from persongroup.services import openai_services
from persongroup.services.images import to_data_url
from persongroup.services.openai_services import (
    OpenAIDescriber,
    OpenAIGroupingClassifier,
    OpenAIVisualComparator,
    build_services,
    cap_sentences,
    resolve_api_key,
    summarise_schema,
)
from fakes import make_schema


class StubCompletions:
    def __init__(self, payload):
        self.payload = payload
        self.requests = []

    def create(self, **kwargs):
        self.requests.append(kwargs)
        content = self.payload if isinstance(self.payload, str) else json.dumps(self.payload)
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


def _client(payload):
    completions = StubCompletions(payload)
    return SimpleNamespace(chat=SimpleNamespace(completions=completions)), completions


def test_data_url_passthrough_and_encoding(tmp_path):
    assert to_data_url("data:image/png;base64,AAAA") == "data:image/png;base64,AAAA"
    assert to_data_url("https://example.com/a.jpg") == "https://example.com/a.jpg"

    path = tmp_path / "big.png"
    Image.new("RGBA", (2000, 1000), (255, 0, 0, 255)).save(path)
    url = to_data_url(str(path), max_side=500)

    assert url.startswith("data:image/jpeg;base64,")
    decoded = Image.open(io.BytesIO(base64.b64decode(url.split(",", 1)[1])))
    assert decoded.size == (500, 250)
    assert decoded.mode == "RGB"


def test_data_url_rejects_missing_files(tmp_path):
    with pytest.raises(ExternalServiceError):
        to_data_url(str(tmp_path / "nope.jpg"))
    with pytest.raises(ExternalServiceError):
        to_data_url("   ")


def test_api_key_resolution(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    monkeypatch.setenv("OPENAIKEY", "legacy-key")
    assert resolve_api_key() == "legacy-key"
    assert resolve_api_key("explicit") == "explicit"
    monkeypatch.delenv("OPENAIKEY")
    with pytest.raises(ExternalServiceError):
        resolve_api_key()


def test_services_share_a_client_bounded_by_the_longest_timeout(monkeypatch):
    created = []

    class RecordingOpenAI:
        def __init__(self, **kwargs):
            created.append(kwargs)

    monkeypatch.setattr(openai_services, "OpenAI", RecordingOpenAI)
    config = ResolverConfig(classifier_timeout_s=20.0, comparator_timeout_s=40.0, describer_timeout_s=30.0)

    describer, classifier, comparator = build_services(config, api_key="test-key")

    assert created == [{"api_key": "test-key", "max_retries": 0, "timeout": 40.0}]
    assert describer.client is classifier.client is comparator.client


def test_describer_splits_schema_and_summary():
    schema = make_schema("alice", natural_summary="One. Two! Three?")
    client, completions = _client({"description_schema": schema, "image_clarity": 87.4})

    result = OpenAIDescriber(client).describe("data:image/jpeg;base64,AAAA")

    assert result.natural_summary == "One. Two! Three?"
    assert "natural_summary" not in result.schema
    assert result.schema["image_clarity"] == 87
    assert completions.requests[0]["response_format"] == {"type": "json_object"}


def test_describer_returns_none_for_incomplete_schema():
    client, _ = _client({"description_schema": {"gender_presentation": {}}, "image_clarity": 50})
    assert OpenAIDescriber(client).describe("data:image/jpeg;base64,AAAA") is None


def test_classifier_sends_all_candidates_in_one_request():
    client, completions = _client({"scores": [{"group_id": 1, "probability": 80}]})
    candidates = [{"id": 1, "canonical_description": make_schema("a")}, {"id": 2, "canonical_description": "text"}]

    payload = OpenAIGroupingClassifier(client).score_groups(make_schema("new"), candidates)

    assert payload == {"scores": [{"group_id": 1, "probability": 80}]}
    sent = json.loads(completions.requests[0]["messages"][1]["content"])
    assert [g["id"] for g in sent["groups"]] == [1, 2]


def test_invalid_json_is_an_external_error():
    client, _ = _client("not json")
    with pytest.raises(ExternalServiceError):
        OpenAIGroupingClassifier(client).score_groups({}, [])


def test_comparator_prompt_includes_time_gap():
    client, completions = _client({"similarity": 91, "confidence": "high", "fatal_mismatch": None})
    comparator = OpenAIVisualComparator(client)

    result = comparator.compare(
        "data:image/jpeg;base64,AAAA",
        "data:image/jpeg;base64,BBBB",
        {"captured_at": "2024-05-01T10:00:00Z", "description_schema": make_schema("a")},
        {"captured_at": "2024-05-01T10:12:00Z", "description_schema": None},
    )

    assert result["similarity"] == 91
    content = completions.requests[0]["messages"][1]["content"]
    assert "Photos taken 12 minutes apart." in content[0]["text"]
    assert [part["type"] for part in content] == ["text", "image_url", "image_url"]


def test_summary_helpers():
    assert cap_sentences("A. B. C.", limit=2) == "A. B."
    assert "Outfit: top: a jacket (navy)" in summarise_schema(make_schema("a"))
    assert summarise_schema(None) == "No structured description available."
