from persongroup.matching.clarity import extract_clarity
from persongroup.matching.explanation import (
    SENTINEL_START,
    build_vision_summary,
    pack_explanation,
    unpack_explanation,
)
from persongroup.types import ComparisonResult, VerificationOutcome


def test_pack_and_unpack_explanation():
    packed = pack_explanation("Same navy jacket.", {"decision": "matched_existing", "threshold": 75})

    assert packed.startswith("Same navy jacket.")
    assert SENTINEL_START in packed
    assert unpack_explanation(packed) == ("Same navy jacket.", {"decision": "matched_existing", "threshold": 75})


def test_unpack_plain_or_corrupt_explanations():
    assert unpack_explanation("just text") == ("just text", None)
    assert unpack_explanation(None) == ("", None)
    corrupt = pack_explanation("text", {"a": 1}).replace('{"a": 1}', "{not json")
    assert unpack_explanation(corrupt) == ("text", None)


def test_pack_without_details_returns_text():
    assert pack_explanation("only text", None) == "only text"
    assert pack_explanation(None, {}) == ""


def test_vision_summary_describes_each_comparison():
    outcome = VerificationOutcome(
        approved_group_id=None,
        applied=True,
        comparisons=[
            ComparisonResult(group_id=3, skipped=True, reason="missing_reference_image"),
            ComparisonResult(
                group_id=4,
                score=95,
                confidence="high",
                fatal_mismatch="outfit",
                explanation="- skirt\n- trousers",
                reference_capture_id=12,
                reference_captured_at="2024-05-01T10:00:00Z",
            ),
        ],
    )
    summary = build_vision_summary(outcome)

    assert "Vision check skipped for group 3: missing_reference_image." in summary
    assert "capture #12 (2024-05-01 10:00:00)" in summary
    assert "fatal mismatch (outfit)" in summary
    assert "Reasoning: - skirt - trousers" in summary
    assert summary.endswith("Vision verification rejected all shortlisted groups.")


def test_vision_summary_is_empty_when_not_run():
    assert build_vision_summary(None) == ""
    assert build_vision_summary(VerificationOutcome(applied=False, reason="empty_shortlist")) == ""


def test_clarity_of_empty_or_invalid_schema():
    assert extract_clarity(None) == 0
    assert extract_clarity({}) == 0
    assert extract_clarity({"image_clarity": 250}) == 100


def test_clarity_rewards_confident_known_fields():
    schema = {
        "image_clarity": 40,
        "hair": {"color": {"value": "brown", "confidence": 100}, "length": {"value": "unknown", "confidence": 100}},
        "gender_presentation": {"value": "female", "confidence": 50},
        "age_band": {"value": "25-34", "confidence": 40},
        "clothing": {"top": {"description": "navy blazer", "color": "navy", "confidence": 100}},
        "accessories": [{"type": "bag", "confidence": 90}, {"type": "hat", "confidence": 10}],
        "distinctiveness_score": 50,
    }
    # 40 base + 10 hair + 3 gender + 8 colour + 5 description + 2 accessory + 5 distinct + 8 coverage
    assert extract_clarity(schema) == 81
