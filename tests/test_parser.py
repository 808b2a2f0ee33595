"""ResponseParser and response-schema tests.

Test scenarios:
  - Plain JSON and fenced JSON (with/without language tag) parse identically
  - Malformed JSON yields ParseError carrying the raw text, never a crash
  - try_parse returns the error as a value
  - parse_model turns schema violations into ParseError
  - Status normalisation: aliases mapped, unknown values made conservative
"""

import json

import pytest

from recordeval.errors import ParseError
from recordeval.models.responses import (
    CategoryResponse,
    ComprehensiveResponse,
    CriterionResponse,
    RecommendationsResponse,
)
from recordeval.parser import ResponseParser, strip_code_fence

PAYLOAD = {"status": "matched", "reasoning": "Age 45 is within range", "confidence": 0.9}
RAW = json.dumps(PAYLOAD)


@pytest.fixture
def parser():
    return ResponseParser()


# =====================================================================
# Fence stripping & parsing
# =====================================================================


class TestParse:
    """Strict JSON extraction tolerant of surrounding fences."""

    @pytest.mark.parametrize("text", [
        RAW,
        f"  {RAW}\n",
        f"```json\n{RAW}\n```",
        f"```\n{RAW}\n```",
        f"```JSON\n{RAW}```",
        f"\n\n```json\n{RAW}\n```  \n",
    ])
    def test_plain_and_fenced_identical(self, parser, text):
        assert parser.parse(text) == PAYLOAD

    def test_strip_code_fence_without_fence(self):
        assert strip_code_fence("  [1, 2]  ") == "[1, 2]"

    @pytest.mark.parametrize("text", [
        "",
        "not json at all",
        '{"status": "matched",',
        "```json\n{oops}\n```",
        "Here is my answer: " + RAW,
    ])
    def test_malformed_raises_parse_error(self, parser, text):
        with pytest.raises(ParseError) as excinfo:
            parser.parse(text)
        assert excinfo.value.raw_text == text, "ParseError must carry the original text"

    def test_non_string_input(self, parser):
        with pytest.raises(ParseError):
            parser.parse(None)

    def test_try_parse_returns_error_value(self, parser):
        result = parser.try_parse("{broken")
        assert isinstance(result, ParseError)
        assert parser.try_parse(RAW) == PAYLOAD


# =====================================================================
# Schema validation
# =====================================================================


class TestParseModel:
    """Validation of parsed JSON against the reply schemas."""

    def test_criterion_response(self, parser):
        response = parser.parse_model(RAW, CriterionResponse)
        assert response.status == "matched"
        assert response.confidence == 0.9

    def test_missing_status_is_parse_error(self, parser):
        with pytest.raises(ParseError):
            parser.parse_model('{"reasoning": "x"}', CriterionResponse)

    def test_wrong_shape_is_parse_error(self, parser):
        with pytest.raises(ParseError):
            parser.parse_model("[1, 2, 3]", CategoryResponse)

    def test_comprehensive_requires_analysis(self, parser):
        with pytest.raises(ParseError):
            parser.parse_model('{"overallAssessment": {}}', ComprehensiveResponse)

    def test_recommendations_require_title(self, parser):
        raw = json.dumps({"recommendations": [{"priority": "high"}]})
        with pytest.raises(ParseError):
            parser.parse_model(raw, RecommendationsResponse)


class TestNormalisation:
    """Unknown statuses become the conservative default for their domain."""

    @pytest.mark.parametrize("raw, expected", [
        ("matched", "matched"),
        ("Matched", "matched"),
        ("non-matched", "non-matched"),
        ("not_matched", "non-matched"),
        ("needs-more-info", "needs-more-info"),
        ("insufficient-data", "needs-more-info"),
        ("more-information-needed", "needs-more-info"),
        ("yes", "needs-more-info"),
        (None, "needs-more-info"),
        (42, "needs-more-info"),
    ])
    def test_eligibility_status(self, raw, expected):
        response = CriterionResponse.model_validate({"status": raw})
        assert response.status == expected

    @pytest.mark.parametrize("raw, expected", [
        (0.5, 0.5),
        ("0.7", 0.7),
        (1.5, 1.0),
        (-2, 0.0),
        ("high", 0.0),
        (float("nan"), 0.0),
    ])
    def test_confidence_clamped(self, raw, expected):
        response = CriterionResponse.model_validate({"status": "matched", "confidence": raw})
        assert response.confidence == expected

    def test_checklist_statuses(self):
        response = CategoryResponse.model_validate({
            "items": [
                {"testName": "A", "status": "FOUND"},
                {"testName": "B", "status": "present"},
                {"testName": "C", "status": "partial", "lastDate": "null"},
            ],
            "categoryStatus": "terrible",
        })
        assert [i.status for i in response.items] == ["found", "missing", "partial"]
        assert response.items[2].last_date is None
        assert response.category_status == "needs-attention"

    def test_recommendation_priority_defaults_low(self):
        response = RecommendationsResponse.model_validate({
            "recommendations": [{"title": "Get a DEXA", "priority": "urgent"}],
        })
        assert response.recommendations[0].priority == "low"
        assert response.recommendations[0].category == "General"
