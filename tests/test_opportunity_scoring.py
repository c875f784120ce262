"""
Tests: opportunity scoring — validation, weighting, risk inversion, rating bands.
"""

import json

import pytest

from rfp_platform.core.exceptions import ArchivedReadOnlyError, ValidationError
from rfp_platform.services.opportunity_scoring import (
    DIMENSIONS,
    WEIGHTS,
    calculate_weighted_opportunity_score,
    get_opportunity_rating,
    load_breakdown,
    opportunity_payload,
    score_rfp_opportunity,
    validate_breakdown,
)
from rfp_platform.services.rfp_service import archive_rfp


def _breakdown(score=50, **overrides):
    b = {dim: {"score": score, "rationale": f"{dim} rationale"} for dim in DIMENSIONS}
    for dim, value in overrides.items():
        b[dim] = {"score": value, "rationale": "override"}
    return b


class TestWeights:
    def test_weights_sum_to_one(self):
        assert sum(WEIGHTS.values()) == pytest.approx(1.0)
        assert len(DIMENSIONS) == 8


class TestValidation:
    def test_complete_breakdown_valid(self):
        assert validate_breakdown(_breakdown()) is True

    @pytest.mark.parametrize("breakdown", [
        None,
        [],
        {},
        {dim: {"score": 50} for dim in DIMENSIONS},
        {dim: {"score": "50", "rationale": "x"} for dim in DIMENSIONS},
        {dim: {"score": True, "rationale": "x"} for dim in DIMENSIONS},
    ])
    def test_malformed_breakdowns_invalid(self, breakdown):
        assert validate_breakdown(breakdown) is False


class TestScore:
    def test_uniform_scores(self):
        # every dimension at 50, risk inverted to 50 as well
        assert calculate_weighted_opportunity_score(_breakdown(50)) == 50

    def test_risk_is_inverted(self):
        low_risk = calculate_weighted_opportunity_score(_breakdown(80, risk_score=0))
        high_risk = calculate_weighted_opportunity_score(_breakdown(80, risk_score=100))
        assert low_risk == 81
        assert high_risk == 76

    def test_out_of_range_scores_clamped(self):
        b = _breakdown(150, risk_score=-20)
        assert calculate_weighted_opportunity_score(b) == 100

    @pytest.mark.parametrize("score,rating", [
        (100, "high"), (80, "high"), (79, "medium"), (50, "medium"), (49, "low"), (0, "low"),
    ])
    def test_rating_bands(self, score, rating):
        assert get_opportunity_rating(score)["rating"] == rating


class TestPersistence:
    def test_score_rfp_persists(self, make_rfp, buyer):
        rfp = make_rfp()
        b = _breakdown(90, risk_score=10)
        b["overall_comment"] = "Strong fit"
        payload = score_rfp_opportunity(rfp.id, b, actor=buyer)
        assert payload["score"] == 90
        assert payload["rating"]["rating"] == "high"
        assert rfp.opportunity_score == 90
        assert payload["breakdown"]["overall_comment"] == "Strong fit"
        assert json.loads(rfp.opportunity_breakdown_json)["schema_version"] == 1

    def test_invalid_breakdown_rejected(self, make_rfp, buyer):
        rfp = make_rfp()
        with pytest.raises(ValidationError) as exc:
            score_rfp_opportunity(rfp.id, {"strategic_fit": {"score": 1}}, actor=buyer)
        assert "solution_fit" in exc.value.details
        assert rfp.opportunity_score is None

    def test_archived_rejected(self, make_rfp, buyer):
        rfp = make_rfp()
        archive_rfp(rfp.id, actor=buyer)
        with pytest.raises(ArchivedReadOnlyError):
            score_rfp_opportunity(rfp.id, _breakdown(), actor=buyer)

    def test_unscored_payload(self, make_rfp):
        payload = opportunity_payload(make_rfp())
        assert payload["score"] is None
        assert payload["rating"] is None
        assert payload["breakdown"] is None

    def test_legacy_camel_case_breakdown(self):
        raw = json.dumps({"strategicFit": {"score": 70, "rationale": "ok"}, "overallComment": "legacy"})
        assert load_breakdown(raw) == {
            "strategic_fit": {"score": 70, "rationale": "ok"},
            "overall_comment": "legacy",
        }
