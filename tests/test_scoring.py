"""Unit tests for core/scoring.py -- the risk scorer and portfolio helpers.

Covers:
- score() formula, rounding and the 50/30/15 level thresholds
- boundary inputs that must land exactly on a threshold (0.3 x 5 = 15.00)
- out-of-range input raises InvalidRangeError (never clamped)
- cvss_severity() banding
- residual_risk(), risk_matrix(), prioritize(), aggregate_metrics()
"""

from types import SimpleNamespace

import pytest

from core import scoring
from core.errors import InvalidRangeError, ValidationError


def _risk(rid: str, score: float, level: str, probability: float = 0.5, impact: int = 5, category: str = "technical"):
    return SimpleNamespace(
        id=rid,
        name=f"risk {rid}",
        probability=probability,
        impact=impact,
        score=score,
        level=level,
        category=category,
    )


# ---------------------------------------------------------------------------
# score() and risk_level()
# ---------------------------------------------------------------------------


class TestScore:
    """score(probability, impact) -> RiskScore(score, level)."""

    def test_known_critical(self) -> None:
        result = scoring.score(0.8, 8)
        assert result.score == 64.0, f"Expected 64.0, got {result.score}"
        assert result.level == "critical"

    def test_boundary_product_lands_on_medium(self) -> None:
        """0.3 * 5 * 10 is 14.999... in binary floats; it must score exactly 15.00 (medium)."""
        result = scoring.score(0.3, 5)
        assert result.score == 15.0
        assert result.level == "medium"

    def test_boundary_products_for_every_threshold(self) -> None:
        assert scoring.score(0.5, 10) == scoring.RiskScore(50.0, "critical")
        assert scoring.score(0.3, 10) == scoring.RiskScore(30.0, "high")
        assert scoring.score(0.6, 5) == scoring.RiskScore(30.0, "high")
        assert scoring.score(0.15, 10) == scoring.RiskScore(15.0, "medium")

    def test_rounds_to_two_decimals(self) -> None:
        assert scoring.score(0.333, 7).score == 23.31

    def test_extremes(self) -> None:
        assert scoring.score(0.0, 1) == scoring.RiskScore(0.0, "low")
        assert scoring.score(1.0, 10) == scoring.RiskScore(100.0, "critical")

    def test_idempotent(self) -> None:
        """Same input, same output, every time."""
        assert scoring.score(0.45, 7) == scoring.score(0.45, 7)

    def test_integer_probability_accepted(self) -> None:
        assert scoring.score(1, 3).score == 30.0


class TestRiskLevel:
    """The threshold table uses inclusive lower bounds."""

    @pytest.mark.parametrize(
        "value,expected",
        [
            (100.0, "critical"),
            (50.0, "critical"),
            (49.99, "high"),
            (30.0, "high"),
            (29.99, "medium"),
            (15.0, "medium"),
            (14.99, "low"),
            (0.0, "low"),
        ],
    )
    def test_thresholds(self, value: float, expected: str) -> None:
        assert scoring.risk_level(value) == expected, f"{value} should be {expected}"


class TestScoreValidation:
    """Out-of-domain input raises; nothing is clamped."""

    @pytest.mark.parametrize("probability", [-0.01, 1.01, 2])
    def test_probability_out_of_range(self, probability: float) -> None:
        with pytest.raises(InvalidRangeError) as exc_info:
            scoring.score(probability, 5)
        assert [e["field"] for e in exc_info.value.errors] == ["probability"]

    @pytest.mark.parametrize("impact", [0, 11, -3])
    def test_impact_out_of_range(self, impact: int) -> None:
        with pytest.raises(InvalidRangeError) as exc_info:
            scoring.score(0.5, impact)
        assert [e["field"] for e in exc_info.value.errors] == ["impact"]

    def test_non_integer_impact_rejected(self) -> None:
        with pytest.raises(InvalidRangeError):
            scoring.score(0.5, 7.5)

    def test_both_fields_reported(self) -> None:
        with pytest.raises(InvalidRangeError) as exc_info:
            scoring.score(1.5, 0)
        fields = {e["field"] for e in exc_info.value.errors}
        assert fields == {"probability", "impact"}

    def test_invalid_range_is_a_validation_error(self) -> None:
        with pytest.raises(ValidationError):
            scoring.score(None, 5)

    def test_bool_is_not_a_number(self) -> None:
        with pytest.raises(InvalidRangeError):
            scoring.score(True, 5)


# ---------------------------------------------------------------------------
# Supplementary helpers
# ---------------------------------------------------------------------------


class TestCalculate:
    def test_includes_description(self) -> None:
        result = scoring.calculate(0.8, 8)
        assert result == {
            "probability": 0.8,
            "impact": 8,
            "risk_score": 64.0,
            "risk_level": "critical",
            "description": "Critical risk (64.0/100) - Immediate action required",
        }

    def test_describe_unknown_level(self) -> None:
        assert scoring.describe("bogus", 1.0) == "Unknown risk level"


class TestCvssSeverity:
    @pytest.mark.parametrize(
        "cvss,expected",
        [
            (10.0, "critical"),
            (9.0, "critical"),
            (8.9, "high"),
            (7.0, "high"),
            (6.9, "medium"),
            (4.0, "medium"),
            (3.9, "low"),
            (0.0, "low"),
        ],
    )
    def test_bands(self, cvss: float, expected: str) -> None:
        assert scoring.cvss_severity(cvss) == expected

    def test_none_when_unknown(self) -> None:
        assert scoring.cvss_severity(None) is None


class TestResidualRisk:
    def test_default_half_reduction(self) -> None:
        result = scoring.residual_risk(0.8, 8)
        assert result["original"]["risk_score"] == 64.0
        assert result["residual"]["probability"] == 0.4
        assert result["residual"]["impact"] == 6
        assert result["residual"]["risk_score"] == 24.0
        assert result["residual"]["risk_level"] == "medium"
        assert result["reduction"] == {"probability": 0.4, "impact": 2, "score": 40.0}

    def test_impact_never_below_one(self) -> None:
        result = scoring.residual_risk(0.8, 1, reduction_factor=1.0)
        assert result["residual"]["impact"] == 1
        assert result["residual"]["probability"] == 0.0
        assert result["residual"]["risk_level"] == "low"

    def test_zero_reduction_is_identity(self) -> None:
        result = scoring.residual_risk(0.6, 6, reduction_factor=0.0)
        assert result["residual"]["risk_score"] == result["original"]["risk_score"]

    def test_factor_out_of_range(self) -> None:
        with pytest.raises(InvalidRangeError):
            scoring.residual_risk(0.5, 5, reduction_factor=1.5)


class TestPortfolio:
    """risk_matrix, prioritize and aggregate_metrics over risk-like objects."""

    def test_matrix_counts_levels(self) -> None:
        risks = [_risk("a", 64.0, "critical"), _risk("b", 35.0, "high"), _risk("c", 40.0, "high")]
        matrix = scoring.risk_matrix(risks)
        assert len(matrix["data"]) == 3
        assert matrix["statistics"] == {"critical": 1, "high": 2, "medium": 0, "low": 0, "total": 3}
        assert matrix["data"][0]["risk_score"] == 64.0

    def test_matrix_empty(self) -> None:
        assert scoring.risk_matrix([]) == {
            "data": [],
            "statistics": {"critical": 0, "high": 0, "medium": 0, "low": 0, "total": 0},
        }

    def test_prioritize_orders_and_ranks(self) -> None:
        risks = [_risk("low", 5.0, "low"), _risk("top", 90.0, "critical"), _risk("mid", 20.0, "medium")]
        ranked = scoring.prioritize(risks, limit=2)
        assert [(rank, r.id) for rank, r in ranked] == [(1, "top"), (2, "mid")]

    def test_aggregate_metrics(self) -> None:
        risks = [_risk("a", 64.0, "critical"), _risk("b", 15.0, "medium"), _risk("c", 2.0, "low")]
        metrics = scoring.aggregate_metrics(risks)
        assert metrics["total_risks"] == 3
        assert metrics["average_risk_score"] == 27.0
        assert metrics["max_risk_score"] == 64.0
        assert metrics["min_risk_score"] == 2.0
        assert metrics["risk_distribution"] == {"critical": 1, "high": 0, "medium": 1, "low": 1}
        assert metrics["critical_percentage"] == 33.3
        assert metrics["high_percentage"] == 0.0

    def test_aggregate_metrics_empty(self) -> None:
        metrics = scoring.aggregate_metrics([])
        assert metrics["total_risks"] == 0
        assert metrics["average_risk_score"] == 0.0
