"""
core/scoring.py -- Risk scoring: probability x impact -> (score, level).

This is the single home of the severity thresholds. The API, the alert
engine, and the CLI all call risk_level() rather than re-stating the cutoffs.

Formula:
  score = round(probability * impact * 10, 2)    probability in [0, 1]
                                                 impact integer in [1, 10]
  max score is 100.00

Rounding is half-up on the decimal form of the inputs, so threshold
boundaries (15.00, 30.00, 50.00) are hit exactly rather than via binary
float products.

Thresholds (inclusive lower bounds, evaluated high to low):
  >= 50 critical | >= 30 high | >= 15 medium | else low

Everything in this module is pure: no I/O, no logging, no clock.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Iterable, Optional

from core.errors import InvalidRangeError

MIN_PROBABILITY = 0.0
MAX_PROBABILITY = 1.0
MIN_IMPACT = 1
MAX_IMPACT = 10
MULTIPLIER = 10

# (lower bound, level) -- ordered high to low
LEVEL_THRESHOLDS: tuple[tuple[float, str], ...] = (
    (50.0, "critical"),
    (30.0, "high"),
    (15.0, "medium"),
)

LEVELS = ("critical", "high", "medium", "low")
ALERTING_LEVELS = frozenset({"critical", "high"})

# CVSS v3 qualitative bands, used for vulnerabilities
CVSS_THRESHOLDS: tuple[tuple[float, str], ...] = (
    (9.0, "critical"),
    (7.0, "high"),
    (4.0, "medium"),
)

_TWO_PLACES = Decimal("0.01")


@dataclass(frozen=True)
class RiskScore:
    score: float
    level: str


def _round2(value: Decimal) -> float:
    return float(value.quantize(_TWO_PLACES, rounding=ROUND_HALF_UP))


def _check_inputs(probability: Any, impact: Any) -> None:
    errors: list[dict] = []
    if isinstance(probability, bool) or not isinstance(probability, (int, float)):
        errors.append({"field": "probability", "message": "Probability must be a number between 0 and 1"})
    elif not MIN_PROBABILITY <= probability <= MAX_PROBABILITY:
        errors.append({"field": "probability", "message": "Probability must be between 0 and 1"})
    if isinstance(impact, bool) or not isinstance(impact, int):
        errors.append({"field": "impact", "message": "Impact must be an integer between 1 and 10"})
    elif not MIN_IMPACT <= impact <= MAX_IMPACT:
        errors.append({"field": "impact", "message": "Impact must be between 1 and 10"})
    if errors:
        raise InvalidRangeError("Invalid probability or impact values", errors)


def raw_score(probability: float, impact: float) -> float:
    """Apply the score formula without validation.

    Used for threat risk_score and residual scores, which share the formula
    but not the strict level recompute.
    """
    product = Decimal(str(probability)) * Decimal(str(impact)) * MULTIPLIER
    return _round2(product)


def risk_level(score: float) -> str:
    """Map a numeric score to critical / high / medium / low."""
    for lower, level in LEVEL_THRESHOLDS:
        if score >= lower:
            return level
    return "low"


def score(probability: float, impact: int) -> RiskScore:
    """Return the (score, level) pair for a probability/impact combination.

    Raises InvalidRangeError if probability is outside [0, 1] or impact is not
    an integer in [1, 10]. Out-of-range input is rejected, never clamped.
    """
    _check_inputs(probability, impact)
    value = raw_score(probability, impact)
    return RiskScore(score=value, level=risk_level(value))


def describe(level: str, value: float) -> str:
    descriptions = {
        "critical": f"Critical risk ({value}/100) - Immediate action required",
        "high": f"High risk ({value}/100) - Priority attention needed",
        "medium": f"Medium risk ({value}/100) - Should be addressed",
        "low": f"Low risk ({value}/100) - Monitor and review",
    }
    return descriptions.get(level, "Unknown risk level")


def calculate(probability: float, impact: int) -> dict:
    """score() plus the inputs and a description, as returned by POST /risks/calculate."""
    result = score(probability, impact)
    return {
        "probability": probability,
        "impact": impact,
        "risk_score": result.score,
        "risk_level": result.level,
        "description": describe(result.level, result.score),
    }


def cvss_severity(cvss_score: Optional[float]) -> Optional[str]:
    """Return the CVSS qualitative band, or None when no score is known."""
    if cvss_score is None:
        return None
    for lower, level in CVSS_THRESHOLDS:
        if cvss_score >= lower:
            return level
    return "low"


def residual_risk(probability: float, impact: int, reduction_factor: float = 0.5) -> dict:
    """Compare a risk before and after a treatment that reduces it by reduction_factor.

    Probability is scaled by (1 - f); impact by (1 - f/2), rounded and kept >= 1.
    """
    if not 0.0 <= reduction_factor <= 1.0:
        raise InvalidRangeError(
            "Invalid reduction factor",
            [{"field": "reduction_factor", "message": "Reduction factor must be between 0 and 1"}],
        )
    original = calculate(probability, impact)
    residual_p = _round2(Decimal(str(probability)) * (1 - Decimal(str(reduction_factor))))
    scaled_impact = Decimal(impact) * (1 - Decimal(str(reduction_factor)) / 2)
    residual_i = max(MIN_IMPACT, int(scaled_impact.quantize(Decimal("1"), rounding=ROUND_HALF_UP)))
    residual = calculate(residual_p, residual_i)
    return {
        "original": original,
        "residual": residual,
        "reduction": {
            "probability": _round2(Decimal(str(probability)) - Decimal(str(residual_p))),
            "impact": impact - residual_i,
            "score": _round2(Decimal(str(original["risk_score"])) - Decimal(str(residual["risk_score"]))),
        },
    }


# ---------------------------------------------------------------------------
# Portfolio views -- operate on any objects exposing id/name/probability/
# impact/score/level/category attributes (posture Risk dataclasses).
# ---------------------------------------------------------------------------


def risk_matrix(risks: Iterable[Any]) -> dict:
    risks = list(risks)
    statistics = {level: 0 for level in LEVELS}
    data = []
    for risk in risks:
        data.append(
            {
                "id": risk.id,
                "name": risk.name,
                "probability": risk.probability,
                "impact": risk.impact,
                "risk_score": risk.score,
                "risk_level": risk.level,
                "category": risk.category,
            }
        )
        if risk.level in statistics:
            statistics[risk.level] += 1
    statistics["total"] = len(risks)
    return {"data": data, "statistics": statistics}


def prioritize(risks: Iterable[Any], limit: int = 10) -> list[tuple[int, Any]]:
    """Return (rank, risk) pairs for the top `limit` risks by score, highest first."""
    ordered = sorted(risks, key=lambda r: r.score or 0.0, reverse=True)[:limit]
    return [(index + 1, risk) for index, risk in enumerate(ordered)]


def aggregate_metrics(risks: Iterable[Any]) -> dict:
    risks = list(risks)
    distribution = {level: 0 for level in LEVELS}
    if not risks:
        return {
            "total_risks": 0,
            "average_risk_score": 0.0,
            "max_risk_score": 0.0,
            "min_risk_score": 0.0,
            "risk_distribution": distribution,
            "critical_percentage": 0.0,
            "high_percentage": 0.0,
        }
    scores = [r.score or 0.0 for r in risks]
    for risk in risks:
        if risk.level in distribution:
            distribution[risk.level] += 1
    total = len(risks)
    return {
        "total_risks": total,
        "average_risk_score": _round2(Decimal(str(sum(scores))) / total),
        "max_risk_score": max(scores),
        "min_risk_score": min(scores),
        "risk_distribution": distribution,
        "critical_percentage": round(distribution["critical"] / total * 100, 1),
        "high_percentage": round(distribution["high"] / total * 100, 1),
    }
