"""
posture/risks.py -- Create / update / delete for Risk records.

This is the only write path for risks. It keeps one invariant: whenever a
risk holds both probability and impact, score and level are the scorer's
output for exactly those values, recomputed together on every create and
every update (a status-only patch included).

Residual fields follow the same rule with the unvalidated formula:
residual_score is recomputed whenever both residual inputs are present and
cleared when either is removed.

Alert creation is a side effect of create only. The caller passes a
notifier (alerts.notify.AlertNotifier in production, a Mock in tests); this
module never imports alerts/.
"""

import logging
from dataclasses import asdict
from typing import Optional

from core import scoring
from core.errors import NotFoundError
from core.models import RISK_CATEGORIES, RISK_STATUSES, TREATMENT_STRATEGIES, Risk
from posture.fields import (
    check_choice,
    check_text,
    coerce_impact,
    coerce_probability,
    raise_if,
    reject_cleared,
    require,
)
from posture.store import PostureStore

logger = logging.getLogger("threatmap.posture.risks")

# Client-writable fields. score, level and residual_score are derived.
_MUTABLE_FIELDS = (
    "name",
    "description",
    "category",
    "probability",
    "impact",
    "status",
    "treatment_strategy",
    "treatment_plan",
    "residual_probability",
    "residual_impact",
    "threat_id",
    "vulnerability_id",
)

_PERSISTED_FIELDS = _MUTABLE_FIELDS + ("score", "level", "residual_score")


def _parse(fields: dict, errors: list) -> dict:
    """Coerce and validate every supplied client field. Unknown keys are dropped."""
    parsed: dict = {}
    for name in _MUTABLE_FIELDS:
        if name not in fields:
            continue
        value = fields[name]
        if name == "name":
            value = check_text(value, errors, "name", max_length=200, required=True)
        elif name == "category":
            value = check_choice(value, RISK_CATEGORIES, errors, "category")
        elif name == "status":
            value = check_choice(value, RISK_STATUSES, errors, "status")
        elif name == "treatment_strategy":
            value = check_choice(value, TREATMENT_STRATEGIES, errors, "treatment_strategy")
        elif name in ("probability", "residual_probability"):
            value = coerce_probability(value, errors, name)
        elif name in ("impact", "residual_impact"):
            value = coerce_impact(value, errors, name)
        parsed[name] = value
    return parsed


def _apply_derived(values: dict) -> None:
    """Recompute score/level and residual_score in place from current inputs."""
    if values.get("probability") is not None and values.get("impact") is not None:
        result = scoring.score(values["probability"], values["impact"])
        values["score"] = result.score
        values["level"] = result.level
    if values.get("residual_probability") is not None and values.get("residual_impact") is not None:
        values["residual_score"] = scoring.raw_score(values["residual_probability"], values["residual_impact"])
    else:
        values["residual_score"] = None


def create_risk(store: PostureStore, user_id: int, fields: dict, notifier=None) -> Risk:
    """Validate, score and persist a new risk.

    probability and impact are mandatory. A critical or high result fires
    notifier.create_risk_alert(risk) after the row is written.
    """
    errors: list = []
    require(fields, ("name", "category", "probability", "impact"), errors)
    values = _parse(fields, errors)
    raise_if(errors)

    if values.get("status") is None:
        values["status"] = "identified"
    _apply_derived(values)
    risk = store.create("risk", {"user_id": user_id, **values})
    logger.info("Risk created: %s score=%.2f level=%s", risk.id, risk.score, risk.level)

    if notifier is not None and risk.level in scoring.ALERTING_LEVELS:
        notifier.create_risk_alert(risk)
    return risk


def update_risk(store: PostureStore, user_id: int, risk_id: str, patch: dict) -> Risk:
    """Apply a partial patch and recompute derived fields.

    Raises NotFoundError if the risk does not exist for this user and
    ValidationError if a patched value is out of its domain. probability and
    impact cannot be cleared once set.
    """
    risk = store.find_one("risk", risk_id, user_id=user_id)
    if risk is None:
        raise NotFoundError("risk", risk_id)

    errors: list = []
    reject_cleared(patch, ("name", "category", "probability", "impact", "status"), errors)
    parsed = _parse(patch, errors)
    raise_if(errors)

    values = asdict(risk)
    values.update(parsed)
    _apply_derived(values)
    updated = store.update("risk", risk_id, {name: values[name] for name in _PERSISTED_FIELDS})
    if updated is None:
        # Deleted between the read and the write.
        raise NotFoundError("risk", risk_id)
    logger.info("Risk updated: %s score=%s level=%s", risk_id, updated.score, updated.level)
    return updated


def force_inputs(store: PostureStore, risk: Risk, probability: float, impact: int, status: str) -> Risk:
    """Overwrite probability/impact/status and recompute. Used by alert resolve/dismiss."""
    values = asdict(risk)
    values.update(probability=probability, impact=impact, status=status)
    _apply_derived(values)
    updated = store.update("risk", risk.id, {name: values[name] for name in _PERSISTED_FIELDS})
    return updated if updated is not None else risk


def delete_risk(store: PostureStore, user_id: int, risk_id: str) -> None:
    if store.find_one("risk", risk_id, user_id=user_id) is None:
        raise NotFoundError("risk", risk_id)
    store.delete("risk", risk_id)
    logger.info("Risk deleted: %s", risk_id)


def get_risk(store: PostureStore, user_id: int, risk_id: str) -> Risk:
    risk = store.find_one("risk", risk_id, user_id=user_id)
    if risk is None:
        raise NotFoundError("risk", risk_id)
    return risk


def list_risks(
    store: PostureStore,
    user_id: int,
    level: Optional[str] = None,
    category: Optional[str] = None,
    status: Optional[str] = None,
    limit: int = 20,
    offset: int = 0,
) -> tuple[list[Risk], int]:
    """Return one page of a user's risks, highest score first, plus the total count."""
    filters = {k: v for k, v in (("level", level), ("category", category), ("status", status)) if v}
    items = store.find(
        "risk", user_id=user_id, order_by="score", descending=True, limit=limit, offset=offset, **filters
    )
    return items, store.count("risk", user_id=user_id, **filters)


def prioritized_risks(store: PostureStore, user_id: int, limit: int = 10) -> list[tuple[int, Risk]]:
    """Rank a user's open (non-closed) risks by score."""
    open_statuses = [s for s in RISK_STATUSES if s != "closed"]
    return scoring.prioritize(store.find("risk", user_id=user_id, status=open_statuses), limit=limit)


def calculate(fields: dict) -> dict:
    """Stateless score preview for arbitrary (probability, impact) input."""
    errors: list = []
    require(fields, ("probability", "impact"), errors)
    probability = coerce_probability(fields.get("probability"), errors)
    impact = coerce_impact(fields.get("impact"), errors)
    raise_if(errors, "Invalid probability or impact values")
    return scoring.calculate(probability, impact)
