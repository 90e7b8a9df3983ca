"""
posture/threats.py -- Create / update / delete / list for Threat records.

severity is user input and is never derived. risk_score is maintained with
the same formula as risks (core.scoring.raw_score) whenever both probability
and impact are present, but it does not drive the threat's severity.
"""

import logging
from dataclasses import asdict
from typing import Optional

from core import scoring
from core.errors import NotFoundError
from core.models import SEVERITIES, THREAT_STATUSES, THREAT_TYPES, Threat
from posture.fields import (
    check_choice,
    check_text,
    coerce_impact,
    coerce_probability,
    now_iso,
    raise_if,
    reject_cleared,
    require,
)
from posture.store import PostureStore

logger = logging.getLogger("threatmap.posture.threats")

_MUTABLE_FIELDS = (
    "name",
    "description",
    "type",
    "severity",
    "status",
    "source",
    "probability",
    "impact",
    "mitigation_strategy",
    "detected_at",
)

_PERSISTED_FIELDS = _MUTABLE_FIELDS + ("risk_score", "mitigated_at")


def _parse(fields: dict, errors: list) -> dict:
    parsed: dict = {}
    for name in _MUTABLE_FIELDS:
        if name not in fields:
            continue
        value = fields[name]
        if name == "name":
            value = check_text(value, errors, "name", max_length=200, required=True)
        elif name == "type":
            value = check_choice(value, THREAT_TYPES, errors, "type")
        elif name == "severity":
            value = check_choice(value, SEVERITIES, errors, "severity")
        elif name == "status":
            value = check_choice(value, THREAT_STATUSES, errors, "status")
        elif name == "probability":
            value = coerce_probability(value, errors)
        elif name == "impact":
            value = coerce_impact(value, errors)
        parsed[name] = value
    return parsed


def _apply_risk_score(values: dict) -> None:
    if values.get("probability") is not None and values.get("impact") is not None:
        values["risk_score"] = scoring.raw_score(values["probability"], values["impact"])
    else:
        values["risk_score"] = None


def create_threat(store: PostureStore, user_id: int, fields: dict, notifier=None) -> Threat:
    """Validate and persist a new threat; critical/high fires a threat alert."""
    errors: list = []
    require(fields, ("name", "type", "severity"), errors)
    values = _parse(fields, errors)
    raise_if(errors)

    if values.get("status") is None:
        values["status"] = "active"
    if not values.get("detected_at"):
        values["detected_at"] = now_iso()
    if values["status"] == "mitigated":
        values["mitigated_at"] = now_iso()
    _apply_risk_score(values)
    threat = store.create("threat", {"user_id": user_id, **values})
    logger.info("Threat created: %s severity=%s by user %s", threat.id, threat.severity, user_id)

    if notifier is not None and threat.severity in scoring.ALERTING_LEVELS:
        notifier.create_threat_alert(threat)
    return threat


def update_threat(store: PostureStore, user_id: int, threat_id: str, patch: dict) -> Threat:
    threat = store.find_one("threat", threat_id, user_id=user_id)
    if threat is None:
        raise NotFoundError("threat", threat_id)

    errors: list = []
    reject_cleared(patch, ("name", "type", "severity", "status"), errors)
    parsed = _parse(patch, errors)
    raise_if(errors)

    values = asdict(threat)
    values.update(parsed)
    if values["status"] == "mitigated" and threat.status != "mitigated":
        values["mitigated_at"] = now_iso()
    _apply_risk_score(values)
    updated = store.update("threat", threat_id, {name: values[name] for name in _PERSISTED_FIELDS})
    if updated is None:
        raise NotFoundError("threat", threat_id)
    logger.info("Threat updated: %s", threat_id)
    return updated


def delete_threat(store: PostureStore, user_id: int, threat_id: str) -> None:
    if store.find_one("threat", threat_id, user_id=user_id) is None:
        raise NotFoundError("threat", threat_id)
    store.delete("threat", threat_id)
    logger.info("Threat deleted: %s", threat_id)


def get_threat(store: PostureStore, user_id: int, threat_id: str) -> Threat:
    threat = store.find_one("threat", threat_id, user_id=user_id)
    if threat is None:
        raise NotFoundError("threat", threat_id)
    return threat


def list_threats(
    store: PostureStore,
    user_id: int,
    severity: Optional[str] = None,
    type: Optional[str] = None,
    status: Optional[str] = None,
    search: Optional[str] = None,
    limit: int = 20,
    offset: int = 0,
) -> tuple[list[Threat], int]:
    """Return one page of a user's threats, most recently detected first, plus the total count."""
    filters = {k: v for k, v in (("severity", severity), ("type", type), ("status", status)) if v}
    items = store.find(
        "threat",
        user_id=user_id,
        order_by="detected_at",
        descending=True,
        limit=limit,
        offset=offset,
        search=search,
        **filters,
    )
    return items, store.count("threat", user_id=user_id, search=search, **filters)


def threat_statistics(store: PostureStore, user_id: int) -> dict:
    return {
        "total": store.count("threat", user_id=user_id),
        "by_severity": {s: store.count("threat", user_id=user_id, severity=s) for s in SEVERITIES},
        "active": store.count("threat", user_id=user_id, status="active"),
        "mitigated": store.count("threat", user_id=user_id, status="mitigated"),
    }
