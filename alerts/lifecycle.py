"""
alerts/lifecycle.py -- Alert status transitions and their entity side effects.

An alert is addressed by the composite id "{type}-{entity_id}". Entity ids
are UUIDs and contain hyphens, so the type is split off at the FIRST hyphen
only.

Every transition is find-or-create on the Alert row for (user, type, id):
a missing row is created with placeholder title/message and severity "info"
before the transition is applied. No ordering is enforced; an alert can be
resolved without being acknowledged first.

  mark_read    is_read = true
  acknowledge  status = acknowledged, is_read, acknowledged_by/at
  resolve      status = resolved, is_read, resolved_at   + entity downgrade
  dismiss      status = dismissed, is_read               + entity downgrade

Entity side effects:

  type            resolve                          dismiss
  risk            p=0.1 i=2 -> 2.00 low, closed    p=0.4 i=10 -> 40.00 high, monitoring
  threat          mitigated, mitigated_at          monitoring
  vulnerability   patched, patched_at              accepted

The dismissed-risk score of 40.00 lands in "high", so a dismissed risk keeps
alerting and the next list_alerts() call reconciles its row away. That
behaviour is long-standing and kept as is.

If the entity is gone by the time of resolve/dismiss, the Alert row still
transitions and the side effect is skipped with a warning.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from core.errors import ValidationError
from core.models import ALERT_ENTITY_TYPES, ALERT_TYPES, Alert
from posture import risks as risk_service
from posture.store import PostureStore

logger = logging.getLogger("threatmap.alerts.lifecycle")

RESOLVE_RISK_INPUTS = (0.1, 2)
DISMISS_RISK_INPUTS = (0.4, 10)

_DEFAULT_MESSAGES = {
    "read": "Alert marked as read",
    "acknowledged": "Alert acknowledged",
    "resolved": "Alert resolved",
    "dismissed": "Alert dismissed",
}


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def parse_alert_id(alert_id: str) -> tuple[str, str]:
    """Split "{type}-{entity_id}" at the first hyphen.

    Raises ValidationError for a missing hyphen, an unknown type, or an empty
    entity id.
    """
    entity_type, sep, entity_id = (alert_id or "").partition("-")
    if not sep or not entity_id:
        raise ValidationError.for_field("alert_id", f"Malformed alert id: {alert_id!r}")
    if entity_type not in ALERT_ENTITY_TYPES:
        raise ValidationError.for_field("alert_id", f"Unknown alert type: {entity_type!r}")
    return entity_type, entity_id


def _upsert(store: PostureStore, user_id: int, alert_id: str, action: str, values: dict) -> Alert:
    entity_type, entity_id = parse_alert_id(alert_id)
    row = store.find_alert(user_id, entity_type, entity_id)
    if row is not None:
        return store.update("alert", row.id, values) or row
    defaults = {
        "user_id": user_id,
        "related_entity_type": entity_type,
        "related_entity_id": entity_id,
        "title": "Alert",
        "message": _DEFAULT_MESSAGES[action],
        "type": entity_type if entity_type in ALERT_TYPES else "system",
        "severity": "info",
    }
    return store.create("alert", {**defaults, **values})


def mark_read(store: PostureStore, user_id: int, alert_id: str) -> Alert:
    return _upsert(store, user_id, alert_id, "read", {"is_read": True})


def acknowledge(store: PostureStore, user_id: int, alert_id: str, acknowledged_by: Optional[int] = None) -> Alert:
    values = {
        "status": "acknowledged",
        "is_read": True,
        "acknowledged_by": acknowledged_by if acknowledged_by is not None else user_id,
        "acknowledged_at": _now_iso(),
    }
    alert = _upsert(store, user_id, alert_id, "acknowledged", values)
    logger.info("Alert acknowledged: %s by user %s", alert_id, values["acknowledged_by"])
    return alert


def resolve(store: PostureStore, user_id: int, alert_id: str) -> Alert:
    now = _now_iso()
    alert = _upsert(store, user_id, alert_id, "resolved", {"status": "resolved", "is_read": True, "resolved_at": now})
    _downgrade_entity(store, user_id, alert.related_entity_type, alert.related_entity_id, "resolved", now)
    logger.info("Alert resolved: %s", alert_id)
    return alert


def dismiss(store: PostureStore, user_id: int, alert_id: str) -> Alert:
    alert = _upsert(store, user_id, alert_id, "dismissed", {"status": "dismissed", "is_read": True})
    _downgrade_entity(store, user_id, alert.related_entity_type, alert.related_entity_id, "dismissed", _now_iso())
    logger.info("Alert dismissed: %s", alert_id)
    return alert


def _downgrade_entity(store: PostureStore, user_id: int, entity_type: str, entity_id: str, action: str, now: str):
    if entity_type == "asset":
        return
    entity = store.find_one(entity_type, entity_id, user_id=user_id)
    if entity is None:
        logger.warning("%s %s not found while %s alert; entity left unchanged", entity_type, entity_id, action)
        return

    if entity_type == "risk":
        probability, impact = RESOLVE_RISK_INPUTS if action == "resolved" else DISMISS_RISK_INPUTS
        status = "closed" if action == "resolved" else "monitoring"
        updated = risk_service.force_inputs(store, entity, probability, impact, status)
        logger.info("Risk %s set to score %.2f (%s), status %s", entity_id, updated.score, updated.level, status)
    elif entity_type == "threat":
        patch = {"status": "mitigated", "mitigated_at": now} if action == "resolved" else {"status": "monitoring"}
        store.update("threat", entity_id, patch)
        logger.info("Threat %s status changed to %s", entity_id, patch["status"])
    elif entity_type == "vulnerability":
        patch = {"status": "patched", "patched_at": now} if action == "resolved" else {"status": "accepted"}
        store.update("vulnerability", entity_id, patch)
        logger.info("Vulnerability %s status changed to %s", entity_id, patch["status"])
