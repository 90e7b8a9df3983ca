"""
alerts/synthesizer.py -- The merged, user-facing alert view.

There is no alert queue. Whether an entity is alerting is recomputed from
live entity state on every call:

  risks            level in {critical, high}
  threats          severity in {critical, high} and status == active
  vulnerabilities  severity in {critical, high} and status in {open, in_progress}

Persisted Alert rows (posture.store "alert" kind) only overlay the user's
interaction state (read, acknowledged, resolved, dismissed) on top.

Reconciliation: list_alerts() deletes every Alert row whose entity is
currently severe, whatever its status, so the entity re-alerts from a clean
state (active, unread). get_alert_statistics() never deletes; it excludes
resolved/dismissed keys from its counts instead. Both read the same
SEVERE_SCANS table so they agree on what "currently alerting" means.

Everything is scoped by user_id: entities and Alert rows alike. There is a
race between the reconcile delete and a concurrent resolve; with
human-paced traffic that is accepted.
"""

import logging
from typing import Any, Optional

from core.models import ALERT_TERMINAL_STATUSES
from core.scoring import ALERTING_LEVELS
from posture.store import PostureStore
from posture.vulnerabilities import OPEN_STATUSES

logger = logging.getLogger("threatmap.alerts.synthesizer")

_SEVERE = sorted(ALERTING_LEVELS)

# entity type -> (store kind, severity column, extra filters)
SEVERE_SCANS: dict[str, tuple[str, str, dict]] = {
    "risk": ("risk", "level", {}),
    "threat": ("threat", "severity", {"status": "active"}),
    "vulnerability": ("vulnerability", "severity", {"status": list(OPEN_STATUSES)}),
}

STATUS_FILTERS = ("active", "resolved", "dismissed", "all")


def alert_key(entity_type: str, entity_id: str) -> str:
    return f"{entity_type}-{entity_id}"


def _scan(store: PostureStore, user_id: int, entity_type: str, levels: Any = None) -> list:
    kind, column, extra = SEVERE_SCANS[entity_type]
    filters = {column: levels if levels is not None else _SEVERE, **extra}
    return store.find(kind, user_id=user_id, **filters)


def _severity_of(entity_type: str, entity) -> str:
    return entity.level if entity_type == "risk" else entity.severity


def _data_for(entity_type: str, entity) -> dict:
    if entity_type == "risk":
        return {"probability": entity.probability, "impact": entity.impact, "risk_score": entity.score}
    if entity_type == "threat":
        return {"type": entity.type, "status": entity.status, "source": entity.source}
    return {"cve_id": entity.cve_id, "cvss_score": entity.cvss_score, "status": entity.status}


def list_alerts(store: PostureStore, user_id: int, status_filter: Optional[str] = None) -> dict:
    """Return {alerts, total, critical, high} for one user.

    status_filter: "active" (default), "resolved", "dismissed" or "all".
    Any other value behaves like "all".
    """
    severe: list[tuple[str, Any]] = []
    for entity_type in SEVERE_SCANS:
        severe.extend((entity_type, e) for e in _scan(store, user_id, entity_type))
    rows = store.find("alert", user_id=user_id)

    current_keys = {alert_key(t, e.id) for t, e in severe}
    stale = [r for r in rows if r.key in current_keys]
    if stale:
        store.delete_many("alert", [r.id for r in stale])
        logger.info("Reconciled %d alert rows for entities that are currently severe", len(stale))
    by_key = {r.key: r for r in rows if r.key not in current_keys}

    alerts = []
    for entity_type, entity in severe:
        key = alert_key(entity_type, entity.id)
        row = by_key.get(key)
        alerts.append(
            {
                "id": key,
                "type": entity_type,
                "severity": _severity_of(entity_type, entity),
                "name": entity.name,
                "description": entity.description,
                "created_at": entity.created_at,
                "updated_at": entity.updated_at,
                "alert_status": row.status if row is not None else "active",
                "is_read": row.is_read if row is not None else False,
                "data": _data_for(entity_type, entity),
            }
        )

    wanted = status_filter or "active"
    if wanted in ("active", "resolved", "dismissed"):
        alerts = [a for a in alerts if a["alert_status"] == wanted]
    alerts.sort(key=lambda a: a["created_at"], reverse=True)
    return {
        "alerts": alerts,
        "total": len(alerts),
        "critical": sum(1 for a in alerts if a["severity"] == "critical"),
        "high": sum(1 for a in alerts if a["severity"] == "high"),
    }


def get_alert_statistics(store: PostureStore, user_id: int) -> dict:
    """Count currently-alerting entities per severity and type.

    Entities with a resolved/dismissed Alert row are excluded. Nothing is
    deleted here.
    """
    closed_keys = {r.key for r in store.find("alert", user_id=user_id, status=list(ALERT_TERMINAL_STATUSES))}
    plural = {"risk": "risks", "threat": "threats", "vulnerability": "vulnerabilities"}

    result: dict[str, Any] = {}
    grand_total = 0
    for level in ("critical", "high"):
        bucket = {"total": 0}
        for entity_type in SEVERE_SCANS:
            entities = _scan(store, user_id, entity_type, levels=level)
            count = sum(1 for e in entities if alert_key(entity_type, e.id) not in closed_keys)
            bucket[plural[entity_type]] = count
            bucket["total"] += count
        result[level] = bucket
        grand_total += bucket["total"]
    result["total_alerts"] = grand_total
    return result
