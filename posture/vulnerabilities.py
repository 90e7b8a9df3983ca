"""
posture/vulnerabilities.py -- Create / update / delete / list for Vulnerability records.

severity falls back to the CVSS band (core.scoring.cvss_severity) when the
client does not supply one. A CVSS score of 7.0 or more on create fires a
vulnerability alert.
"""

import logging
from dataclasses import asdict
from typing import Optional

from core import scoring
from core.errors import NotFoundError
from core.models import SEVERITIES, VULNERABILITY_STATUSES, Vulnerability
from posture.fields import (
    check_choice,
    check_text,
    coerce_number,
    now_iso,
    raise_if,
    reject_cleared,
    require,
)
from posture.store import PostureStore

logger = logging.getLogger("threatmap.posture.vulnerabilities")

_MUTABLE_FIELDS = (
    "name",
    "description",
    "cve_id",
    "cvss_score",
    "severity",
    "status",
    "affected_systems",
    "remediation",
    "discovered_at",
)

_PERSISTED_FIELDS = _MUTABLE_FIELDS + ("patched_at",)

# Statuses that still count as exposure for alerting.
OPEN_STATUSES = ("open", "in_progress")


def _parse(fields: dict, errors: list) -> dict:
    parsed: dict = {}
    for name in _MUTABLE_FIELDS:
        if name not in fields:
            continue
        value = fields[name]
        if name == "name":
            value = check_text(value, errors, "name", max_length=200, required=True)
        elif name == "cve_id":
            value = check_text(value, errors, "cve_id", max_length=30)
            value = value.upper() if value else value
        elif name == "cvss_score":
            value = coerce_number(value, errors, "cvss_score", 0.0, 10.0)
        elif name == "severity":
            value = check_choice(value, SEVERITIES, errors, "severity")
        elif name == "status":
            value = check_choice(value, VULNERABILITY_STATUSES, errors, "status")
        parsed[name] = value
    return parsed


def create_vulnerability(store: PostureStore, user_id: int, fields: dict, notifier=None) -> Vulnerability:
    errors: list = []
    require(fields, ("name",), errors)
    values = _parse(fields, errors)
    if values.get("severity") is None:
        values["severity"] = scoring.cvss_severity(values.get("cvss_score"))
        if values["severity"] is None:
            errors.append({"field": "severity", "message": "Severity or CVSS score is required"})
    raise_if(errors)

    if values.get("status") is None:
        values["status"] = "open"
    if not values.get("discovered_at"):
        values["discovered_at"] = now_iso()
    if values["status"] == "patched":
        values["patched_at"] = now_iso()
    vuln = store.create("vulnerability", {"user_id": user_id, **values})
    logger.info("Vulnerability created: %s cvss=%s severity=%s", vuln.id, vuln.cvss_score, vuln.severity)

    if notifier is not None and (vuln.cvss_score or 0.0) >= 7.0:
        notifier.create_vulnerability_alert(vuln)
    return vuln


def update_vulnerability(store: PostureStore, user_id: int, vuln_id: str, patch: dict) -> Vulnerability:
    vuln = store.find_one("vulnerability", vuln_id, user_id=user_id)
    if vuln is None:
        raise NotFoundError("vulnerability", vuln_id)

    errors: list = []
    reject_cleared(patch, ("name", "severity", "status"), errors)
    parsed = _parse(patch, errors)
    raise_if(errors)

    values = asdict(vuln)
    values.update(parsed)
    if values["status"] == "patched" and vuln.status != "patched":
        values["patched_at"] = now_iso()
    updated = store.update("vulnerability", vuln_id, {name: values[name] for name in _PERSISTED_FIELDS})
    if updated is None:
        raise NotFoundError("vulnerability", vuln_id)
    logger.info("Vulnerability updated: %s", vuln_id)
    return updated


def delete_vulnerability(store: PostureStore, user_id: int, vuln_id: str) -> None:
    if store.find_one("vulnerability", vuln_id, user_id=user_id) is None:
        raise NotFoundError("vulnerability", vuln_id)
    store.delete("vulnerability", vuln_id)
    logger.info("Vulnerability deleted: %s", vuln_id)


def get_vulnerability(store: PostureStore, user_id: int, vuln_id: str) -> Vulnerability:
    vuln = store.find_one("vulnerability", vuln_id, user_id=user_id)
    if vuln is None:
        raise NotFoundError("vulnerability", vuln_id)
    return vuln


def list_vulnerabilities(
    store: PostureStore,
    user_id: int,
    severity: Optional[str] = None,
    status: Optional[str] = None,
    search: Optional[str] = None,
    limit: int = 20,
    offset: int = 0,
) -> tuple[list[Vulnerability], int]:
    """Return one page of a user's vulnerabilities, highest CVSS first, plus the total count."""
    filters = {k: v for k, v in (("severity", severity), ("status", status)) if v}
    items = store.find(
        "vulnerability",
        user_id=user_id,
        order_by="cvss_score",
        descending=True,
        limit=limit,
        offset=offset,
        search=search,
        **filters,
    )
    return items, store.count("vulnerability", user_id=user_id, search=search, **filters)


def vulnerability_statistics(store: PostureStore, user_id: int) -> dict:
    return {
        "total": store.count("vulnerability", user_id=user_id),
        "by_severity": {s: store.count("vulnerability", user_id=user_id, severity=s) for s in SEVERITIES},
        "open": store.count("vulnerability", user_id=user_id, status=list(OPEN_STATUSES)),
    }
