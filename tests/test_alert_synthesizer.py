"""Unit tests for alerts/synthesizer.py -- the merged alert view.

Alerts are derived from live entity state on every call. Tests seed
entities through the posture services and Alert rows through the store,
then check what list_alerts() and get_alert_statistics() report.
"""

from alerts import lifecycle
from alerts.synthesizer import get_alert_statistics, list_alerts
from posture import risks, threats, vulnerabilities


def _seed(store, user_id: int = 1) -> dict:
    """One alerting entity of each type plus a few that must not alert."""
    ids = {
        "risk": risks.create_risk(
            store, user_id, {"name": "Data loss", "category": "technical", "probability": 0.8, "impact": 8}
        ).id,
        "threat": threats.create_threat(
            store, user_id, {"name": "Botnet", "type": "ddos", "severity": "high"}
        ).id,
        "vulnerability": vulnerabilities.create_vulnerability(
            store, user_id, {"name": "Log4Shell", "cvss_score": 10.0}
        ).id,
    }
    risks.create_risk(store, user_id, {"name": "Minor", "category": "technical", "probability": 0.1, "impact": 1})
    old = {"name": "Old", "type": "malware", "severity": "critical", "status": "closed"}
    threats.create_threat(store, user_id, old)
    vulnerabilities.create_vulnerability(store, user_id, {"name": "Fixed", "cvss_score": 9.0, "status": "patched"})
    return ids


class TestListAlerts:
    def test_only_severe_open_entities_alert(self, store) -> None:
        ids = _seed(store)
        result = list_alerts(store, 1)
        assert {a["id"] for a in result["alerts"]} == {
            f"risk-{ids['risk']}",
            f"threat-{ids['threat']}",
            f"vulnerability-{ids['vulnerability']}",
        }
        assert result["total"] == 3
        assert result["critical"] == 2
        assert result["high"] == 1

    def test_view_fields_without_row(self, store) -> None:
        ids = _seed(store)
        alert = next(a for a in list_alerts(store, 1)["alerts"] if a["type"] == "risk")
        assert alert["alert_status"] == "active"
        assert alert["is_read"] is False
        assert alert["severity"] == "critical"
        assert alert["data"] == {"probability": 0.8, "impact": 8, "risk_score": 64.0}
        assert alert["id"] == f"risk-{ids['risk']}"

    def test_read_row_reset_by_listing(self, store) -> None:
        ids = _seed(store)
        lifecycle.mark_read(store, 1, f"risk-{ids['risk']}")
        assert store.find_alert(1, "risk", ids["risk"]).is_read is True

        alert = next(a for a in list_alerts(store, 1)["alerts"] if a["type"] == "risk")
        assert alert["is_read"] is False
        assert alert["alert_status"] == "active"
        assert store.find_alert(1, "risk", ids["risk"]) is None

    def test_acknowledged_row_reset_by_listing(self, store) -> None:
        ids = _seed(store)
        lifecycle.acknowledge(store, 1, f"threat-{ids['threat']}")

        alert = next(a for a in list_alerts(store, 1)["alerts"] if a["type"] == "threat")
        assert alert["is_read"] is False
        assert alert["alert_status"] == "active"
        assert "acknowledged" not in alert
        assert store.find_alert(1, "threat", ids["threat"]) is None, "Rows for severe entities are always deleted"

    def test_row_for_non_severe_entity_survives(self, store) -> None:
        ids = _seed(store)
        lifecycle.resolve(store, 1, f"threat-{ids['threat']}")
        list_alerts(store, 1, "all")
        assert store.find_alert(1, "threat", ids["threat"]).status == "resolved"

    def test_user_scoping(self, store) -> None:
        _seed(store, user_id=1)
        assert list_alerts(store, 2)["total"] == 0

    def test_status_filters(self, store) -> None:
        ids = _seed(store)
        # A resolved row for an entity that is no longer severe stays resolved.
        lifecycle.resolve(store, 1, f"threat-{ids['threat']}")

        assert list_alerts(store, 1, "resolved")["total"] == 0, "Resolved threat is no longer severe"
        assert list_alerts(store, 1, "active")["total"] == 2
        assert list_alerts(store, 1, "all")["total"] == 2
        assert list_alerts(store, 1, "bogus")["total"] == list_alerts(store, 1, "all")["total"]


class TestReconciliation:
    def test_terminal_row_deleted_when_entity_severe_again(self, store) -> None:
        ids = _seed(store)
        key = f"threat-{ids['threat']}"
        lifecycle.resolve(store, 1, key)
        assert store.find_alert(1, "threat", ids["threat"]).status == "resolved"

        # The threat flares up again.
        threats.update_threat(store, 1, ids["threat"], {"status": "active"})
        result = list_alerts(store, 1)

        assert key in {a["id"] for a in result["alerts"]}
        assert store.find_alert(1, "threat", ids["threat"]) is None, "Stale resolved row must be deleted"

    def test_dismissed_risk_keeps_alerting(self, store) -> None:
        ids = _seed(store)
        lifecycle.dismiss(store, 1, f"risk-{ids['risk']}")
        risk = risks.get_risk(store, 1, ids["risk"])
        assert (risk.score, risk.level) == (40.0, "high")

        alert = next(a for a in list_alerts(store, 1)["alerts"] if a["type"] == "risk")
        assert alert["alert_status"] == "active"
        assert alert["severity"] == "high"
        assert store.find_alert(1, "risk", ids["risk"]) is None


class TestStatistics:
    def test_buckets(self, store) -> None:
        _seed(store)
        stats = get_alert_statistics(store, 1)
        assert stats["critical"] == {"total": 2, "risks": 1, "threats": 0, "vulnerabilities": 1}
        assert stats["high"] == {"total": 1, "risks": 0, "threats": 1, "vulnerabilities": 0}
        assert stats["total_alerts"] == 3

    def test_terminal_keys_excluded_without_delete(self, store) -> None:
        ids = _seed(store)
        lifecycle.dismiss(store, 1, f"vulnerability-{ids['vulnerability']}")
        vulnerabilities.update_vulnerability(store, 1, ids["vulnerability"], {"status": "open"})

        stats = get_alert_statistics(store, 1)
        assert stats["critical"]["vulnerabilities"] == 0
        assert stats["total_alerts"] == 2
        assert store.find_alert(1, "vulnerability", ids["vulnerability"]).status == "dismissed", (
            "Statistics must never delete rows"
        )
