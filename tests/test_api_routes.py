"""
tests/test_api_routes.py -- Integration tests for the posture API routes.

These tests exercise the full stack: FastAPI routing -> auth dependency injection
-> posture services -> PostureStore -> response model serialization. Unit testing
individual route functions would miss middleware, dependency injection, error
envelopes and response model validation.

Coverage:
  - Auth: 401 without credentials, 403 for a viewer on mutations
  - Risks: create scores, PATCH/PUT recompute, 404 and 422 envelopes, calculate,
    matrix, prioritized, pagination
  - Threats, vulnerabilities, assets: CRUD, statistics, topology, position
  - Alerts: list -> resolve -> gone, viewer may acknowledge but not resolve
  - Dashboard: per-user aggregate

Fixtures used (from conftest.py):
  - api_client: (client, token, uid) -- TestClient with admin JWT.
    The module shares one client; tests that need exact counts create their
    own user with make_user() so they see an empty posture.
"""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from conftest import auth_headers, make_user

RISK = {"name": "Laptop theft", "category": "operational", "probability": 0.8, "impact": 8}


@pytest.fixture(scope="module")
def admin(api_client: tuple[TestClient, str, int]) -> tuple[TestClient, dict]:
    client, token, _uid = api_client
    return client, auth_headers(token)


def _fresh_user(client: TestClient, username: str, role: str = "analyst") -> dict:
    _uid, token = make_user(client.app.state.user_store, username, role)
    return auth_headers(token)


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


class TestAuthRequired:
    """Every posture route requires credentials."""

    @pytest.mark.parametrize(
        "method,path",
        [
            ("get", "/api/v1/risks"),
            ("get", "/api/v1/threats"),
            ("get", "/api/v1/vulnerabilities"),
            ("get", "/api/v1/assets"),
            ("get", "/api/v1/alerts"),
            ("get", "/api/v1/dashboard"),
        ],
    )
    def test_unauthenticated_401(self, api_client, method: str, path: str) -> None:
        client, _token, _uid = api_client
        resp = getattr(client, method)(path)
        assert resp.status_code == 401, f"{path}: expected 401, got {resp.status_code}"
        assert resp.json()["error"]["code"] == "unauthorized"

    def test_bad_token_401(self, api_client) -> None:
        client, _token, _uid = api_client
        resp = client.get("/api/v1/risks", headers=auth_headers("not-a-jwt"))
        assert resp.status_code == 401

    def test_viewer_cannot_create(self, api_client) -> None:
        client, _token, _uid = api_client
        headers = _fresh_user(client, "viewer1", role="viewer")
        resp = client.post("/api/v1/risks", json=RISK, headers=headers)
        assert resp.status_code == 403, f"Expected 403, got {resp.status_code}"
        assert resp.json()["error"]["code"] == "forbidden"

    def test_viewer_can_read(self, api_client) -> None:
        client, _token, _uid = api_client
        headers = _fresh_user(client, "viewer2", role="viewer")
        assert client.get("/api/v1/risks", headers=headers).status_code == 200


# ---------------------------------------------------------------------------
# Risks
# ---------------------------------------------------------------------------


class TestRiskRoutes:
    def test_create_scores(self, admin) -> None:
        client, headers = admin
        resp = client.post("/api/v1/risks", json=RISK, headers=headers)
        assert resp.status_code == 201, resp.text
        data = resp.json()
        assert data["score"] == 64.0
        assert data["level"] == "critical"
        assert data["status"] == "identified"

    def test_client_score_ignored(self, admin) -> None:
        client, headers = admin
        resp = client.post("/api/v1/risks", json={**RISK, "score": 1.0, "level": "low"}, headers=headers)
        assert resp.status_code == 201
        assert resp.json()["score"] == 64.0

    def test_string_inputs_accepted(self, admin) -> None:
        client, headers = admin
        resp = client.post("/api/v1/risks", json={**RISK, "probability": "0.3", "impact": "5"}, headers=headers)
        assert resp.status_code == 201, resp.text
        assert (resp.json()["score"], resp.json()["level"]) == (15.0, "medium")

    def test_patch_and_put_recompute(self, admin) -> None:
        client, headers = admin
        risk_id = client.post("/api/v1/risks", json=RISK, headers=headers).json()["id"]

        resp = client.patch(f"/api/v1/risks/{risk_id}", json={"probability": 0.2}, headers=headers)
        assert resp.status_code == 200, resp.text
        assert (resp.json()["score"], resp.json()["level"]) == (16.0, "medium")

        resp = client.put(f"/api/v1/risks/{risk_id}", json={"impact": 10}, headers=headers)
        assert resp.status_code == 200
        assert resp.json()["score"] == 20.0
        assert resp.json()["probability"] == 0.2, "PUT is a partial update"

    def test_fractional_impact_422_envelope(self, admin) -> None:
        client, headers = admin
        resp = client.post("/api/v1/risks", json={**RISK, "impact": "7.5"}, headers=headers)
        assert resp.status_code == 422
        error = resp.json()["error"]
        assert error["code"] == "validation_error"
        assert [f["field"] for f in error["fields"]] == ["impact"]

    def test_clearing_probability_422(self, admin) -> None:
        client, headers = admin
        risk_id = client.post("/api/v1/risks", json=RISK, headers=headers).json()["id"]
        resp = client.patch(f"/api/v1/risks/{risk_id}", json={"probability": None}, headers=headers)
        assert resp.status_code == 422
        assert resp.json()["error"]["fields"][0]["message"] == "Probability cannot be cleared"

    def test_bad_enum_422_envelope(self, admin) -> None:
        client, headers = admin
        resp = client.post("/api/v1/risks", json={**RISK, "category": "cosmic"}, headers=headers)
        assert resp.status_code == 422
        error = resp.json()["error"]
        assert error["code"] == "validation_error"
        assert "category" in [f["field"] for f in error["fields"]]

    def test_not_found_envelope(self, admin) -> None:
        client, headers = admin
        resp = client.get("/api/v1/risks/00000000-0000-0000-0000-000000000000", headers=headers)
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "risk_not_found"

    def test_delete(self, admin) -> None:
        client, headers = admin
        risk_id = client.post("/api/v1/risks", json=RISK, headers=headers).json()["id"]
        assert client.delete(f"/api/v1/risks/{risk_id}", headers=headers).status_code == 204
        assert client.get(f"/api/v1/risks/{risk_id}", headers=headers).status_code == 404

    def test_calculate(self, admin) -> None:
        client, headers = admin
        resp = client.post(
            "/api/v1/risks/calculate",
            json={"probability": 0.8, "impact": 8, "reduction_factor": 0.5},
            headers=headers,
        )
        assert resp.status_code == 200, resp.text
        data = resp.json()
        assert data["risk_score"] == 64.0
        assert data["description"] == "Critical risk (64.0/100) - Immediate action required"
        assert data["residual"]["risk_score"] == 24.0

    def test_calculate_invalid(self, admin) -> None:
        client, headers = admin
        resp = client.post("/api/v1/risks/calculate", json={"probability": 2, "impact": 5}, headers=headers)
        assert resp.status_code == 422
        assert resp.json()["error"]["message"] == "Invalid probability or impact values"

    def test_list_matrix_prioritized(self, api_client) -> None:
        client, _token, _uid = api_client
        headers = _fresh_user(client, "riskowner")
        for probability in (0.1, 0.9, 0.5):
            client.post("/api/v1/risks", json={**RISK, "probability": probability}, headers=headers)

        page = client.get("/api/v1/risks", params={"limit": 2}, headers=headers).json()
        assert page["total"] == 3
        assert [r["score"] for r in page["items"]] == [72.0, 40.0]

        critical = client.get("/api/v1/risks", params={"level": "critical"}, headers=headers).json()
        assert critical["total"] == 1

        matrix = client.get("/api/v1/risks/matrix", headers=headers).json()
        assert matrix["statistics"] == {"critical": 1, "high": 1, "medium": 0, "low": 1, "total": 3}

        ranked = client.get("/api/v1/risks/prioritized", params={"limit": 1}, headers=headers).json()
        assert len(ranked) == 1
        assert ranked[0]["priority"] == 1 and ranked[0]["risk"]["score"] == 72.0

    def test_other_users_risk_invisible(self, admin) -> None:
        client, headers = admin
        risk_id = client.post("/api/v1/risks", json=RISK, headers=headers).json()["id"]
        other = _fresh_user(client, "snooper")
        assert client.get(f"/api/v1/risks/{risk_id}", headers=other).status_code == 404


# ---------------------------------------------------------------------------
# Threats, vulnerabilities, assets
# ---------------------------------------------------------------------------


class TestThreatRoutes:
    def test_crud(self, admin) -> None:
        client, headers = admin
        body = {"name": "Credential stuffing", "type": "brute_force", "severity": "high"}
        resp = client.post("/api/v1/threats", json=body, headers=headers)
        assert resp.status_code == 201, resp.text
        threat = resp.json()
        assert threat["status"] == "active"

        resp = client.patch(f"/api/v1/threats/{threat['id']}", json={"status": "mitigated"}, headers=headers)
        assert resp.json()["mitigated_at"] is not None

        listed = client.get("/api/v1/threats", params={"search": "stuffing"}, headers=headers).json()
        assert threat["id"] in [t["id"] for t in listed["items"]]

        assert client.delete(f"/api/v1/threats/{threat['id']}", headers=headers).status_code == 204

    def test_statistics(self, api_client) -> None:
        client, _token, _uid = api_client
        headers = _fresh_user(client, "threatstats")
        client.post("/api/v1/threats", json={"name": "a", "type": "malware", "severity": "critical"}, headers=headers)
        stats = client.get("/api/v1/threats/statistics", headers=headers).json()
        assert stats["total"] == 1
        assert stats["by_severity"]["critical"] == 1
        assert stats["active"] == 1


class TestVulnerabilityRoutes:
    def test_create_derives_severity(self, admin) -> None:
        client, headers = admin
        body = {"name": "xz backdoor", "cve_id": "cve-2024-3094", "cvss_score": 10.0}
        resp = client.post("/api/v1/vulnerabilities", json=body, headers=headers)
        assert resp.status_code == 201, resp.text
        assert resp.json()["severity"] == "critical"
        assert resp.json()["cve_id"] == "CVE-2024-3094"

    def test_bad_cve_id_422(self, admin) -> None:
        client, headers = admin
        body = {"name": "x", "cve_id": "nope", "cvss_score": 5}
        resp = client.post("/api/v1/vulnerabilities", json=body, headers=headers)
        assert resp.status_code == 422

    def test_patch_and_statistics(self, api_client) -> None:
        client, _token, _uid = api_client
        headers = _fresh_user(client, "vulnstats")
        vuln = client.post("/api/v1/vulnerabilities", json={"name": "a", "cvss_score": 7.5}, headers=headers).json()
        resp = client.patch(f"/api/v1/vulnerabilities/{vuln['id']}", json={"status": "patched"}, headers=headers)
        assert resp.json()["patched_at"] is not None

        stats = client.get("/api/v1/vulnerabilities/statistics", headers=headers).json()
        assert stats == {"total": 1, "by_severity": {"critical": 0, "high": 1, "medium": 0, "low": 0}, "open": 0}


class TestAssetRoutes:
    def test_crud_topology_position(self, api_client) -> None:
        client, _token, _uid = api_client
        headers = _fresh_user(client, "assetowner")
        web = client.post(
            "/api/v1/assets",
            json={"name": "web-01", "type": "web_service", "is_public_facing": True, "ports_open": [443]},
            headers=headers,
        )
        assert web.status_code == 201, web.text
        web_id = web.json()["id"]
        db_id = client.post("/api/v1/assets", json={"name": "db-01", "type": "database"}, headers=headers).json()["id"]

        resp = client.put(f"/api/v1/assets/{web_id}", json={"connections": [db_id]}, headers=headers)
        assert resp.status_code == 200
        assert resp.json()["ports_open"] == [443]

        resp = client.patch(
            f"/api/v1/assets/{web_id}/position", json={"position_x": 10, "position_y": "20.5"}, headers=headers
        )
        assert resp.status_code == 200, resp.text
        assert (resp.json()["position_x"], resp.json()["position_y"]) == (10.0, 20.5)

        graph = client.get("/api/v1/assets/topology", headers=headers).json()
        assert len(graph["nodes"]) == 2
        assert graph["links"] == [{"source": web_id, "target": db_id}]

        stats = client.get("/api/v1/assets/statistics", headers=headers).json()
        assert stats["total"] == 2 and stats["public_facing"] == 1

        assert client.delete(f"/api/v1/assets/{db_id}", headers=headers).status_code == 204
        assert client.get(f"/api/v1/assets/{db_id}", headers=headers).json()["error"]["code"] == "asset_not_found"


# ---------------------------------------------------------------------------
# Alerts and dashboard
# ---------------------------------------------------------------------------


class TestAlertRoutes:
    def test_list_resolve_flow(self, api_client) -> None:
        client, _token, _uid = api_client
        headers = _fresh_user(client, "alertowner")
        risk_id = client.post("/api/v1/risks", json=RISK, headers=headers).json()["id"]
        key = f"risk-{risk_id}"

        listing = client.get("/api/v1/alerts", headers=headers).json()
        assert [a["id"] for a in listing["alerts"]] == [key]
        assert listing["critical"] == 1

        resp = client.patch(f"/api/v1/alerts/{key}/resolve", headers=headers)
        assert resp.status_code == 200, resp.text
        assert resp.json()["status"] == "resolved"
        assert resp.json()["key"] == key

        assert client.get("/api/v1/alerts", headers=headers).json()["total"] == 0
        risk = client.get(f"/api/v1/risks/{risk_id}", headers=headers).json()
        assert (risk["score"], risk["level"], risk["status"]) == (2.0, "low", "closed")

    def test_statistics(self, api_client) -> None:
        client, _token, _uid = api_client
        headers = _fresh_user(client, "alertstats")
        client.post("/api/v1/threats", json={"name": "a", "type": "ddos", "severity": "high"}, headers=headers)
        stats = client.get("/api/v1/alerts/statistics", headers=headers).json()
        assert stats["high"]["threats"] == 1
        assert stats["total_alerts"] == 1

    def test_viewer_acknowledge_but_not_resolve(self, api_client) -> None:
        client, _token, _uid = api_client
        headers = _fresh_user(client, "alertviewer", role="viewer")
        key = "threat-00000000-0000-0000-0000-000000000001"
        resp = client.patch(f"/api/v1/alerts/{key}/acknowledge", headers=headers)
        assert resp.status_code == 200, resp.text
        assert resp.json()["status"] == "acknowledged"
        assert client.patch(f"/api/v1/alerts/{key}/resolve", headers=headers).status_code == 403

    def test_malformed_alert_id_422(self, admin) -> None:
        client, headers = admin
        resp = client.patch("/api/v1/alerts/incident-123/read", headers=headers)
        assert resp.status_code == 422
        assert resp.json()["error"]["fields"][0]["field"] == "alert_id"


class TestDashboard:
    def test_aggregate(self, api_client) -> None:
        client, _token, _uid = api_client
        headers = _fresh_user(client, "dashowner")
        client.post("/api/v1/risks", json=RISK, headers=headers)
        client.post("/api/v1/risks", json={**RISK, "probability": 0.1, "impact": 1}, headers=headers)
        client.post("/api/v1/assets", json={"name": "fw", "type": "firewall", "criticality": "high"}, headers=headers)

        resp = client.get("/api/v1/dashboard", headers=headers)
        assert resp.status_code == 200, resp.text
        data = resp.json()
        assert data["risks"]["total"] == 2
        assert data["risks"]["by_severity"]["critical"] == 1
        assert data["assets"]["by_severity"]["high"] == 1
        assert data["risk_metrics"]["average_risk_score"] == 32.5
        assert data["alerts"]["critical"]["risks"] == 1
        assert [r["priority"] for r in data["top_risks"]] == [1, 2]
