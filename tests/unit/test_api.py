"""HTTP API tests through the ASGI app"""
import httpx
import pytest

from engines import HealthProber
from integrations import AnalysisService, get_analysis_service


@pytest.fixture(autouse=True)
def offline_dependencies(app):
    """No outbound calls: rule-based analysis only, health probes answered locally."""
    from main import get_health_prober

    def handler(request):
        if request.url.host.startswith("down"):
            return httpx.Response(503, text="unavailable")
        return httpx.Response(200, json={"status": "ok"})

    app.dependency_overrides[get_analysis_service] = lambda: AnalysisService(clients=[])
    app.dependency_overrides[get_health_prober] = lambda: HealthProber(
        timeout=1.0, transport=httpx.MockTransport(handler)
    )


async def create_incident(client, auth_headers, **fields):
    body = {"title": "Checkout latency", "severity": "high", "category": "performance", **fields}
    response = await client.post("/api/incidents", json=body, headers=auth_headers)
    assert response.status_code == 201, response.text
    return response.json()


class TestSystem:
    async def test_health(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    async def test_version(self, client):
        assert (await client.get("/version")).json()["api_version"] == "v1"


class TestAuthRequired:
    @pytest.mark.parametrize("method,path", [
        ("POST", "/api/incidents"),
        ("PATCH", "/api/incidents/x/status"),
        ("POST", "/api/incidents/x/approve-action"),
        ("POST", "/api/incidents/x/logs"),
        ("POST", "/api/services"),
        ("DELETE", "/api/services/x"),
        ("POST", "/api/system/health-check"),
    ])
    async def test_writes_need_credentials(self, client, method, path):
        response = await client.request(method, path, json={})
        assert response.status_code == 401
        assert response.json()["error"] == "Unauthorized"

    async def test_wrong_api_key(self, client):
        response = await client.post("/api/incidents", json={"title": "x"}, headers={"X-API-Key": "nope"})
        assert response.status_code == 401

    async def test_reads_are_open(self, client):
        assert (await client.get("/api/incidents")).status_code == 200


class TestIncidents:
    async def test_create_and_fetch(self, client, auth_headers):
        created = await create_incident(client, auth_headers, description="p99 above 2s")
        assert created["status"] == "open"
        assert created["source"] == "engineer"
        assert created["version"] == 1

        response = await client.get(f"/api/incidents/{created['id']}")
        detail = response.json()
        assert detail["summary"]["totalLogs"] == 0
        assert detail["logs"] == []
        assert detail["description"] == "p99 above 2s"

    async def test_not_found_shape(self, client):
        response = await client.get("/api/incidents/missing")
        assert response.status_code == 404
        assert response.json() == {
            "error": "NotFound",
            "detail": "Incident not found",
            "details": {"resource": "Incident", "id": "missing"},
        }

    async def test_validation_error_shape(self, client, auth_headers):
        response = await client.post("/api/incidents", json={"title": ""}, headers=auth_headers)
        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "ValidationError"
        assert body["detail"].startswith("title")

    async def test_bad_filter_value(self, client):
        response = await client.get("/api/incidents", params={"status": "closed"})
        assert response.status_code == 400

    async def test_bad_limit(self, client):
        response = await client.get("/api/incidents", params={"limit": 0})
        assert response.status_code == 400
        assert response.json()["error"] == "ValidationError"

    async def test_list_filters(self, client, auth_headers):
        await create_incident(client, auth_headers, title="a", severity="high")
        await create_incident(client, auth_headers, title="b", severity="low")
        body = (await client.get("/api/incidents", params={"severity": "low"})).json()
        assert body["count"] == 1
        assert body["incidents"][0]["title"] == "b"


class TestStatusFlow:
    async def test_open_investigating_resolved(self, client, auth_headers):
        incident = await create_incident(client, auth_headers)
        path = f"/api/incidents/{incident['id']}/status"

        response = await client.patch(path, json={"status": "investigating", "notes": "on it"}, headers=auth_headers)
        assert response.status_code == 200
        assert response.json()["resolvedAt"] is None

        response = await client.patch(path, json={"status": "resolved"}, headers=auth_headers)
        resolved = response.json()
        assert resolved["status"] == "resolved"
        assert resolved["resolvedBy"] == "engineer"
        assert resolved["resolutionTime"] >= 0
        assert len(resolved["timeline"]) == 3
        assert resolved["timeline"][1]["details"]["changedBy"] == "admin"

    async def test_terminal_state_conflict(self, client, auth_headers):
        incident = await create_incident(client, auth_headers)
        path = f"/api/incidents/{incident['id']}/status"
        await client.patch(path, json={"status": "resolved"}, headers=auth_headers)

        response = await client.patch(path, json={"status": "open"}, headers=auth_headers)
        assert response.status_code == 409
        assert response.json()["error"] == "InvalidTransition"

    async def test_engineer_cannot_auto_resolve(self, client, auth_headers):
        incident = await create_incident(client, auth_headers)
        response = await client.patch(
            f"/api/incidents/{incident['id']}/status", json={"status": "auto-resolved"}, headers=auth_headers
        )
        assert response.status_code == 409

    async def test_if_match_conflict(self, client, auth_headers):
        incident = await create_incident(client, auth_headers)
        path = f"/api/incidents/{incident['id']}/status"
        await client.patch(path, json={"status": "investigating"}, headers=auth_headers)

        response = await client.patch(
            path, json={"status": "resolved"}, headers={**auth_headers, "If-Match": '"1"'}
        )
        assert response.status_code == 409
        assert response.json()["error"] == "Conflict"

        response = await client.patch(
            path, json={"status": "resolved"}, headers={**auth_headers, "If-Match": 'W/"2"'}
        )
        assert response.status_code == 200

    async def test_expected_version_in_body(self, client, auth_headers):
        incident = await create_incident(client, auth_headers)
        response = await client.patch(
            f"/api/incidents/{incident['id']}/status",
            json={"status": "investigating", "expectedVersion": 5},
            headers=auth_headers,
        )
        assert response.status_code == 409

    async def test_malformed_if_match(self, client, auth_headers):
        incident = await create_incident(client, auth_headers)
        response = await client.patch(
            f"/api/incidents/{incident['id']}/status",
            json={"status": "investigating"},
            headers={**auth_headers, "If-Match": "*"},
        )
        assert response.status_code == 400

    async def test_history_newest_first(self, client, auth_headers):
        incident = await create_incident(client, auth_headers)
        await client.patch(
            f"/api/incidents/{incident['id']}/status", json={"status": "investigating"}, headers=auth_headers
        )
        history = (await client.get(f"/api/incidents/{incident['id']}/history")).json()
        assert history["count"] == 2
        assert history["events"][0]["event"] == "Status changed to investigating"
        assert {"key": "To Status", "value": "investigating"} in history["events"][0]["display"]


class TestLogs:
    async def test_add_and_list(self, client, auth_headers):
        incident = await create_incident(client, auth_headers)
        response = await client.post(
            f"/api/incidents/{incident['id']}/logs",
            json={"logs": [{"message": "pool exhausted", "level": "error"}, {"message": "retry"}]},
            headers=auth_headers,
        )
        assert response.status_code == 201
        assert [log["level"] for log in response.json()] == ["error", "info"]

        logs = (await client.get(f"/api/logs/{incident['id']}")).json()
        assert [log["message"] for log in logs] == ["pool exhausted", "retry"]

        detail = (await client.get(f"/api/incidents/{incident['id']}")).json()
        assert detail["summary"]["errorLogs"] == 1
        assert detail["metadata"]["logCount"] == 2

    async def test_logs_for_missing_incident(self, client):
        assert (await client.get("/api/logs/missing")).status_code == 404


class TestAnalysisAndApproval:
    async def test_analysis_then_approve(self, client, auth_headers):
        incident = await create_incident(client, auth_headers)

        analysis = await client.get(f"/api/ai/analysis/{incident['id']}")
        assert analysis.status_code == 200
        body = analysis.json()
        assert body["schemaVersion"] == "1"
        assert body["aiAnalysis"]["provider"] == "rule-based"
        action = body["aiAnalysis"]["suggestedActions"][0]

        path = f"/api/incidents/{incident['id']}/approve-action"
        response = await client.post(path, json={"actionId": action["id"]}, headers=auth_headers)
        assert response.status_code == 200
        approved = response.json()
        assert approved["action"]["approved"] is True
        assert approved["action"]["approvedBy"] == "admin"
        assert approved["incident"]["status"] == "open"
        assert approved["incident"]["timeline"][-1]["event"] == f"Action approved: {action['action']}"

        again = await client.post(path, json={"actionId": action["id"]}, headers=auth_headers)
        assert again.status_code == 409

    async def test_unknown_action(self, client, auth_headers):
        incident = await create_incident(client, auth_headers)
        await client.get(f"/api/ai/analysis/{incident['id']}")
        response = await client.post(
            f"/api/incidents/{incident['id']}/approve-action", json={"actionId": "act_nope"}, headers=auth_headers
        )
        assert response.status_code == 422
        assert response.json()["error"] == "InvalidReference"

    async def test_informational_action(self, client, auth_headers):
        incident = await create_incident(client, auth_headers)
        actions = (await client.get(f"/api/ai/analysis/{incident['id']}")).json()["aiAnalysis"]["suggestedActions"]
        response = await client.post(
            f"/api/incidents/{incident['id']}/approve-action",
            json={"actionId": actions[-1]["id"]},
            headers=auth_headers,
        )
        assert response.status_code == 400

    async def test_analysis_for_missing_incident(self, client):
        assert (await client.get("/api/ai/analysis/missing")).status_code == 404

    async def test_jsonrpc_matches_rest_shape(self, client, auth_headers):
        incident = await create_incident(client, auth_headers)
        rest = (await client.get(f"/api/ai/analysis/{incident['id']}")).json()

        response = await client.post("/api/mcp/jsonrpc", json={
            "jsonrpc": "2.0",
            "id": 1,
            "method": "tools/call",
            "params": {"name": "analyzeIncident", "arguments": {"incidentId": incident["id"]}},
        })
        assert response.status_code == 200
        data = response.json()["result"]["content"][0]["data"]
        assert set(data) == set(rest)
        assert data["incident"] == rest["incident"]

    async def test_jsonrpc_parse_error(self, client):
        response = await client.post("/api/mcp/jsonrpc", content=b"{oops", headers={"Content-Type": "application/json"})
        assert response.json()["error"]["code"] == -32700


class TestServices:
    async def test_crud(self, client, auth_headers):
        response = await client.post(
            "/api/services", json={"name": "checkout", "url": "http://checkout.internal/"}, headers=auth_headers
        )
        assert response.status_code == 201
        service = response.json()
        assert service["url"] == "http://checkout.internal"
        assert service["healthEndpoint"] == "/health"

        response = await client.patch(
            f"/api/services/{service['id']}", json={"enabled": False}, headers=auth_headers
        )
        assert response.json()["enabled"] is False

        listed = (await client.get("/api/services", params={"enabled": "false"})).json()
        assert [s["id"] for s in listed["services"]] == [service["id"]]

        response = await client.delete(f"/api/services/{service['id']}", headers=auth_headers)
        assert response.json() == {"message": "Service deleted", "id": service["id"], "name": "checkout"}
        assert (await client.get(f"/api/services/{service['id']}")).status_code == 404

    async def test_missing_url(self, client, auth_headers):
        response = await client.post("/api/services", json={"name": "checkout"}, headers=auth_headers)
        assert response.status_code == 400
        assert response.json()["detail"] == "Service URL is required"

    async def test_probe_leaves_service_unchanged(self, client, auth_headers):
        service = (await client.post(
            "/api/services", json={"name": "down", "url": "http://down.internal"}, headers=auth_headers
        )).json()

        response = await client.post(f"/api/services/{service['id']}/test", headers=auth_headers)
        assert response.status_code == 200
        result = response.json()
        assert result["healthy"] is False
        assert result["statusCode"] == 503

        after = (await client.get(f"/api/services/{service['id']}")).json()
        assert after == service

    async def test_health_check_run_opens_incident(self, client, auth_headers):
        await client.post("/api/services", json={"name": "down", "url": "http://down.internal"}, headers=auth_headers)
        await client.post("/api/services", json={"name": "up", "url": "http://up.internal"}, headers=auth_headers)

        run = (await client.post("/api/system/health-check", headers=auth_headers)).json()
        assert run["checked"] == 2
        assert len(run["incidentsOpened"]) == 1

        incident = (await client.get(f"/api/incidents/{run['incidentsOpened'][0]}")).json()
        assert incident["source"] == "system"
        assert incident["serviceName"] == "down"


class TestStatsAndSeed:
    async def test_stats(self, client, auth_headers):
        incident = await create_incident(client, auth_headers)
        await client.patch(
            f"/api/incidents/{incident['id']}/status", json={"status": "resolved"}, headers=auth_headers
        )
        stats = (await client.get("/api/system/stats")).json()
        assert stats["summary"]["totalIncidents"] == 1
        assert stats["summary"]["resolvedIncidents"] == 1
        assert stats["byStatus"] == {"resolved": 1}

    async def test_seed(self, client, auth_headers):
        response = await client.post("/api/demo/seed", params={"incidents": 2}, headers=auth_headers)
        assert response.status_code == 200
        seeded = response.json()
        assert len(seeded["services"]) == 5
        assert len(seeded["incidents"]) == 2

        again = (await client.post("/api/demo/seed", params={"incidents": 0}, headers=auth_headers)).json()
        assert again["services"] == seeded["services"]

    async def test_seed_bounds(self, client, auth_headers):
        response = await client.post("/api/demo/seed", params={"incidents": 500}, headers=auth_headers)
        assert response.status_code == 400


class TestUserAuth:
    async def test_register_login_me(self, client):
        credentials = {"email": "dana@example.com", "password": "s3cret-pass"}
        registered = await client.post("/auth/register", json=credentials)
        assert registered.status_code == 200
        assert registered.json()["user"]["email"] == "dana@example.com"

        duplicate = await client.post("/auth/register", json=credentials)
        assert duplicate.status_code == 400

        login = await client.post("/auth/login", json=credentials)
        token = login.json()["access_token"]

        me = await client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert me.json()["email"] == "dana@example.com"

    async def test_bad_password(self, client):
        await client.post("/auth/register", json={"email": "a@example.com", "password": "s3cret-pass"})
        response = await client.post("/auth/login", json={"email": "a@example.com", "password": "wrong-pass"})
        assert response.status_code == 401

    async def test_bearer_token_names_the_actor(self, client):
        registered = await client.post("/auth/register", json={"email": "b@example.com", "password": "s3cret-pass"})
        headers = {"Authorization": f"Bearer {registered.json()['access_token']}"}
        incident = await create_incident(client, headers)
        response = await client.patch(
            f"/api/incidents/{incident['id']}/status", json={"status": "investigating"}, headers=headers
        )
        assert response.json()["timeline"][-1]["details"]["changedBy"] == "b@example.com"

    async def test_logout(self, client):
        registered = await client.post("/auth/register", json={"email": "c@example.com", "password": "s3cret-pass"})
        headers = {"Authorization": f"Bearer {registered.json()['access_token']}"}
        assert (await client.post("/auth/logout", headers=headers)).status_code == 200
        assert (await client.get("/auth/me", headers=headers)).status_code == 401
