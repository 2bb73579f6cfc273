"""IncidentDeskClient tests, against a mocked transport and against the app itself"""
import json

import httpx
import pytest

from integrations import AnalysisService, get_analysis_service
from utils.api_client import ApiError, IncidentDeskClient
from utils.cli import build_parser, main


class TestAgainstMockTransport:
    async def test_sends_credentials_and_filters(self):
        seen = {}

        def handler(request):
            seen["headers"] = request.headers
            seen["params"] = dict(request.url.params)
            return httpx.Response(200, json={"count": 0, "incidents": []})

        async with IncidentDeskClient("http://desk.test", api_key="k", transport=httpx.MockTransport(handler)) as client:
            await client.list_incidents(status="open", service_id="svc-1")

        assert seen["headers"]["x-api-key"] == "k"
        assert seen["params"] == {"status": "open", "serviceId": "svc-1"}

    async def test_error_detail_surfaces(self):
        def handler(request):
            return httpx.Response(404, json={"error": "NotFound", "detail": "Incident not found"})

        async with IncidentDeskClient("http://desk.test", transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(ApiError) as exc_info:
                await client.get_incident("x")
        assert exc_info.value.status_code == 404
        assert exc_info.value.message == "Incident not found"

    async def test_unreachable_server(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        async with IncidentDeskClient("http://desk.test", transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(ApiError) as exc_info:
                await client.health()
        assert exc_info.value.status_code == 0

    async def test_jsonrpc_error_raised(self):
        def handler(request):
            payload = json.loads(request.content)
            return httpx.Response(200, json={
                "jsonrpc": "2.0", "id": payload["id"], "error": {"code": -32004, "message": "Incident not found"},
            })

        async with IncidentDeskClient("http://desk.test", transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(ApiError) as exc_info:
                await client.analyze_incident("missing")
        assert exc_info.value.status_code == -32004


class TestAgainstApp:
    @pytest.fixture
    async def desk(self, app, auth_headers):
        app.dependency_overrides[get_analysis_service] = lambda: AnalysisService(clients=[])
        transport = httpx.ASGITransport(app=app)
        async with IncidentDeskClient("http://test", api_key=auth_headers["X-API-Key"], transport=transport) as client:
            yield client

    async def test_incident_workflow(self, desk):
        incident = await desk.create_incident("Login failures", category="authentication", severity="high")
        await desk.add_logs(incident["id"], [{"message": "401 Unauthorized from identity provider", "level": "error"}])

        analysis = await desk.analyze_incident(incident["id"])
        assert analysis["aiAnalysis"]["aiCategory"] == "authentication"

        action = analysis["aiAnalysis"]["suggestedActions"][0]
        approved = await desk.approve_action(incident["id"], action_id=action["id"])
        assert approved["action"]["approved"] is True

        updated = await desk.update_status(
            incident["id"], "resolved", notes="keys rotated", expected_version=approved["incident"]["version"]
        )
        assert updated["status"] == "resolved"

        history = await desk.get_history(incident["id"])
        assert history["events"][0]["event"] == "Status changed to resolved"

    async def test_service_workflow(self, desk):
        service = await desk.create_service("checkout", "http://checkout.internal")
        assert (await desk.list_services())["count"] == 1
        updated = await desk.update_service(service["id"], description="checkout flow")
        assert updated["description"] == "checkout flow"
        await desk.delete_service(service["id"])
        with pytest.raises(ApiError) as exc_info:
            await desk.get_service(service["id"])
        assert exc_info.value.status_code == 404


class TestCli:
    def test_parser(self):
        args = build_parser().parse_args(["set-status", "abc", "investigating", "--notes", "looking"])
        assert args.command == "set-status"
        assert args.incident_id == "abc"

    def test_no_command_prints_help(self, capsys):
        assert main([]) == 1
        assert "usage" in capsys.readouterr().out.lower()

    def test_unreachable_backend_exits_nonzero(self, capsys):
        assert main(["--url", "http://127.0.0.1:9", "health"]) == 1
        assert "[ERROR]" in capsys.readouterr().err
