"""Detection hook tests: failing services open incidents, recovered ones auto-resolve"""
import httpx

from core import (
    Actor, HealthCheckDetails, HealthProbeResult, IncidentCategory, IncidentSeverity,
    IncidentSource, IncidentStatus, ResolvedBy
)
from engines import HealthProber, run_health_checks
from engines.detection import classify_failure


class Switchboard:
    """Answers health probes per host; unknown hosts refuse connections."""

    def __init__(self, **statuses):
        self.statuses = statuses

    def __call__(self, request):
        status = self.statuses.get(request.url.host.split(".")[0])
        if status is None:
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(status, text="<html>error page</html>" if status >= 500 else "ok")

    def prober(self):
        return HealthProber(timeout=1.0, transport=httpx.MockTransport(self))


class TestClassifyFailure:
    def test_no_answer_is_network(self):
        result = HealthProbeResult(healthy=False, service="a", url="http://a/health", error="refused")
        assert classify_failure(result) == (IncidentCategory.NETWORK, IncidentSeverity.HIGH)

    def test_error_status_is_performance(self):
        result = HealthProbeResult(healthy=False, service="a", url="http://a/health", status_code=500)
        assert classify_failure(result) == (IncidentCategory.PERFORMANCE, IncidentSeverity.MEDIUM)


class TestRunHealthChecks:
    async def test_failing_service_opens_incident(self, db, store, make_service):
        service = await make_service("checkout", "http://checkout.internal")
        board = Switchboard(checkout=503)

        run = await run_health_checks(db, prober=board.prober())

        assert run.checked == 1
        assert len(run.incidents_opened) == 1
        incident = await store.get(run.incidents_opened[0])
        assert incident.source == IncidentSource.SYSTEM
        assert incident.service_id == service.id
        assert incident.category == IncidentCategory.PERFORMANCE
        assert incident.metadata.error_count == 1
        assert [e.actor for e in incident.timeline] == [Actor.SYSTEM, Actor.SYSTEM]
        check = incident.timeline[1].details
        assert isinstance(check, HealthCheckDetails)
        assert check.status_code == 503
        assert check.health_data == "<html>error page</html>"

    async def test_incident_written_in_one_commit(self, db, store, make_service):
        await make_service("checkout", "http://checkout.internal")

        run = await run_health_checks(db, prober=Switchboard(checkout=503).prober())

        incident = await store.get(run.incidents_opened[0])
        assert incident.version == 1
        assert [e.event for e in incident.timeline] == ["Incident detected", "Health check failed"]
        logs = await store.list_logs(incident.id)
        assert len(logs) == 1
        assert "checkout" in logs[0].message

    async def test_unreachable_service_is_network_incident(self, db, store, make_service):
        await make_service("payments", "http://payments.internal")
        run = await run_health_checks(db, prober=Switchboard().prober())
        incident = await store.get(run.incidents_opened[0])
        assert incident.category == IncidentCategory.NETWORK
        assert incident.severity == IncidentSeverity.HIGH

    async def test_repeat_failure_adds_log_to_existing_incident(self, db, store, make_service):
        await make_service("checkout", "http://checkout.internal")
        board = Switchboard(checkout=500)

        first = await run_health_checks(db, prober=board.prober())
        second = await run_health_checks(db, prober=board.prober())

        assert second.incidents_opened == []
        incident = await store.get(first.incidents_opened[0])
        assert incident.metadata.log_count == 2
        assert (await store.list_incidents()).count == 1

    async def test_recovery_auto_resolves(self, db, store, make_service):
        await make_service("checkout", "http://checkout.internal")
        board = Switchboard(checkout=500)
        opened = (await run_health_checks(db, prober=board.prober())).incidents_opened

        board.statuses["checkout"] = 200
        run = await run_health_checks(db, prober=board.prober())

        assert run.incidents_auto_resolved == opened
        incident = await store.get(opened[0])
        assert incident.status == IncidentStatus.AUTO_RESOLVED
        assert incident.resolved_by == ResolvedBy.SYSTEM
        assert incident.resolution_time >= 0
        assert incident.timeline[-1].actor == Actor.SYSTEM

    async def test_engineer_incidents_left_alone(self, db, store, make_service, make_incident):
        service = await make_service("checkout", "http://checkout.internal")
        manual = await make_incident(service_id=service.id)

        run = await run_health_checks(db, prober=Switchboard(checkout=200).prober())

        assert run.incidents_auto_resolved == []
        assert (await store.get(manual.id)).status == IncidentStatus.OPEN

    async def test_disabled_services_skipped(self, db, make_service):
        await make_service("checkout", "http://checkout.internal", enabled=False)
        run = await run_health_checks(db, prober=Switchboard().prober())
        assert run.checked == 0
        assert run.results == []
