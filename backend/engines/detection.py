"""
Detection Hook
Single pass over enabled services: failing probes raise system incidents,
recovered services auto-resolve them.
"""
from typing import List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from core import (
    Actor, HealthCheckRunResult, HealthProbeResult, Incident, IncidentCategory,
    IncidentCreateRequest, IncidentSeverity, IncidentSource, IncidentStatus,
    LogCreateRequest, LogLevel, Service, logger
)
from .health_probe import HealthProber
from .incident_store import IncidentStore
from .service_registry import ServiceRegistry


def classify_failure(result: HealthProbeResult) -> Tuple[IncidentCategory, IncidentSeverity]:
    """Nothing answered -> network/high; an error status -> performance/medium."""
    if result.status_code is None:
        return IncidentCategory.NETWORK, IncidentSeverity.HIGH
    return IncidentCategory.PERFORMANCE, IncidentSeverity.MEDIUM


def failure_log_line(result: HealthProbeResult) -> str:
    return f"Health check failed for {result.service} ({result.url}): {result.error or 'unhealthy'}"


async def open_incident(
    store: IncidentStore,
    service: Service,
    result: HealthProbeResult,
    body: Optional[str] = None
) -> Incident:
    """Create a system incident for a failing service, with its health check and first log line."""
    category, severity = classify_failure(result)
    return await store.create(
        IncidentCreateRequest(
            title=f"{service.name} health check failing",
            description=failure_log_line(result),
            service_id=service.id,
            severity=severity,
            category=category,
        ),
        source=IncidentSource.SYSTEM,
        detected_at=result.checked_at,
        health_check=result,
        health_data=body,
        logs=[LogCreateRequest(message=failure_log_line(result), level=LogLevel.ERROR)],
    )


async def run_health_checks(db: AsyncSession, prober: Optional[HealthProber] = None) -> HealthCheckRunResult:
    """Probe every enabled service once and reconcile system incidents."""
    prober = prober or HealthProber()
    registry = ServiceRegistry(db)
    store = IncidentStore(db)

    services = (await registry.list_services(enabled=True)).services
    results: List[HealthProbeResult] = []
    opened: List[str] = []
    resolved: List[str] = []

    for service in services:
        result, body = await prober.probe(service)
        results.append(result)
        active = await store.active_system_incidents(service.id)

        if not result.healthy:
            if active:
                await store.add_logs(active[0].id, [
                    LogCreateRequest(message=failure_log_line(result), level=LogLevel.ERROR)
                ])
            else:
                incident = await open_incident(store, service, result, body)
                opened.append(incident.id)
                logger.warning(f"Incident opened for failing service {service.name}", {
                    "incident_id": incident.id,
                    "error": result.error
                })
            continue

        for incident in active:
            await store.update_status(
                incident.id,
                IncidentStatus.AUTO_RESOLVED,
                notes=f"{service.name} health check passed",
                actor=Actor.SYSTEM,
                actor_name="health-check",
            )
            resolved.append(incident.id)

    logger.info("Health check pass complete", {
        "checked": len(services),
        "opened": len(opened),
        "auto_resolved": len(resolved)
    })
    return HealthCheckRunResult(
        checked=len(services),
        results=results,
        incidents_opened=opened,
        incidents_auto_resolved=resolved,
    )
