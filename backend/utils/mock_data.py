"""
Testing & Mock Data Utilities
Generates demo services, incidents and logs.
"""
import random
import uuid
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from core import (
    Environment, IncidentCategory, IncidentCreateRequest, IncidentSeverity,
    IncidentSource, LogCreateRequest, LogLevel, ServiceCategory,
    ServiceCreateRequest, ServiceMetadata, logger
)
from engines import IncidentStore, ServiceRegistry


class MockDataGenerator:
    """Generates realistic mock data for demos and tests."""

    # Demo services (name, url, category)
    SERVICES = [
        ("User Authentication", "http://auth.demo.internal", ServiceCategory.API),
        ("Payment Gateway", "http://payments.demo.internal", ServiceCategory.API),
        ("Database", "http://db-proxy.demo.internal", ServiceCategory.DATABASE),
        ("Email Service", "http://mailer.demo.internal", ServiceCategory.QUEUE),
        ("File Storage", "http://storage.demo.internal", ServiceCategory.STORAGE),
    ]

    # Sample error messages by incident category
    ERROR_TEMPLATES = {
        IncidentCategory.DATABASE: [
            "Connection refused to database server at {host}:{port}",
            "Database connection pool exhausted - max connections: {max}",
            "Query timeout after {timeout}ms: {query}",
            "Deadlock detected in transaction {tx_id}",
        ],
        IncidentCategory.PERFORMANCE: [
            "Request latency p99 at {timeout}ms exceeds SLO",
            "GC overhead limit exceeded - heap usage at {percent}%",
            "CPU throttling on {component}: {percent}%",
        ],
        IncidentCategory.NETWORK: [
            "Connection reset by peer: {host}",
            "DNS resolution failed for {hostname}",
            "Socket timeout connecting to upstream: {timeout}ms",
        ],
        IncidentCategory.AUTHENTICATION: [
            "JWT validation failed: token expired for user {user_id}",
            "401 Unauthorized from identity provider",
            "Login failed for user {user_id}: invalid credentials",
        ],
        IncidentCategory.DEPLOYMENT: [
            "Deploy of version {version} failed readiness probe",
            "Migration {tx_id} aborted during release",
        ],
    }

    WARNING_TEMPLATES = [
        "Retrying request to {hostname} (attempt {attempt})",
        "Slow query detected: {time}ms",
        "Memory usage at {percent}%",
    ]

    INFO_TEMPLATES = [
        "Request processed successfully in {time}ms",
        "User {user_id} logged in from {ip}",
        "Cache hit for key {key}",
        "Configuration reloaded for {component}",
    ]

    TITLES = {
        IncidentCategory.DATABASE: "Database connection failures",
        IncidentCategory.PERFORMANCE: "Elevated response latency",
        IncidentCategory.NETWORK: "Intermittent upstream timeouts",
        IncidentCategory.AUTHENTICATION: "Login failures spiking",
        IncidentCategory.DEPLOYMENT: "Failed rollout of latest release",
    }

    @classmethod
    def _fill_template(cls, template: str) -> str:
        """Fill in template placeholders with realistic values."""
        replacements = {
            "{host}": f"10.0.{random.randint(1, 255)}.{random.randint(1, 255)}",
            "{hostname}": random.choice(["auth.demo.internal", "payments.demo.internal", "db-proxy.demo.internal"]),
            "{port}": str(random.choice([5432, 6432, 3306])),
            "{max}": str(random.randint(50, 200)),
            "{timeout}": str(random.randint(1000, 30000)),
            "{query}": "SELECT id, status FROM orders WHERE ...",
            "{tx_id}": str(uuid.uuid4())[:8],
            "{percent}": str(random.randint(85, 99)),
            "{component}": random.choice(["checkout-worker", "session-cache", "db-pool"]),
            "{version}": f"v1.{random.randint(0, 20)}.{random.randint(0, 9)}",
            "{attempt}": str(random.randint(1, 3)),
            "{time}": str(random.randint(5, 500)),
            "{user_id}": str(random.randint(10000, 99999)),
            "{ip}": f"{random.randint(1, 255)}.{random.randint(1, 255)}.{random.randint(1, 255)}.{random.randint(1, 255)}",
            "{key}": f"session:{random.randint(1, 1000)}",
        }

        result = template
        for placeholder, value in replacements.items():
            result = result.replace(placeholder, value)
        return result

    @classmethod
    def generate_log(cls, level: LogLevel, category: IncidentCategory) -> LogCreateRequest:
        if level == LogLevel.ERROR:
            template = random.choice(cls.ERROR_TEMPLATES[category])
        elif level == LogLevel.WARNING:
            template = random.choice(cls.WARNING_TEMPLATES)
        else:
            template = random.choice(cls.INFO_TEMPLATES)
        return LogCreateRequest(message=cls._fill_template(template), level=level)

    @classmethod
    def generate_logs(
        cls,
        category: IncidentCategory,
        count: int = 20,
        error_rate: float = 0.3
    ) -> List[LogCreateRequest]:
        """Generate log lines for an incident of the given category."""
        logs = []
        for _ in range(count):
            if random.random() < error_rate:
                level = LogLevel.ERROR
            else:
                level = random.choices([LogLevel.INFO, LogLevel.WARNING], weights=[80, 20])[0]
            logs.append(cls.generate_log(level, category))
        return logs

    @classmethod
    def incident_request(
        cls,
        category: Optional[IncidentCategory] = None,
        service_id: Optional[str] = None
    ) -> IncidentCreateRequest:
        category = category or random.choice(list(IncidentCategory))
        return IncidentCreateRequest(
            title=cls.TITLES[category],
            description=f"Demo incident: {cls.TITLES[category].lower()}",
            service_id=service_id,
            severity=random.choice(list(IncidentSeverity)),
            category=category,
        )


async def seed_demo_data(db: AsyncSession, incident_count: int = 3) -> Dict[str, Any]:
    """Register the demo services (once) and open demo incidents with logs."""
    registry = ServiceRegistry(db)
    store = IncidentStore(db)

    existing = {service.name: service for service in (await registry.list_services()).services}
    services = []
    for name, url, category in MockDataGenerator.SERVICES:
        service = existing.get(name)
        if service is None:
            service = await registry.create(ServiceCreateRequest(
                name=name,
                url=url,
                category=category,
                description=f"Demo {category.value} service",
                metadata=ServiceMetadata(environment=Environment.DEVELOPMENT, team="demo"),
            ))
        services.append(service)

    incident_ids = []
    for _ in range(incident_count):
        service = random.choice(services)
        incident = await store.create(
            MockDataGenerator.incident_request(service_id=service.id),
            source=random.choice(list(IncidentSource)),
        )
        await store.add_logs(incident.id, MockDataGenerator.generate_logs(incident.category))
        incident_ids.append(incident.id)

    logger.info("Demo data seeded", {"services": len(services), "incidents": len(incident_ids)})
    return {"services": [s.id for s in services], "incidents": incident_ids}
