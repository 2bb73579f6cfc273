"""
Service Registry
CRUD for monitored targets.
"""
from typing import Optional
from urllib.parse import urlparse

from sqlalchemy import select, desc
from sqlalchemy.ext.asyncio import AsyncSession

from core import (
    Environment, NotFoundError, Service, ServiceCategory, ServiceCreateRequest,
    ServiceDB, ServiceListResponse, ServiceMetadata, ServiceUpdateRequest,
    ValidationError, config, get_service_by_id, logger, utc_now
)


def validate_url(url: Optional[str]) -> str:
    """Return a normalised absolute http(s) URL or raise ValidationError."""
    if not url or not url.strip():
        raise ValidationError("Service URL is required")
    url = url.strip()
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValidationError(f"Service URL must be an absolute http(s) URL, got '{url}'")
    return url.rstrip("/")


def normalize_health_endpoint(endpoint: Optional[str]) -> str:
    endpoint = (endpoint or "").strip() or config.DEFAULT_HEALTH_ENDPOINT
    if not endpoint.startswith("/"):
        endpoint = f"/{endpoint}"
    return endpoint


def health_url(service: Service) -> str:
    return f"{service.url}{service.health_endpoint}"


class ServiceRegistry:
    """Service operations bound to one database session."""

    def __init__(self, db: AsyncSession):
        self.db = db

    @staticmethod
    def db_to_service(row: ServiceDB) -> Service:
        metadata = None
        if row.metadata_json:
            try:
                metadata = ServiceMetadata.model_validate_json(row.metadata_json)
            except ValueError as e:
                logger.warning(f"Unreadable metadata on service {row.id}: {e}")

        return Service(
            id=row.id,
            name=row.name,
            url=row.url,
            health_endpoint=row.health_endpoint or config.DEFAULT_HEALTH_ENDPOINT,
            description=row.description,
            category=ServiceCategory(row.category),
            enabled=bool(row.enabled),
            metadata=metadata,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    @staticmethod
    def _write_metadata(row: ServiceDB, metadata: Optional[ServiceMetadata]) -> None:
        row.metadata_json = metadata.model_dump_json(by_alias=True) if metadata else None
        row.environment = metadata.environment.value if metadata and metadata.environment else None

    async def _load(self, service_id: str) -> ServiceDB:
        row = await get_service_by_id(self.db, service_id)
        if not row:
            raise NotFoundError("Service", service_id)
        return row

    async def list_services(
        self,
        enabled: Optional[bool] = None,
        category: Optional[ServiceCategory] = None,
        environment: Optional[Environment] = None
    ) -> ServiceListResponse:
        query = select(ServiceDB).order_by(desc(ServiceDB.created_at))
        if enabled is not None:
            query = query.where(ServiceDB.enabled == enabled)
        if category:
            query = query.where(ServiceDB.category == category.value)
        if environment:
            query = query.where(ServiceDB.environment == environment.value)

        result = await self.db.execute(query)
        services = [self.db_to_service(row) for row in result.scalars().all()]
        return ServiceListResponse(count=len(services), services=services)

    async def get(self, service_id: str) -> Service:
        return self.db_to_service(await self._load(service_id))

    async def create(self, request: ServiceCreateRequest) -> Service:
        """Register a service. Name and a well-formed URL are required."""
        name = (request.name or "").strip()
        if not name:
            raise ValidationError("Service name is required")
        url = validate_url(request.url)

        now = utc_now()
        row = ServiceDB(
            name=name,
            url=url,
            health_endpoint=normalize_health_endpoint(request.health_endpoint),
            description=request.description,
            category=(request.category or ServiceCategory.API).value,
            enabled=request.enabled,
            created_at=now,
            updated_at=now,
        )
        self._write_metadata(row, request.metadata)
        self.db.add(row)
        await self.db.commit()

        logger.info(f"Service registered: {row.name}", {"service_id": row.id, "url": row.url})
        return self.db_to_service(row)

    async def update(self, service_id: str, request: ServiceUpdateRequest) -> Service:
        """Apply a partial update; only fields present in the request change."""
        row = await self._load(service_id)
        changes = request.model_dump(exclude_unset=True)

        if "name" in changes:
            name = (request.name or "").strip()
            if not name:
                raise ValidationError("Service name cannot be empty")
            row.name = name
        if "url" in changes:
            row.url = validate_url(request.url)
        if "health_endpoint" in changes:
            row.health_endpoint = normalize_health_endpoint(request.health_endpoint)
        if "description" in changes:
            row.description = request.description
        if "category" in changes:
            row.category = (request.category or ServiceCategory.API).value
        if "enabled" in changes and request.enabled is not None:
            row.enabled = request.enabled
        if "metadata" in changes:
            self._write_metadata(row, request.metadata)

        row.updated_at = utc_now()
        await self.db.commit()

        logger.info(f"Service updated: {row.name}", {"service_id": row.id, "fields": sorted(changes)})
        return self.db_to_service(row)

    async def delete(self, service_id: str) -> Service:
        """Delete a service. Incidents that reference it are left untouched."""
        row = await self._load(service_id)
        service = self.db_to_service(row)
        await self.db.delete(row)
        await self.db.commit()

        logger.info(f"Service deleted: {service.name}", {"service_id": service.id})
        return service
