"""
Incident Store
Incident lifecycle and persistence: listing, detail views, status updates,
logs, analysis snapshots and action approvals.
"""
import json
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

from sqlalchemy import select, desc, func, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from core import (
    Actor, AIAnalysis, ConflictError, HealthProbeResult, HistoryEntry, HistoryResponse, Incident,
    IncidentCategory, IncidentCreateRequest, IncidentDB, IncidentDetail,
    IncidentListResponse, IncidentLogDB, IncidentMetadata, IncidentSeverity,
    IncidentSource, IncidentStatus, IncidentSummary, InvalidReferenceError, Log,
    LogCreateRequest, LogLevel, NotFoundError, ResolvedBy, ServiceDB,
    StatsSummary, SuggestedAction, SystemStats, TimelineEvent, ValidationError,
    config, get_incident_by_id, get_incident_logs, get_service_by_id, logger, new_id, utc_now
)
from .lifecycle import ACTIVE_STATUSES, is_terminal, validate_transition
from . import timeline


def elapsed_ms(start: datetime, end: datetime) -> int:
    return int((end - start).total_seconds() * 1000)


class IncidentStore:
    """Incident operations bound to one database session."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # =========================================================================
    # Row <-> model conversion
    # =========================================================================

    @staticmethod
    def db_to_incident(row: IncidentDB) -> Incident:
        """Convert database record to Incident model."""
        events: List[TimelineEvent] = []
        if row.timeline_json:
            try:
                events = [TimelineEvent.model_validate(e) for e in json.loads(row.timeline_json)]
            except ValueError as e:
                logger.warning(f"Unreadable timeline on incident {row.id}: {e}")

        analysis = None
        if row.ai_analysis_json:
            try:
                analysis = AIAnalysis.model_validate_json(row.ai_analysis_json)
            except ValueError as e:
                logger.warning(f"Unreadable analysis snapshot on incident {row.id}: {e}")

        return Incident(
            id=row.id,
            title=row.title,
            description=row.description or "",
            service_id=row.service_id,
            service_name=row.service_name,
            severity=IncidentSeverity(row.severity),
            category=IncidentCategory(row.category),
            source=IncidentSource(row.source),
            status=IncidentStatus(row.status),
            ai_analysis=analysis,
            timeline=events,
            resolved_at=row.resolved_at,
            resolved_by=ResolvedBy(row.resolved_by) if row.resolved_by else None,
            resolution_time=row.resolution_time_ms,
            metadata=IncidentMetadata(
                first_detected_at=row.first_detected_at,
                last_updated_at=row.last_updated_at,
                log_count=row.log_count or 0,
                error_count=row.error_count or 0,
            ),
            version=row.version,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    @staticmethod
    def incident_to_db(incident: Incident) -> dict:
        """Convert Incident model to database-ready dict (version is managed by the ORM)."""
        return {
            "id": incident.id,
            "title": incident.title,
            "description": incident.description,
            "service_id": incident.service_id,
            "service_name": incident.service_name,
            "severity": incident.severity.value,
            "category": incident.category.value,
            "source": incident.source.value,
            "status": incident.status.value,
            "resolved_at": incident.resolved_at,
            "resolved_by": incident.resolved_by.value if incident.resolved_by else None,
            "resolution_time_ms": incident.resolution_time,
            "first_detected_at": incident.metadata.first_detected_at,
            "last_updated_at": incident.metadata.last_updated_at,
            "log_count": incident.metadata.log_count,
            "error_count": incident.metadata.error_count,
            "timeline_json": json.dumps(
                [e.model_dump(mode="json", by_alias=True) for e in incident.timeline]
            ),
            "ai_analysis_json": (
                incident.ai_analysis.model_dump_json(by_alias=True) if incident.ai_analysis else None
            ),
            "created_at": incident.created_at,
            "updated_at": incident.updated_at,
        }

    async def _load(self, incident_id: str) -> Tuple[IncidentDB, Incident]:
        row = await get_incident_by_id(self.db, incident_id)
        if not row:
            raise NotFoundError("Incident", incident_id)
        return row, self.db_to_incident(row)

    @staticmethod
    def _check_version(row: IncidentDB, expected_version: Optional[int]) -> None:
        if expected_version is not None and expected_version != row.version:
            raise ConflictError(
                "Incident was modified by someone else; reload and retry",
                {"expectedVersion": expected_version, "currentVersion": row.version}
            )

    async def _save(self, row: IncidentDB, incident: Incident, touch: bool = True) -> Incident:
        """Write the model back onto its row and commit."""
        if touch:
            now = utc_now()
            incident.updated_at = now
            incident.metadata.last_updated_at = now

        for key, value in self.incident_to_db(incident).items():
            if key != "id":
                setattr(row, key, value)

        try:
            await self.db.commit()
        except StaleDataError:
            await self.db.rollback()
            raise ConflictError("Incident was modified concurrently; reload and retry")

        incident.version = row.version
        return incident

    # =========================================================================
    # Creation and reads
    # =========================================================================

    async def create(
        self,
        request: IncidentCreateRequest,
        source: IncidentSource = IncidentSource.ENGINEER,
        detected_at: Optional[datetime] = None,
        health_check: Optional[HealthProbeResult] = None,
        health_data: Optional[str] = None,
        logs: Optional[List[LogCreateRequest]] = None
    ) -> Incident:
        """
        Create an incident. Engineers report them; the system detects them.

        A detected incident carries its failing health check and first log
        lines, written in the same commit as the incident itself.
        """
        service_name = None
        if request.service_id:
            service = await get_service_by_id(self.db, request.service_id)
            if not service:
                raise NotFoundError("Service", request.service_id)
            service_name = service.name

        now = detected_at or utc_now()
        incident = Incident(
            title=request.title,
            description=request.description,
            service_id=request.service_id,
            service_name=service_name,
            severity=request.severity,
            category=request.category,
            source=source,
            status=IncidentStatus.OPEN,
            metadata=IncidentMetadata(first_detected_at=now, last_updated_at=now),
            created_at=now,
            updated_at=now,
        )
        actor = Actor.SYSTEM if source == IncidentSource.SYSTEM else Actor.ENGINEER
        timeline.record_created(incident, actor)
        if health_check is not None:
            timeline.record_health_check(incident, health_check, health_data=health_data)

        staged = self._stage_logs(incident, logs) if logs else []

        row = IncidentDB(**self.incident_to_db(incident))
        self.db.add(row)
        self.db.add_all(staged)
        await self.db.commit()
        incident.version = row.version

        logger.info(f"Incident created: {incident.id}", {
            "title": incident.title,
            "severity": incident.severity.value,
            "source": source.value,
            "service_id": incident.service_id
        })
        return incident

    async def get(self, incident_id: str) -> Incident:
        _, incident = await self._load(incident_id)
        return incident

    async def list_incidents(
        self,
        status: Optional[IncidentStatus] = None,
        severity: Optional[IncidentSeverity] = None,
        category: Optional[IncidentCategory] = None,
        service_id: Optional[str] = None,
        limit: Optional[int] = None
    ) -> IncidentListResponse:
        """List incidents, most recent first. Filters intersect; absent filters match everything."""
        if limit is None:
            limit = config.LIMITS.default_list_limit
        if limit < 1:
            raise ValidationError("limit must be a positive integer")
        limit = min(limit, config.LIMITS.max_list_limit)

        query = select(IncidentDB).order_by(desc(IncidentDB.created_at)).limit(limit)
        if status:
            query = query.where(IncidentDB.status == status.value)
        if severity:
            query = query.where(IncidentDB.severity == severity.value)
        if category:
            query = query.where(IncidentDB.category == category.value)
        if service_id:
            query = query.where(IncidentDB.service_id == service_id)

        result = await self.db.execute(query)
        incidents = [self.db_to_incident(row) for row in result.scalars().all()]
        return IncidentListResponse(count=len(incidents), incidents=incidents)

    @staticmethod
    def compute_summary(incident: Incident, logs: List[Log], now: Optional[datetime] = None) -> IncidentSummary:
        end = incident.resolved_at or now or utc_now()
        return IncidentSummary(
            total_logs=len(logs),
            error_logs=sum(1 for log in logs if log.level == LogLevel.ERROR),
            warning_logs=sum(1 for log in logs if log.level == LogLevel.WARNING),
            duration=max(0, elapsed_ms(incident.metadata.first_detected_at, end)),
        )

    async def get_detail(self, incident_id: str) -> IncidentDetail:
        """Incident plus its logs and a computed summary."""
        _, incident = await self._load(incident_id)
        logs = await self.list_logs(incident_id)
        return IncidentDetail(
            **incident.model_dump(),
            logs=logs,
            summary=self.compute_summary(incident, logs),
        )

    async def history(self, incident_id: str) -> HistoryResponse:
        """Timeline newest first, with details flattened for display."""
        _, incident = await self._load(incident_id)
        events = [
            HistoryEntry(**event.model_dump(), display=timeline.event_display(event))
            for event in timeline.reverse_chronological(incident.timeline)
        ]
        return HistoryResponse(
            incident_id=incident.id,
            status=incident.status,
            count=len(events),
            events=events,
        )

    # =========================================================================
    # Status updates
    # =========================================================================

    async def update_status(
        self,
        incident_id: str,
        status: IncidentStatus,
        notes: Optional[str] = None,
        actor: Actor = Actor.ENGINEER,
        actor_name: Optional[str] = None,
        expected_version: Optional[int] = None
    ) -> Incident:
        """
        Change an incident's status and append exactly one timeline event.

        Entering resolved/auto-resolved stamps resolvedAt, resolvedBy and
        resolutionTime; leaving a terminal state (only possible with
        enforcement disabled) clears them again.
        """
        row, incident = await self._load(incident_id)
        self._check_version(row, expected_version)
        validate_transition(incident.status, status, actor)

        previous = incident.status
        incident.status = status

        if is_terminal(status):
            resolved_at = timeline.next_timestamp(incident.timeline)
            incident.resolved_at = resolved_at
            incident.resolved_by = ResolvedBy.SYSTEM if actor == Actor.SYSTEM else ResolvedBy.ENGINEER
            incident.resolution_time = elapsed_ms(incident.metadata.first_detected_at, resolved_at)
        elif incident.resolved_at is not None:
            incident.resolved_at = None
            incident.resolved_by = None
            incident.resolution_time = None

        timeline.record_status_change(incident, previous, actor, notes=notes, changed_by=actor_name)
        await self._save(row, incident)

        logger.log_status_change(incident.id, previous.value, status.value, actor.value)
        return incident

    # =========================================================================
    # Logs
    # =========================================================================

    @staticmethod
    def _stage_logs(incident: Incident, entries: List[LogCreateRequest]) -> List[IncidentLogDB]:
        """Build log rows for entries and bump the incident's counters; nothing is committed."""
        base = utc_now()
        rows = []
        for offset, entry in enumerate(entries):
            # Strictly increasing timestamps keep batch order on read
            stamp = base + timedelta(microseconds=offset)
            rows.append(IncidentLogDB(
                id=new_id(),
                incident_id=incident.id,
                message=entry.message,
                level=entry.level.value,
                created_at=stamp,
                updated_at=stamp,
            ))

        incident.metadata.log_count += len(rows)
        incident.metadata.error_count += sum(1 for entry in entries if entry.level == LogLevel.ERROR)
        return rows

    async def add_logs(self, incident_id: str, entries: List[LogCreateRequest]) -> List[Log]:
        """Append log lines and refresh the incident's log counters."""
        row, incident = await self._load(incident_id)

        staged = self._stage_logs(incident, entries)
        self.db.add_all(staged)
        await self._save(row, incident)

        logs = [
            Log(id=r.id, incident_id=incident_id, message=r.message, level=LogLevel(r.level),
                created_at=r.created_at, updated_at=r.updated_at)
            for r in staged
        ]
        logger.debug(f"Added {len(logs)} logs to incident {incident_id}")
        return logs

    async def list_logs(self, incident_id: str) -> List[Log]:
        if not await get_incident_by_id(self.db, incident_id):
            raise NotFoundError("Incident", incident_id)
        rows = await get_incident_logs(self.db, incident_id)
        return [
            Log(
                id=r.id,
                incident_id=r.incident_id,
                message=r.message,
                level=LogLevel(r.level),
                created_at=r.created_at,
                updated_at=r.updated_at,
            )
            for r in rows
        ]

    # =========================================================================
    # AI analysis and approvals
    # =========================================================================

    async def attach_analysis(self, incident_id: str, analysis: AIAnalysis) -> Incident:
        """Replace the incident's analysis snapshot. Nothing else on the incident changes."""
        row, incident = await self._load(incident_id)
        incident.ai_analysis = analysis
        return await self._save(row, incident, touch=False)

    async def related_incident_ids(self, incident: Incident, limit: Optional[int] = None) -> List[str]:
        """Other incidents on the same service or in the same category, newest first."""
        limit = limit or config.LIMITS.related_incident_limit
        conditions = [IncidentDB.category == incident.category.value]
        if incident.service_id:
            conditions.append(IncidentDB.service_id == incident.service_id)

        result = await self.db.execute(
            select(IncidentDB.id)
            .where(IncidentDB.id != incident.id, or_(*conditions))
            .order_by(desc(IncidentDB.created_at))
            .limit(limit)
        )
        return list(result.scalars().all())

    @staticmethod
    def _resolve_action(
        incident: Incident,
        action_id: Optional[str],
        action_index: Optional[int]
    ) -> SuggestedAction:
        if action_id is None and action_index is None:
            raise ValidationError("Either actionId or actionIndex is required")

        actions = incident.ai_analysis.suggested_actions if incident.ai_analysis else []
        if not actions:
            raise InvalidReferenceError("Incident has no suggested actions; run an analysis first")

        if action_id is not None:
            for action in actions:
                if action.id == action_id:
                    return action
            raise InvalidReferenceError(
                f"Suggested action '{action_id}' is not part of the current analysis",
                {"actionId": action_id}
            )

        if action_index < 0 or action_index >= len(actions):
            raise InvalidReferenceError(
                f"actionIndex {action_index} is out of range",
                {"actionIndex": action_index, "available": len(actions)}
            )
        return actions[action_index]

    async def approve_action(
        self,
        incident_id: str,
        action_id: Optional[str] = None,
        action_index: Optional[int] = None,
        approver: Optional[str] = None,
        expected_version: Optional[int] = None
    ) -> Tuple[Incident, SuggestedAction]:
        """
        Mark a suggested action as approved and record the approval on the
        timeline. The action itself is never executed here.
        """
        row, incident = await self._load(incident_id)
        self._check_version(row, expected_version)
        action = self._resolve_action(incident, action_id, action_index)

        if not action.requires_approval:
            raise ValidationError(
                f"Action '{action.action}' is informational and cannot be approved",
                {"actionId": action.id}
            )
        if action.approved:
            raise ConflictError(
                f"Action '{action.action}' was already approved",
                {"actionId": action.id, "approvedBy": action.approved_by}
            )

        event = timeline.record_approval(incident, action, approver)
        action.approved = True
        action.approved_at = event.timestamp
        action.approved_by = approver
        await self._save(row, incident)

        logger.log_action_approved(incident.id, action.id, action.action, approver or "unknown")
        return incident, action

    # =========================================================================
    # Detection support and stats
    # =========================================================================

    async def active_system_incidents(self, service_id: str) -> List[Incident]:
        """Open/investigating incidents the system raised for a service."""
        result = await self.db.execute(
            select(IncidentDB).where(
                IncidentDB.service_id == service_id,
                IncidentDB.source == IncidentSource.SYSTEM.value,
                IncidentDB.status.in_([s.value for s in ACTIVE_STATUSES]),
            ).order_by(desc(IncidentDB.created_at))
        )
        return [self.db_to_incident(row) for row in result.scalars().all()]

    async def _count_by(self, column) -> Dict[str, int]:
        result = await self.db.execute(select(column, func.count()).group_by(column))
        return {key: count for key, count in result.all() if key is not None}

    async def stats(self) -> SystemStats:
        """Aggregate counts for the dashboard."""
        by_status = await self._count_by(IncidentDB.status)
        by_category = await self._count_by(IncidentDB.category)
        by_severity = await self._count_by(IncidentDB.severity)

        total_logs = (await self.db.execute(select(func.count(IncidentLogDB.id)))).scalar_one()
        total_services = (await self.db.execute(select(func.count(ServiceDB.id)))).scalar_one()
        enabled_services = (await self.db.execute(
            select(func.count(ServiceDB.id)).where(ServiceDB.enabled.is_(True))
        )).scalar_one()

        summary = StatsSummary(
            total_incidents=sum(by_status.values()),
            open_incidents=by_status.get(IncidentStatus.OPEN.value, 0),
            investigating_incidents=by_status.get(IncidentStatus.INVESTIGATING.value, 0),
            resolved_incidents=(
                by_status.get(IncidentStatus.RESOLVED.value, 0)
                + by_status.get(IncidentStatus.AUTO_RESOLVED.value, 0)
            ),
            total_logs=total_logs,
            total_services=total_services,
            enabled_services=enabled_services,
        )
        return SystemStats(
            summary=summary,
            by_category=by_category,
            by_severity=by_severity,
            by_status=by_status,
        )
