"""
Data Models for Incident Desk
Wire models use camelCase aliases; attributes stay snake_case.
"""
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel
from typing import Annotated, Optional, List, Dict, Any, Union, Literal
from datetime import datetime, timezone
from enum import Enum
import uuid


# Bumped whenever IncidentAnalysisResponse changes shape
ANALYSIS_SCHEMA_VERSION = "1"


def utc_now() -> datetime:
    """Current UTC time as a naive datetime (the form SQLite hands back)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return str(uuid.uuid4())


def new_action_id() -> str:
    return f"act_{uuid.uuid4().hex[:12]}"


class APIModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# =============================================================================
# Enums
# =============================================================================

class IncidentStatus(str, Enum):
    OPEN = "open"
    INVESTIGATING = "investigating"
    RESOLVED = "resolved"
    AUTO_RESOLVED = "auto-resolved"


class IncidentSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class IncidentCategory(str, Enum):
    PERFORMANCE = "performance"
    DATABASE = "database"
    AUTHENTICATION = "authentication"
    NETWORK = "network"
    DEPLOYMENT = "deployment"


class IncidentSource(str, Enum):
    SYSTEM = "system"
    ENGINEER = "engineer"


class Actor(str, Enum):
    SYSTEM = "system"
    ENGINEER = "engineer"
    AI = "ai"


class ResolvedBy(str, Enum):
    SYSTEM = "system"
    ENGINEER = "engineer"
    AI_AUTO = "ai-auto"


class LogLevel(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class ServiceCategory(str, Enum):
    API = "api"
    DATABASE = "database"
    CACHE = "cache"
    QUEUE = "queue"
    STORAGE = "storage"
    MONITORING = "monitoring"
    OTHER = "other"


class Environment(str, Enum):
    PRODUCTION = "production"
    STAGING = "staging"
    DEVELOPMENT = "development"


class StatusSuggestion(str, Enum):
    NEEDS_INVESTIGATION = "needs_investigation"
    LIKELY_ROOT_CAUSE_IDENTIFIED = "likely_root_cause_identified"
    READY_FOR_RESOLUTION = "ready_for_resolution"


# =============================================================================
# Services
# =============================================================================

class ServiceMetadata(APIModel):
    environment: Optional[Environment] = None
    owner: Optional[str] = None
    team: Optional[str] = None
    tags: List[str] = Field(default_factory=list)


class Service(APIModel):
    id: str = Field(default_factory=new_id)
    name: str
    url: str
    health_endpoint: str = "/health"
    description: Optional[str] = None
    category: ServiceCategory = ServiceCategory.API
    enabled: bool = True
    metadata: Optional[ServiceMetadata] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class ServiceCreateRequest(APIModel):
    # name/url are checked by the registry so a missing field is a ValidationError
    name: Optional[str] = None
    url: Optional[str] = None
    health_endpoint: Optional[str] = None
    description: Optional[str] = None
    category: Optional[ServiceCategory] = None
    enabled: bool = True
    metadata: Optional[ServiceMetadata] = None


class ServiceUpdateRequest(APIModel):
    name: Optional[str] = None
    url: Optional[str] = None
    health_endpoint: Optional[str] = None
    description: Optional[str] = None
    category: Optional[ServiceCategory] = None
    enabled: Optional[bool] = None
    metadata: Optional[ServiceMetadata] = None


class ServiceListResponse(APIModel):
    count: int
    services: List[Service]


class HealthProbeResult(APIModel):
    healthy: bool
    service: str
    service_id: Optional[str] = None
    url: str
    response_time: Optional[float] = None  # milliseconds, None when nothing answered
    status_code: Optional[int] = None
    error: Optional[str] = None
    checked_at: datetime = Field(default_factory=utc_now)


# =============================================================================
# Timeline
# =============================================================================

class StatusChangeDetails(APIModel):
    kind: Literal["status_change"] = "status_change"
    from_status: IncidentStatus
    to_status: IncidentStatus
    notes: Optional[str] = None
    changed_by: Optional[str] = None


class ApprovalDetails(APIModel):
    kind: Literal["approval"] = "approval"
    action_id: str
    action: str
    description: str = ""
    confidence: float = 0.0
    approved_by: Optional[str] = None


class HealthCheckDetails(APIModel):
    kind: Literal["health_check"] = "health_check"
    healthy: bool
    status_code: Optional[int] = None
    response_time: Optional[float] = None
    error: Optional[str] = None
    health_data: Optional[str] = None


class CreatedDetails(APIModel):
    kind: Literal["created"] = "created"
    source: IncidentSource
    severity: IncidentSeverity
    category: IncidentCategory


class FreeformDetails(APIModel):
    """Deprecated: untyped details kept for records written by older clients."""

    kind: Literal["freeform"] = "freeform"
    data: Dict[str, Any] = Field(default_factory=dict)


TimelineDetails = Annotated[
    Union[StatusChangeDetails, ApprovalDetails, HealthCheckDetails, CreatedDetails, FreeformDetails],
    Field(discriminator="kind"),
]


class TimelineEvent(APIModel):
    timestamp: datetime = Field(default_factory=utc_now)
    event: str
    status: IncidentStatus
    actor: Actor
    details: TimelineDetails = Field(default_factory=FreeformDetails)

    @field_validator("details", mode="before")
    @classmethod
    def _wrap_untagged(cls, value: Any) -> Any:
        if isinstance(value, dict) and "kind" not in value:
            return {"kind": "freeform", "data": value}
        return value


# =============================================================================
# Logs
# =============================================================================

class Log(APIModel):
    id: str = Field(default_factory=new_id)
    incident_id: str
    message: str
    level: LogLevel = LogLevel.INFO
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class LogCreateRequest(APIModel):
    message: str = Field(min_length=1)
    level: LogLevel = LogLevel.INFO


class LogBatchRequest(APIModel):
    logs: List[LogCreateRequest] = Field(min_length=1)


# =============================================================================
# AI Analysis
# =============================================================================

class SuggestedAction(APIModel):
    id: str = Field(default_factory=new_action_id)
    action: str
    description: str = ""
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    requires_approval: bool = True
    approved: bool = False
    approved_at: Optional[datetime] = None
    approved_by: Optional[str] = None


class TrendAnalysis(APIModel):
    is_degrading: bool
    degradation_rate: float


class AIAnalysis(APIModel):
    root_cause: str = ""
    root_cause_probability: float = Field(default=0.0, ge=0.0, le=1.0)
    related_incident_ids: List[str] = Field(default_factory=list)
    suggested_actions: List[SuggestedAction] = Field(default_factory=list)
    trend_analysis: Optional[TrendAnalysis] = None
    ai_severity: Optional[IncidentSeverity] = None
    ai_category: Optional[IncidentCategory] = None
    status_suggestion: Optional[StatusSuggestion] = None
    provider: str = "rule-based"
    generated_at: datetime = Field(default_factory=utc_now)
    schema_version: str = ANALYSIS_SCHEMA_VERSION


class IncidentRef(APIModel):
    id: str
    title: str
    status: IncidentStatus
    severity: IncidentSeverity
    category: IncidentCategory


class IncidentAnalysisResponse(APIModel):
    schema_version: str = ANALYSIS_SCHEMA_VERSION
    incident: IncidentRef
    ai_analysis: AIAnalysis
    explanation: str
    logs_analyzed: int
    error_count: int
    warning_count: int


# =============================================================================
# Incidents
# =============================================================================

class IncidentMetadata(APIModel):
    first_detected_at: datetime = Field(default_factory=utc_now)
    last_updated_at: datetime = Field(default_factory=utc_now)
    log_count: int = 0
    error_count: int = 0


class Incident(APIModel):
    id: str = Field(default_factory=new_id)
    title: str
    description: str = ""
    service_id: Optional[str] = None
    service_name: Optional[str] = None
    severity: IncidentSeverity = IncidentSeverity.MEDIUM
    category: IncidentCategory = IncidentCategory.PERFORMANCE
    source: IncidentSource = IncidentSource.ENGINEER
    status: IncidentStatus = IncidentStatus.OPEN
    ai_analysis: Optional[AIAnalysis] = None
    timeline: List[TimelineEvent] = Field(default_factory=list)
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[ResolvedBy] = None
    resolution_time: Optional[int] = None  # milliseconds
    metadata: IncidentMetadata = Field(default_factory=IncidentMetadata)
    version: int = 1
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class IncidentSummary(APIModel):
    total_logs: int
    error_logs: int
    warning_logs: int
    duration: int  # milliseconds


class IncidentDetail(Incident):
    logs: List[Log] = Field(default_factory=list)
    summary: IncidentSummary


class IncidentListResponse(APIModel):
    count: int
    incidents: List[Incident]


class IncidentCreateRequest(APIModel):
    title: str = Field(min_length=1)
    description: str = ""
    service_id: Optional[str] = None
    severity: IncidentSeverity = IncidentSeverity.MEDIUM
    category: IncidentCategory = IncidentCategory.PERFORMANCE


class StatusUpdateRequest(APIModel):
    status: IncidentStatus
    notes: Optional[str] = None
    expected_version: Optional[int] = None


class ApproveActionRequest(APIModel):
    action_id: Optional[str] = None
    action_index: Optional[int] = None
    expected_version: Optional[int] = None


class ApproveActionResponse(APIModel):
    message: str
    action: SuggestedAction
    incident: Incident


class DisplayItem(APIModel):
    key: str
    value: str


class HistoryEntry(TimelineEvent):
    display: List[DisplayItem] = Field(default_factory=list)


class HistoryResponse(APIModel):
    incident_id: str
    status: IncidentStatus
    count: int
    events: List[HistoryEntry]


# =============================================================================
# System
# =============================================================================

class StatsSummary(APIModel):
    total_incidents: int = 0
    open_incidents: int = 0
    investigating_incidents: int = 0
    resolved_incidents: int = 0
    total_logs: int = 0
    total_services: int = 0
    enabled_services: int = 0


class SystemStats(APIModel):
    summary: StatsSummary
    by_category: Dict[str, int] = Field(default_factory=dict)
    by_severity: Dict[str, int] = Field(default_factory=dict)
    by_status: Dict[str, int] = Field(default_factory=dict)


class HealthCheckRunResult(APIModel):
    checked: int
    results: List[HealthProbeResult]
    incidents_opened: List[str] = Field(default_factory=list)
    incidents_auto_resolved: List[str] = Field(default_factory=list)


class HealthResponse(BaseModel):
    status: str
    timestamp: str


# =============================================================================
# User Authentication
# =============================================================================

class UserRegisterRequest(BaseModel):
    email: str
    password: str = Field(min_length=6)


class UserLoginRequest(BaseModel):
    email: str
    password: str


class UserResponse(BaseModel):
    id: str
    email: str
    created_at: datetime
    is_active: bool


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserResponse
