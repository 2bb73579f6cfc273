"""
API Gateway / Main Application
FastAPI backend for incident tracking, service health and AI-assisted triage.
"""
import time
from typing import List, Optional
from contextlib import asynccontextmanager

from fastapi import FastAPI, Depends, Header, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession


# API Version
API_VERSION = "v1"
APP_VERSION = "1.0.0"

from core import (
    Actor, ApproveActionRequest, ApproveActionResponse, Environment, HealthCheckRunResult,
    HealthProbeResult, HealthResponse, HistoryResponse, Incident, IncidentAnalysisResponse,
    IncidentCategory, IncidentCreateRequest, IncidentDeskError, IncidentDetail,
    IncidentListResponse, IncidentSeverity, IncidentStatus, Log, LogBatchRequest,
    Service, ServiceCategory, ServiceCreateRequest, ServiceListResponse,
    ServiceUpdateRequest, StatusUpdateRequest, SystemStats, TokenResponse,
    UserDB, UserLoginRequest, UserRegisterRequest, UserResponse, SessionTokenDB,
    UnauthorizedError, ValidationError, config, logger,
    get_db, get_user_by_email, hash_password, init_db, async_session,
    issue_session, seed_demo_user, verify_password, get_current_user, verify_auth, utc_now
)
from engines import IncidentStore, ServiceRegistry, HealthProber, run_health_checks
from integrations import AnalysisService, McpHandler, get_analysis_service
from utils.mock_data import seed_demo_data


# Rate limiter
limiter = Limiter(key_func=get_remote_address, enabled=config.RATE_LIMIT_ENABLED)

health_prober = HealthProber()


def get_health_prober() -> HealthProber:
    return health_prober


def parse_if_match(if_match: Optional[str]) -> Optional[int]:
    """If-Match: "3" (or W/"3") -> 3"""
    if not if_match:
        return None
    value = if_match.strip()
    if value.startswith("W/"):
        value = value[2:]
    try:
        return int(value.strip('"'))
    except ValueError:
        raise ValidationError(f"If-Match must carry an incident version, got '{if_match}'")


def principal_name(auth: dict) -> str:
    return auth.get("name") or auth.get("type", "unknown")


def user_response(user: UserDB) -> UserResponse:
    return UserResponse(
        id=user.id,
        email=user.email,
        created_at=user.created_at,
        is_active=user.is_active
    )


# Lifespan context manager
@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting {config.APP_NAME}")
    logger.info("Initializing database...")
    await init_db()
    async with async_session() as db:
        await seed_demo_user(db)
    logger.info("Database initialized")

    yield

    logger.info(f"Shutting down {config.APP_NAME}")


# Create FastAPI app
app = FastAPI(
    title=config.APP_NAME,
    description="Incident tracking, service health checks and AI-assisted triage",
    version=f"{APP_VERSION}-{API_VERSION}",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc"
)

# Add rate limit error handler
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=[config.FRONTEND_URL] if config.FRONTEND_URL else ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================================
# Error Handling
# ============================================================================

@app.exception_handler(IncidentDeskError)
async def incident_desk_error_handler(request: Request, exc: IncidentDeskError):
    logger.warning(f"{exc.error_name}: {exc.message}", {
        "path": request.url.path,
        "status": exc.status_code
    })
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "Invalid request")
    return JSONResponse(status_code=400, content={
        "error": "ValidationError",
        "detail": f"{location}: {message}" if location else message,
        "details": {"errors": jsonable_encoder(errors)}
    })


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}", {"error": str(exc)})
    return JSONResponse(status_code=500, content={"error": "InternalError", "detail": "Internal server error"})


# Request logging middleware
@app.middleware("http")
async def log_requests(request: Request, call_next):
    start_time = time.time()
    response = await call_next(request)
    duration = (time.time() - start_time) * 1000

    logger.log_api_call(
        endpoint=str(request.url.path),
        method=request.method,
        status=response.status_code,
        duration_ms=duration
    )

    return response


# ============================================================================
# Health & Version Endpoints
# ============================================================================

@app.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Basic health check endpoint."""
    return HealthResponse(status="healthy", timestamp=utc_now().isoformat())


@app.get("/version")
async def get_version():
    """Get API version information."""
    return {
        "version": APP_VERSION,
        "api_version": API_VERSION,
        "name": config.APP_NAME
    }


# ============================================================================
# Incident Endpoints
# ============================================================================

@app.get("/api/incidents", response_model=IncidentListResponse)
async def list_incidents(
    status: Optional[IncidentStatus] = None,
    severity: Optional[IncidentSeverity] = None,
    category: Optional[IncidentCategory] = None,
    service_id: Optional[str] = Query(None, alias="serviceId"),
    limit: Optional[int] = None,
    db: AsyncSession = Depends(get_db)
):
    """List incidents, most recent first. Filters combine with AND."""
    return await IncidentStore(db).list_incidents(
        status=status, severity=severity, category=category, service_id=service_id, limit=limit
    )


@app.post("/api/incidents", response_model=Incident, status_code=201)
async def create_incident(
    body: IncidentCreateRequest,
    auth: dict = Depends(verify_auth),
    db: AsyncSession = Depends(get_db)
):
    """Report an incident by hand."""
    return await IncidentStore(db).create(body)


@app.get("/api/incidents/{incident_id}", response_model=IncidentDetail)
async def get_incident(incident_id: str, db: AsyncSession = Depends(get_db)):
    """Get an incident with its logs and summary."""
    return await IncidentStore(db).get_detail(incident_id)


@app.patch("/api/incidents/{incident_id}/status", response_model=Incident)
async def update_incident_status(
    incident_id: str,
    body: StatusUpdateRequest,
    if_match: Optional[str] = Header(None, alias="If-Match"),
    auth: dict = Depends(verify_auth),
    db: AsyncSession = Depends(get_db)
):
    """Change an incident's status; appends one timeline event."""
    expected = body.expected_version if body.expected_version is not None else parse_if_match(if_match)
    return await IncidentStore(db).update_status(
        incident_id,
        body.status,
        notes=body.notes,
        actor=Actor.ENGINEER,
        actor_name=principal_name(auth),
        expected_version=expected
    )


@app.post("/api/incidents/{incident_id}/approve-action", response_model=ApproveActionResponse)
async def approve_action(
    incident_id: str,
    body: ApproveActionRequest,
    if_match: Optional[str] = Header(None, alias="If-Match"),
    auth: dict = Depends(verify_auth),
    db: AsyncSession = Depends(get_db)
):
    """Approve a suggested action. Approval is recorded; nothing is executed."""
    expected = body.expected_version if body.expected_version is not None else parse_if_match(if_match)
    incident, action = await IncidentStore(db).approve_action(
        incident_id,
        action_id=body.action_id,
        action_index=body.action_index,
        approver=principal_name(auth),
        expected_version=expected
    )
    return ApproveActionResponse(
        message=f"Action '{action.action}' approved",
        action=action,
        incident=incident
    )


@app.get("/api/incidents/{incident_id}/history", response_model=HistoryResponse)
async def get_incident_history(incident_id: str, db: AsyncSession = Depends(get_db)):
    """Timeline, newest first, with display-ready details."""
    return await IncidentStore(db).history(incident_id)


@app.post("/api/incidents/{incident_id}/logs", response_model=List[Log], status_code=201)
async def add_incident_logs(
    incident_id: str,
    body: LogBatchRequest,
    auth: dict = Depends(verify_auth),
    db: AsyncSession = Depends(get_db)
):
    """Attach log lines to an incident."""
    return await IncidentStore(db).add_logs(incident_id, body.logs)


@app.get("/api/logs/{incident_id}", response_model=List[Log])
async def get_incident_logs(incident_id: str, db: AsyncSession = Depends(get_db)):
    """Logs for an incident, oldest first."""
    return await IncidentStore(db).list_logs(incident_id)


# ============================================================================
# Service Registry Endpoints
# ============================================================================

@app.get("/api/services", response_model=ServiceListResponse)
async def list_services(
    enabled: Optional[bool] = None,
    category: Optional[ServiceCategory] = None,
    environment: Optional[Environment] = None,
    db: AsyncSession = Depends(get_db)
):
    """List registered services."""
    return await ServiceRegistry(db).list_services(enabled=enabled, category=category, environment=environment)


@app.get("/api/services/{service_id}", response_model=Service)
async def get_service(service_id: str, db: AsyncSession = Depends(get_db)):
    return await ServiceRegistry(db).get(service_id)


@app.post("/api/services", response_model=Service, status_code=201)
async def create_service(
    body: ServiceCreateRequest,
    auth: dict = Depends(verify_auth),
    db: AsyncSession = Depends(get_db)
):
    """Register a service for health checks."""
    return await ServiceRegistry(db).create(body)


@app.patch("/api/services/{service_id}", response_model=Service)
async def update_service(
    service_id: str,
    body: ServiceUpdateRequest,
    auth: dict = Depends(verify_auth),
    db: AsyncSession = Depends(get_db)
):
    return await ServiceRegistry(db).update(service_id, body)


@app.delete("/api/services/{service_id}")
async def delete_service(
    service_id: str,
    auth: dict = Depends(verify_auth),
    db: AsyncSession = Depends(get_db)
):
    """Delete a service. Its incidents are kept."""
    service = await ServiceRegistry(db).delete(service_id)
    return {"message": "Service deleted", "id": service.id, "name": service.name}


@app.post("/api/services/{service_id}/test", response_model=HealthProbeResult)
async def test_service(
    service_id: str,
    auth: dict = Depends(verify_auth),
    prober: HealthProber = Depends(get_health_prober),
    db: AsyncSession = Depends(get_db)
):
    """Probe a service's health endpoint once. The stored service is not modified."""
    service = await ServiceRegistry(db).get(service_id)
    return await prober.test(service)


# ============================================================================
# System Endpoints
# ============================================================================

@app.get("/api/system/stats", response_model=SystemStats)
async def get_system_stats(db: AsyncSession = Depends(get_db)):
    """Dashboard counts by status, category and severity."""
    return await IncidentStore(db).stats()


@app.post("/api/system/health-check", response_model=HealthCheckRunResult)
async def trigger_health_checks(
    auth: dict = Depends(verify_auth),
    prober: HealthProber = Depends(get_health_prober),
    db: AsyncSession = Depends(get_db)
):
    """Probe every enabled service once; open or auto-resolve system incidents."""
    return await run_health_checks(db, prober)


@app.post("/api/demo/seed")
async def seed_demo(
    incidents: int = Query(3, ge=0, le=50),
    auth: dict = Depends(verify_auth),
    db: AsyncSession = Depends(get_db)
):
    """Seed demo services and incidents."""
    return await seed_demo_data(db, incident_count=incidents)


# ============================================================================
# AI Analysis Endpoints
# ============================================================================

@app.get("/api/ai/analysis/{incident_id}", response_model=IncidentAnalysisResponse)
@limiter.limit(config.ANALYSIS_RATE_LIMIT)
async def get_ai_analysis(
    request: Request,
    incident_id: str,
    analysis: AnalysisService = Depends(get_analysis_service),
    db: AsyncSession = Depends(get_db)
):
    """Analyze an incident and return the versioned analysis response."""
    return await analysis.analyze(db, incident_id)


@app.post("/api/mcp/jsonrpc")
@limiter.limit(config.ANALYSIS_RATE_LIMIT)
async def mcp_jsonrpc(
    request: Request,
    analysis: AnalysisService = Depends(get_analysis_service),
    db: AsyncSession = Depends(get_db)
):
    """JSON-RPC 2.0 endpoint (tools/list, tools/call analyzeIncident)."""
    body = await request.body()
    return await McpHandler(analysis).handle_raw(body, db)


# ============================================================================
# User Authentication Endpoints
# ============================================================================

@app.post("/auth/register", response_model=TokenResponse)
@limiter.limit(config.AUTH_RATE_LIMIT)
async def register(request: Request, body: UserRegisterRequest, db: AsyncSession = Depends(get_db)):
    """Register a new operator account."""
    if await get_user_by_email(db, body.email):
        raise ValidationError("Email already registered")

    user = UserDB(
        email=body.email,
        password_hash=hash_password(body.password)
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)

    token = await issue_session(db, user)
    logger.info(f"User registered: {user.email}")

    return TokenResponse(access_token=token, user=user_response(user))


@app.post("/auth/login", response_model=TokenResponse)
@limiter.limit(config.AUTH_RATE_LIMIT)
async def login(request: Request, body: UserLoginRequest, db: AsyncSession = Depends(get_db)):
    """Login and get access token."""
    user = await get_user_by_email(db, body.email)

    if not user or not verify_password(body.password, user.password_hash):
        raise UnauthorizedError("Invalid email or password")

    if not user.is_active:
        raise UnauthorizedError("Account disabled")

    token = await issue_session(db, user)
    logger.info(f"User logged in: {user.email}")

    return TokenResponse(access_token=token, user=user_response(user))


@app.post("/auth/logout")
async def logout(
    user: UserDB = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Logout and invalidate all user tokens."""
    result = await db.execute(
        select(SessionTokenDB).where(SessionTokenDB.user_id == user.id)
    )
    for token in result.scalars().all():
        await db.delete(token)
    await db.commit()

    return {"status": "logged out"}


@app.get("/auth/me", response_model=UserResponse)
async def get_me(user: UserDB = Depends(get_current_user)):
    """Get current user info."""
    return user_response(user)


if __name__ == "__main__":
    import argparse
    import uvicorn

    parser = argparse.ArgumentParser(description=config.APP_NAME)
    parser.add_argument("--port", type=int, default=8000, help="Port to run on (default: 8000)")
    parser.add_argument("--host", type=str, default="0.0.0.0", help="Host to bind to (default: 0.0.0.0)")
    args = parser.parse_args()

    uvicorn.run(app, host=args.host, port=args.port)
