"""
Database configuration and models
Supports SQLite (default) or PostgreSQL
"""
from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey, Text, Integer
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase, relationship

from .config import config
from .models import new_id, utc_now


DATABASE_URL = config.DATABASE_URL


class Base(DeclarativeBase):
    pass


class UserDB(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=new_id)
    email = Column(String, unique=True, nullable=False, index=True)
    password_hash = Column(String, nullable=False)
    created_at = Column(DateTime, default=utc_now)
    is_active = Column(Boolean, default=True)

    session_tokens = relationship("SessionTokenDB", cascade="all, delete-orphan")


class SessionTokenDB(Base):
    __tablename__ = "session_tokens"

    token = Column(String, primary_key=True, index=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    created_at = Column(DateTime, default=utc_now)
    expires_at = Column(DateTime, nullable=True, index=True)


class ServiceDB(Base):
    __tablename__ = "services"

    id = Column(String, primary_key=True, default=new_id)
    name = Column(String, nullable=False, index=True)
    url = Column(String, nullable=False)
    health_endpoint = Column(String, default="/health")
    description = Column(Text, nullable=True)
    category = Column(String, default="api", index=True)
    enabled = Column(Boolean, default=True, index=True)
    # Indexed copy of metadata.environment for filtering
    environment = Column(String, nullable=True, index=True)
    metadata_json = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utc_now)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)


class IncidentDB(Base):
    __tablename__ = "incidents"

    id = Column(String, primary_key=True, default=new_id)
    title = Column(String, nullable=False)
    description = Column(Text, default="")
    # No foreign key: deleting a service leaves its incidents in place
    service_id = Column(String, nullable=True, index=True)
    service_name = Column(String, nullable=True)
    severity = Column(String, default="medium", index=True)
    category = Column(String, default="performance", index=True)
    source = Column(String, default="engineer")
    status = Column(String, default="open", index=True)

    resolved_at = Column(DateTime, nullable=True)
    resolved_by = Column(String, nullable=True)
    resolution_time_ms = Column(Integer, nullable=True)

    first_detected_at = Column(DateTime, default=utc_now)
    last_updated_at = Column(DateTime, default=utc_now)
    log_count = Column(Integer, default=0)
    error_count = Column(Integer, default=0)

    # Store JSON data as text (can use JSONB in production)
    timeline_json = Column(Text, default="[]")
    ai_analysis_json = Column(Text, nullable=True)

    # Bumped by the ORM on every UPDATE; a stale write raises StaleDataError
    version = Column(Integer, nullable=False)
    created_at = Column(DateTime, default=utc_now, index=True)
    # Set explicitly by the store so analysis snapshots leave it untouched
    updated_at = Column(DateTime, default=utc_now)

    logs = relationship("IncidentLogDB", back_populates="incident", cascade="all, delete-orphan")

    __mapper_args__ = {"version_id_col": version}


class IncidentLogDB(Base):
    __tablename__ = "incident_logs"

    id = Column(String, primary_key=True, default=new_id)
    incident_id = Column(String, ForeignKey("incidents.id"), nullable=False, index=True)
    message = Column(Text, nullable=False)
    level = Column(String, default="info", index=True)
    created_at = Column(DateTime, default=utc_now, index=True)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)

    incident = relationship("IncidentDB", back_populates="logs")


# Engine and session factory
engine = create_async_engine(DATABASE_URL, echo=False)
async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def init_db():
    """Initialize database tables."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def get_db() -> AsyncSession:
    """Get database session."""
    async with async_session() as session:
        yield session
