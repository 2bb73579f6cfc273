"""
Database Query Helpers
Reusable database query functions to reduce code duplication.
"""
from typing import Optional, List
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .database import UserDB, SessionTokenDB, ServiceDB, IncidentDB, IncidentLogDB


async def get_user_by_id(db: AsyncSession, user_id: str) -> Optional[UserDB]:
    """Get user by ID."""
    result = await db.execute(select(UserDB).where(UserDB.id == user_id))
    return result.scalar_one_or_none()


async def get_user_by_email(db: AsyncSession, email: str) -> Optional[UserDB]:
    """Get user by email."""
    result = await db.execute(select(UserDB).where(UserDB.email == email))
    return result.scalar_one_or_none()


async def get_session_by_token(db: AsyncSession, token: str) -> Optional[SessionTokenDB]:
    """Get session by token."""
    result = await db.execute(select(SessionTokenDB).where(SessionTokenDB.token == token))
    return result.scalar_one_or_none()


async def get_service_by_id(db: AsyncSession, service_id: str) -> Optional[ServiceDB]:
    """Get service by ID."""
    result = await db.execute(select(ServiceDB).where(ServiceDB.id == service_id))
    return result.scalar_one_or_none()


async def get_incident_by_id(db: AsyncSession, incident_id: str) -> Optional[IncidentDB]:
    """Get incident by ID."""
    result = await db.execute(select(IncidentDB).where(IncidentDB.id == incident_id))
    return result.scalar_one_or_none()


async def get_incident_logs(db: AsyncSession, incident_id: str) -> List[IncidentLogDB]:
    """Get all logs for an incident, oldest first."""
    result = await db.execute(
        select(IncidentLogDB)
        .where(IncidentLogDB.incident_id == incident_id)
        .order_by(IncidentLogDB.created_at, IncidentLogDB.id)
    )
    return list(result.scalars().all())
