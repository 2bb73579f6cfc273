from .config import config
from .models import *
from .logger import logger
from .errors import (
    IncidentDeskError, NotFoundError, ValidationError, UnauthorizedError,
    InvalidReferenceError, InvalidTransitionError, ConflictError, UpstreamUnavailableError
)
from .database import (
    Base, UserDB, SessionTokenDB, ServiceDB, IncidentDB, IncidentLogDB,
    engine, async_session, init_db, get_db, DATABASE_URL
)
from .auth import (
    hash_password, verify_password, generate_token, get_token_expiry, is_token_expired,
    issue_session, seed_demo_user, get_current_user, verify_auth
)
from .db_helpers import (
    get_user_by_id, get_user_by_email, get_session_by_token,
    get_service_by_id, get_incident_by_id, get_incident_logs
)
