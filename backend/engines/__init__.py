from .lifecycle import validate_transition, is_terminal, TERMINAL_STATUSES, ACTIVE_STATUSES
from . import timeline
from .incident_store import IncidentStore
from .service_registry import ServiceRegistry
from .health_probe import HealthProber
from .detection import run_health_checks
