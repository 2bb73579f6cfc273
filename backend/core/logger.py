"""
Logging & Debug Layer
JSON log lines on stdout, plus helpers for the events operators search for.
"""
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional
import json

from .config import config


class StructuredFormatter(logging.Formatter):
    """Custom formatter that outputs JSON structured logs."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if hasattr(record, "extra_data"):
            log_data["data"] = record.extra_data

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class BackendLogger:
    """Logger for backend operations."""

    def __init__(self, name: str = "incident-desk", level: str = "INFO"):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(getattr(logging, level, logging.INFO))

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(StructuredFormatter())

        if not self.logger.handlers:
            self.logger.addHandler(console_handler)

    def _log(self, level: int, message: str, data: Optional[Dict[str, Any]] = None, exc_info: bool = False):
        extra = {"extra_data": data} if data else {}
        self.logger.log(level, message, extra=extra, exc_info=exc_info)

    def debug(self, message: str, data: Optional[Dict[str, Any]] = None):
        self._log(logging.DEBUG, message, data)

    def info(self, message: str, data: Optional[Dict[str, Any]] = None):
        self._log(logging.INFO, message, data)

    def warning(self, message: str, data: Optional[Dict[str, Any]] = None):
        self._log(logging.WARNING, message, data)

    def error(self, message: str, data: Optional[Dict[str, Any]] = None):
        self._log(logging.ERROR, message, data)

    def exception(self, message: str, data: Optional[Dict[str, Any]] = None):
        """Log at ERROR level with the active exception's traceback."""
        self._log(logging.ERROR, message, data, exc_info=True)

    # Specialized logging methods
    def log_api_call(self, endpoint: str, method: str, status: int, duration_ms: float, data: Optional[Dict] = None):
        self.info(f"API Call: {method} {endpoint}", {
            "endpoint": endpoint,
            "method": method,
            "status": status,
            "duration_ms": round(duration_ms, 2),
            **(data or {})
        })

    def log_status_change(self, incident_id: str, from_status: str, to_status: str, actor: str):
        self.info(f"Incident {incident_id} status: {from_status} -> {to_status}", {
            "incident_id": incident_id,
            "from_status": from_status,
            "to_status": to_status,
            "actor": actor
        })

    def log_health_probe(self, service: str, url: str, healthy: bool, response_time_ms: Optional[float], error: Optional[str] = None):
        level = logging.INFO if healthy else logging.WARNING
        self._log(level, f"Health probe: {service} {'healthy' if healthy else 'unhealthy'}", {
            "service": service,
            "url": url,
            "healthy": healthy,
            "response_time_ms": response_time_ms,
            "error": error
        })

    def log_analysis_request(self, incident_id: str, provider: str, log_count: int):
        self.info(f"Analysis request for incident {incident_id} via {provider}", {
            "incident_id": incident_id,
            "provider": provider,
            "log_count": log_count
        })

    def log_analysis_response(self, incident_id: str, provider: str, success: bool, details: Optional[Dict] = None):
        level = logging.INFO if success else logging.WARNING
        self._log(level, f"Analysis response for incident {incident_id} via {provider}", {
            "incident_id": incident_id,
            "provider": provider,
            "success": success,
            **(details or {})
        })

    def log_action_approved(self, incident_id: str, action_id: str, action: str, approver: str):
        self.info(f"Action approved on incident {incident_id}: {action}", {
            "incident_id": incident_id,
            "action_id": action_id,
            "action": action,
            "approved_by": approver
        })


# Global logger instance
logger = BackendLogger(level=config.LOG_LEVEL)
