"""
Display helpers for terminal output.
"""
from typing import Any, Dict, List, Tuple

from engines.timeline import format_details_for_display


def format_duration(ms: float) -> str:
    """500 -> '500ms', 1500 -> '1.5s', 90000 -> '1.5m', 5400000 -> '1.5h'"""
    if ms < 1000:
        return f"{ms:g}ms"
    if ms < 60000:
        return f"{ms / 1000:.1f}s"
    if ms < 3600000:
        return f"{ms / 60000:.1f}m"
    return f"{ms / 3600000:.1f}h"


def format_timeline_details(details: Dict[str, Any]) -> List[Tuple[str, str]]:
    """Key/value pairs for a timeline event's details (HTML health bodies dropped)."""
    return [(item.key, item.value) for item in format_details_for_display(details)]


def incident_line(incident: Dict[str, Any]) -> str:
    severity = str(incident.get("severity", "unknown")).upper()
    return f"  [{severity:6}] {str(incident.get('id', 'N/A'))[:8]} - {incident.get('title', 'Untitled')} ({incident.get('status')})"


def history_lines(history: Dict[str, Any]) -> List[str]:
    lines = [f"Incident {history.get('incidentId')} [{history.get('status')}] - {history.get('count', 0)} events"]
    for event in history.get("events", []):
        lines.append(f"  {event.get('timestamp')}  {event.get('event')}  (by {event.get('actor')})")
        for item in event.get("display", []):
            lines.append(f"      {item.get('key')}: {item.get('value')}")
    return lines
