"""
Timeline Subsystem
Builds append-only timeline events and renders their details for display.
"""
import re
from datetime import datetime
from typing import Any, Dict, List, Optional

from core import (
    Actor, ApprovalDetails, CreatedDetails, DisplayItem, FreeformDetails,
    HealthCheckDetails, HealthProbeResult, Incident, IncidentStatus,
    StatusChangeDetails, SuggestedAction, TimelineEvent, utc_now
)


def next_timestamp(timeline: List[TimelineEvent], now: Optional[datetime] = None) -> datetime:
    """Timestamp for a new event, never earlier than the latest one already recorded."""
    now = now or utc_now()
    if timeline:
        latest = max(event.timestamp for event in timeline)
        if latest > now:
            return latest
    return now


def append_event(incident: Incident, event: str, actor: Actor, details) -> TimelineEvent:
    """Append an event carrying the incident's current status."""
    entry = TimelineEvent(
        timestamp=next_timestamp(incident.timeline),
        event=event,
        status=incident.status,
        actor=actor,
        details=details,
    )
    incident.timeline.append(entry)
    return entry


def record_created(incident: Incident, actor: Actor) -> TimelineEvent:
    label = "Incident detected" if actor == Actor.SYSTEM else "Incident reported"
    return append_event(incident, label, actor, CreatedDetails(
        source=incident.source,
        severity=incident.severity,
        category=incident.category,
    ))


def record_status_change(
    incident: Incident,
    from_status: IncidentStatus,
    actor: Actor,
    notes: Optional[str] = None,
    changed_by: Optional[str] = None
) -> TimelineEvent:
    label = f"Status changed to {incident.status.value}"
    return append_event(incident, label, actor, StatusChangeDetails(
        from_status=from_status,
        to_status=incident.status,
        notes=notes,
        changed_by=changed_by,
    ))


def record_approval(incident: Incident, action: SuggestedAction, approver: Optional[str]) -> TimelineEvent:
    return append_event(incident, f"Action approved: {action.action}", Actor.ENGINEER, ApprovalDetails(
        action_id=action.id,
        action=action.action,
        description=action.description,
        confidence=action.confidence,
        approved_by=approver,
    ))


def record_health_check(incident: Incident, result: HealthProbeResult, health_data: Optional[str] = None) -> TimelineEvent:
    label = "Health check passed" if result.healthy else "Health check failed"
    return append_event(incident, label, Actor.SYSTEM, HealthCheckDetails(
        healthy=result.healthy,
        status_code=result.status_code,
        response_time=result.response_time,
        error=result.error,
        health_data=health_data,
    ))


def reverse_chronological(timeline: List[TimelineEvent]) -> List[TimelineEvent]:
    return sorted(timeline, key=lambda e: e.timestamp, reverse=True)


# =============================================================================
# Display formatting
# =============================================================================

def _looks_like_html(value: Any) -> bool:
    text = str(value).strip().lower()
    return text.startswith("<!doctype") or text.startswith("<html")


def _title_case_key(key: str) -> str:
    """healthData -> Health Data"""
    spaced = re.sub(r"([A-Z])", r" \1", key)
    return (spaced[:1].upper() + spaced[1:]).strip()


def _display_value(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple)):
        return ", ".join(str(v) for v in value) if value else "[]"
    return str(value)


def format_details_for_display(details: Dict[str, Any]) -> List[DisplayItem]:
    """
    Flatten a details mapping into key/value pairs for point-wise display.

    HTML bodies captured in `healthData` are dropped; nested mappings are
    flattened as `parent.Child Key`.
    """
    if not isinstance(details, dict):
        return []

    items: List[DisplayItem] = []
    for key, value in details.items():
        if key == "healthData" and _looks_like_html(value):
            continue

        if isinstance(value, dict):
            nested = format_details_for_display(value)
            if nested:
                items.extend(DisplayItem(key=f"{key}.{item.key}", value=item.value) for item in nested)
                continue
            items.append(DisplayItem(key=_title_case_key(key), value="[Object]"))
            continue

        items.append(DisplayItem(key=_title_case_key(key), value=_display_value(value)))

    return items


def event_display(event: TimelineEvent) -> List[DisplayItem]:
    """Display items for a timeline event's details."""
    details = event.details
    if isinstance(details, FreeformDetails):
        raw = details.data
    else:
        raw = details.model_dump(mode="json", by_alias=True, exclude_none=True)
        raw.pop("kind", None)
    return format_details_for_display(raw)
