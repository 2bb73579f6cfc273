"""Wire model tests"""
import pytest
from pydantic import ValidationError as PydanticValidationError

from core import (
    AIAnalysis, ApprovalDetails, FreeformDetails, Incident, LogBatchRequest,
    SuggestedAction, TimelineEvent
)


class TestTimelineDetails:
    def test_untagged_details_become_freeform(self):
        event = TimelineEvent.model_validate({
            "event": "Health check failed",
            "status": "open",
            "actor": "system",
            "details": {"statusCode": 503},
        })
        assert isinstance(event.details, FreeformDetails)
        assert event.details.data == {"statusCode": 503}

    def test_tagged_details_are_typed(self):
        event = TimelineEvent.model_validate({
            "event": "Action approved: restart",
            "status": "investigating",
            "actor": "engineer",
            "details": {"kind": "approval", "actionId": "act_1", "action": "restart"},
        })
        assert isinstance(event.details, ApprovalDetails)
        assert event.details.action_id == "act_1"

    def test_unknown_kind_rejected(self):
        with pytest.raises(PydanticValidationError):
            TimelineEvent.model_validate({
                "event": "x", "status": "open", "actor": "system", "details": {"kind": "mystery"},
            })


class TestWireFormat:
    def test_incident_serializes_camel_case(self):
        data = Incident(title="t").model_dump(mode="json", by_alias=True)
        assert "serviceId" in data
        assert "resolutionTime" in data
        assert "firstDetectedAt" in data["metadata"]

    def test_suggested_action_gets_stable_id(self):
        first, second = SuggestedAction(action="restart"), SuggestedAction(action="restart")
        assert first.id.startswith("act_")
        assert first.id != second.id

    def test_confidence_bounds(self):
        with pytest.raises(PydanticValidationError):
            SuggestedAction(action="restart", confidence=1.5)

    def test_analysis_carries_schema_version(self):
        assert AIAnalysis().model_dump(by_alias=True)["schemaVersion"] == "1"

    def test_log_batch_requires_entries(self):
        with pytest.raises(PydanticValidationError):
            LogBatchRequest(logs=[])
