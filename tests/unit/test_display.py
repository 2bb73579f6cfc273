"""Terminal display helper tests"""
import pytest

from utils.display import format_duration, format_timeline_details, history_lines, incident_line


class TestFormatDuration:
    @pytest.mark.parametrize("ms,expected", [
        (0, "0ms"),
        (500, "500ms"),
        (1500, "1.5s"),
        (90000, "1.5m"),
        (5400000, "1.5h"),
    ])
    def test_units(self, ms, expected):
        assert format_duration(ms) == expected


class TestLines:
    def test_incident_line(self):
        line = incident_line({"id": "1234567890", "title": "DB down", "severity": "high", "status": "open"})
        assert line == "  [HIGH  ] 12345678 - DB down (open)"

    def test_timeline_details_drop_html(self):
        assert format_timeline_details({"healthData": "<html></html>", "statusCode": 503}) == [("Status Code", "503")]

    def test_history_lines(self):
        lines = history_lines({
            "incidentId": "abc",
            "status": "open",
            "count": 1,
            "events": [{
                "timestamp": "2024-01-01T00:00:00",
                "event": "Incident reported",
                "actor": "engineer",
                "display": [{"key": "Source", "value": "engineer"}],
            }],
        })
        assert lines[0] == "Incident abc [open] - 1 events"
        assert lines[-1] == "      Source: engineer"
