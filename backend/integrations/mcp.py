"""
MCP Transport
JSON-RPC 2.0 access to incident analysis. Returns the same
IncidentAnalysisResponse as the REST endpoint, wrapped in an MCP tool result.
"""
import json
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from core import NotFoundError, logger
from .ai_client import AnalysisService


JSONRPC_VERSION = "2.0"

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603
RESOURCE_NOT_FOUND = -32004

ANALYZE_TOOL = "analyzeIncident"

TOOLS = [
    {
        "name": ANALYZE_TOOL,
        "description": "Analyze an incident's logs and return root cause, suggested actions and trend.",
        "inputSchema": {
            "type": "object",
            "properties": {"incidentId": {"type": "string"}},
            "required": ["incidentId"],
        },
    }
]


class JsonRpcError(Exception):
    def __init__(self, code: int, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


def error_response(request_id: Any, code: int, message: str) -> Dict[str, Any]:
    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "error": {"code": code, "message": message}}


def result_response(request_id: Any, result: Dict[str, Any]) -> Dict[str, Any]:
    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "result": result}


class McpHandler:
    """Routes JSON-RPC requests to tool implementations."""

    def __init__(self, analysis: AnalysisService):
        self.analysis = analysis

    async def handle_raw(self, body: bytes, db: AsyncSession) -> Dict[str, Any]:
        """Decode a request body and dispatch it."""
        try:
            payload = json.loads(body or b"")
        except (json.JSONDecodeError, UnicodeDecodeError):
            return error_response(None, PARSE_ERROR, "Parse error")
        return await self.handle(payload, db)

    async def handle(self, payload: Any, db: AsyncSession) -> Dict[str, Any]:
        """
        Route one JSON-RPC request.

        Methods:
            tools/list - Describe available tools
            tools/call - Call a tool (analyzeIncident)
        """
        if not isinstance(payload, dict):
            return error_response(None, INVALID_REQUEST, "Invalid Request")

        request_id = payload.get("id")
        method = payload.get("method")
        if payload.get("jsonrpc") != JSONRPC_VERSION or not isinstance(method, str):
            return error_response(request_id, INVALID_REQUEST, "Invalid Request")

        params = payload.get("params") or {}
        if not isinstance(params, dict):
            return error_response(request_id, INVALID_PARAMS, "params must be an object")

        try:
            if method == "tools/list":
                result = {"tools": TOOLS}
            elif method == "tools/call":
                result = await self._handle_tool_call(params, db)
            else:
                raise JsonRpcError(METHOD_NOT_FOUND, f"Method not found: {method}")
        except JsonRpcError as e:
            return error_response(request_id, e.code, e.message)
        except NotFoundError as e:
            return error_response(request_id, RESOURCE_NOT_FOUND, e.message)
        except Exception as e:
            logger.exception(f"JSON-RPC {method} failed", {"error": str(e)})
            return error_response(request_id, INTERNAL_ERROR, "Internal error")

        return result_response(request_id, result)

    async def _handle_tool_call(self, params: Dict[str, Any], db: AsyncSession) -> Dict[str, Any]:
        name = params.get("name")
        arguments = params.get("arguments") or {}
        if name != ANALYZE_TOOL:
            raise JsonRpcError(INVALID_PARAMS, f"Unknown tool: {name}")
        if not isinstance(arguments, dict):
            raise JsonRpcError(INVALID_PARAMS, "arguments must be an object")

        incident_id: Optional[str] = arguments.get("incidentId")
        if not incident_id or not isinstance(incident_id, str):
            raise JsonRpcError(INVALID_PARAMS, "incidentId is required")

        response = await self.analysis.analyze(db, incident_id)
        return {
            "content": [
                {"type": "json", "data": response.model_dump(mode="json", by_alias=True)}
            ]
        }
