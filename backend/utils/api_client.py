"""
HTTP Client for the Incident Desk API
Async wrapper around the REST and JSON-RPC surfaces.
"""
from typing import Any, Dict, List, Optional

import httpx


DEFAULT_URL = "http://localhost:8000"


class ApiError(Exception):
    """Non-success response (status_code 0 when the server could not be reached)."""

    def __init__(self, status_code: int, message: str):
        super().__init__(f"[{status_code}] {message}" if status_code else message)
        self.status_code = status_code
        self.message = message


class IncidentDeskClient:
    """
    Client for the Incident Desk backend.

    Usage:
        async with IncidentDeskClient("http://localhost:8000", api_key="...") as client:
            incidents = await client.list_incidents(status="open")
    """

    def __init__(
        self,
        base_url: str = DEFAULT_URL,
        api_key: Optional[str] = None,
        token: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.token = token
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._rpc_id = 0

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if self.api_key:
            headers["X-API-Key"] = self.api_key
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self):
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "IncidentDeskClient":
        await self._get_client()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def _request(
        self,
        method: str,
        path: str,
        json: Optional[Any] = None,
        params: Optional[Dict[str, Any]] = None
    ) -> Any:
        client = await self._get_client()
        if params:
            params = {k: v for k, v in params.items() if v is not None}

        try:
            response = await client.request(method, path, json=json, params=params, headers=self._headers())
        except httpx.TimeoutException:
            raise ApiError(0, f"Request to {self.base_url}{path} timed out")
        except httpx.HTTPError as e:
            raise ApiError(0, f"Could not connect to {self.base_url}: {e}")

        try:
            body = response.json()
        except ValueError:
            body = None

        if not response.is_success:
            message = response.reason_phrase
            if isinstance(body, dict):
                message = body.get("detail") or body.get("error") or message
            raise ApiError(response.status_code, str(message))
        return body

    # Incidents

    async def list_incidents(
        self,
        status: Optional[str] = None,
        severity: Optional[str] = None,
        category: Optional[str] = None,
        service_id: Optional[str] = None,
        limit: Optional[int] = None
    ) -> Dict[str, Any]:
        return await self._request("GET", "/api/incidents", params={
            "status": status,
            "severity": severity,
            "category": category,
            "serviceId": service_id,
            "limit": limit,
        })

    async def get_incident(self, incident_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"/api/incidents/{incident_id}")

    async def create_incident(self, title: str, **fields) -> Dict[str, Any]:
        return await self._request("POST", "/api/incidents", json={"title": title, **fields})

    async def update_status(
        self,
        incident_id: str,
        status: str,
        notes: Optional[str] = None,
        expected_version: Optional[int] = None
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {"status": status}
        if notes:
            body["notes"] = notes
        if expected_version is not None:
            body["expectedVersion"] = expected_version
        return await self._request("PATCH", f"/api/incidents/{incident_id}/status", json=body)

    async def approve_action(
        self,
        incident_id: str,
        action_id: Optional[str] = None,
        action_index: Optional[int] = None
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {}
        if action_id is not None:
            body["actionId"] = action_id
        if action_index is not None:
            body["actionIndex"] = action_index
        return await self._request("POST", f"/api/incidents/{incident_id}/approve-action", json=body)

    async def get_history(self, incident_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"/api/incidents/{incident_id}/history")

    async def add_logs(self, incident_id: str, logs: List[Dict[str, str]]) -> List[Dict[str, Any]]:
        return await self._request("POST", f"/api/incidents/{incident_id}/logs", json={"logs": logs})

    async def get_logs(self, incident_id: str) -> List[Dict[str, Any]]:
        return await self._request("GET", f"/api/logs/{incident_id}")

    # Services

    async def list_services(
        self,
        enabled: Optional[bool] = None,
        category: Optional[str] = None,
        environment: Optional[str] = None
    ) -> Dict[str, Any]:
        return await self._request("GET", "/api/services", params={
            "enabled": None if enabled is None else str(enabled).lower(),
            "category": category,
            "environment": environment,
        })

    async def get_service(self, service_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"/api/services/{service_id}")

    async def create_service(self, name: str, url: str, **fields) -> Dict[str, Any]:
        return await self._request("POST", "/api/services", json={"name": name, "url": url, **fields})

    async def update_service(self, service_id: str, **fields) -> Dict[str, Any]:
        return await self._request("PATCH", f"/api/services/{service_id}", json=fields)

    async def delete_service(self, service_id: str) -> Dict[str, Any]:
        return await self._request("DELETE", f"/api/services/{service_id}")

    async def test_service(self, service_id: str) -> Dict[str, Any]:
        return await self._request("POST", f"/api/services/{service_id}/test")

    # System

    async def health(self) -> Dict[str, Any]:
        return await self._request("GET", "/health")

    async def get_stats(self) -> Dict[str, Any]:
        return await self._request("GET", "/api/system/stats")

    async def run_health_checks(self) -> Dict[str, Any]:
        return await self._request("POST", "/api/system/health-check")

    async def seed_demo(self, incidents: int = 3) -> Dict[str, Any]:
        return await self._request("POST", "/api/demo/seed", params={"incidents": incidents})

    # AI analysis

    async def get_analysis(self, incident_id: str) -> Dict[str, Any]:
        """Analysis over REST."""
        return await self._request("GET", f"/api/ai/analysis/{incident_id}")

    async def analyze_incident(self, incident_id: str) -> Dict[str, Any]:
        """Analysis over JSON-RPC; returns the unwrapped IncidentAnalysisResponse."""
        self._rpc_id += 1
        payload = {
            "jsonrpc": "2.0",
            "id": self._rpc_id,
            "method": "tools/call",
            "params": {"name": "analyzeIncident", "arguments": {"incidentId": incident_id}},
        }
        body = await self._request("POST", "/api/mcp/jsonrpc", json=payload)

        if not isinstance(body, dict):
            raise ApiError(502, "Malformed JSON-RPC response")
        if body.get("error"):
            error = body["error"]
            raise ApiError(int(error.get("code", 0)), error.get("message", "JSON-RPC error"))

        try:
            return body["result"]["content"][0]["data"]
        except (KeyError, IndexError, TypeError):
            raise ApiError(502, "JSON-RPC result did not contain analysis data")
