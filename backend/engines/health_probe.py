"""
Health Probe
One synchronous GET against a service's health endpoint, bounded by a timeout.
Failures come back as unhealthy results, never as exceptions.
"""
import time
from typing import Optional, Tuple

import httpx

from core import HealthProbeResult, Service, config, logger
from .service_registry import health_url


# Bodies longer than this are not kept on timeline events
MAX_HEALTH_DATA_CHARS = 2000


class HealthProber:
    """Probes service health endpoints."""

    def __init__(self, timeout: Optional[float] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.timeout = timeout if timeout is not None else config.HEALTH_CHECK_TIMEOUT_SECONDS
        self._transport = transport

    async def probe(self, service: Service) -> Tuple[HealthProbeResult, Optional[str]]:
        """
        Probe a service.

        Returns:
            (result, body) where body is the (truncated) response text, or None
            if nothing answered.
        """
        url = health_url(service)
        start = time.perf_counter()
        status_code = None
        body = None
        error = None

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.get(url)
            status_code = response.status_code
            body = response.text[:MAX_HEALTH_DATA_CHARS]
            if not response.is_success:
                error = f"HTTP {status_code}"
        except httpx.TimeoutException:
            error = f"Timed out after {self.timeout:g}s"
        except httpx.ConnectError as e:
            error = f"Connection failed: {e}" if str(e) else "Connection failed"
        except httpx.HTTPError as e:
            error = f"{type(e).__name__}: {e}"

        response_time = None
        if status_code is not None:
            response_time = round((time.perf_counter() - start) * 1000, 2)

        result = HealthProbeResult(
            healthy=error is None,
            service=service.name,
            service_id=service.id,
            url=url,
            response_time=response_time,
            status_code=status_code,
            error=error,
        )
        logger.log_health_probe(service.name, url, result.healthy, response_time, error)
        return result, body

    async def test(self, service: Service) -> HealthProbeResult:
        """Diagnostic probe; the stored service is never modified."""
        result, _ = await self.probe(service)
        return result
