"""
SMS gateway client.

Speaks the Textbelt-style form API: POST ``phone``, ``message`` and ``key``,
receive ``{"success": bool, "error": str?}``.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from otel_init import get_meter, get_tracer

logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)
meter = get_meter(__name__)

sms_requests = meter.create_counter(
    "sms_gateway_requests_total", description="Total SMS gateway requests", unit="1"
)
sms_latency = meter.create_histogram(
    "sms_gateway_latency_ms", description="SMS gateway latency in milliseconds", unit="ms"
)


@dataclass(slots=True)
class DeliveryResult:
    """Outcome of one destination."""

    destination: str
    success: bool
    error: str | None = None
    quota_remaining: int | None = None


class SmsGateway:
    """
    Async client for the external SMS endpoint.

    ``send`` never raises: HTTP errors, malformed replies, network errors and
    timeouts all come back as failed ``DeliveryResult`` values.
    """

    def __init__(
        self,
        url: str = "https://textbelt.com/text",
        api_key: Optional[str] = None,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.url = url
        self.api_key = api_key
        self.timeout = timeout
        self.client = client or httpx.AsyncClient(
            timeout=timeout,
            headers={"User-Agent": "Logwatch-Alerts/1.0"},
        )

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    async def close(self):
        """Close the underlying HTTP client."""
        await self.client.aclose()

    async def _post(self, destination: str, message: str) -> DeliveryResult:
        response = await self.client.post(
            self.url,
            data={"phone": destination, "message": message, "key": self.api_key or ""},
        )
        try:
            body: dict[str, Any] = response.json()
        except ValueError:
            return DeliveryResult(
                destination=destination,
                success=False,
                error=f"Invalid gateway response (status {response.status_code})",
            )

        if body.get("success"):
            return DeliveryResult(
                destination=destination,
                success=True,
                quota_remaining=body.get("quotaRemaining"),
            )
        return DeliveryResult(
            destination=destination,
            success=False,
            error=str(body.get("error") or "Unknown error"),
        )

    async def send(self, destination: str, message: str) -> DeliveryResult:
        """Deliver one message to one destination within ``timeout`` seconds."""
        sms_requests.add(1)
        start_time = time.time()

        with tracer.start_as_current_span("sms_gateway_send") as span:
            span.set_attribute("sms.destination_suffix", destination[-4:])
            try:
                result = await asyncio.wait_for(
                    self._post(destination, message), timeout=self.timeout
                )
            except (asyncio.TimeoutError, httpx.TimeoutException):
                result = DeliveryResult(
                    destination=destination, success=False, error="Timed out"
                )
            except httpx.HTTPError as e:
                result = DeliveryResult(
                    destination=destination,
                    success=False,
                    error=str(e) or "Network error",
                )

            latency = (time.time() - start_time) * 1000
            status = "success" if result.success else "error"
            sms_latency.record(latency, {"status": status})
            span.set_attribute("sms.success", result.success)

        if result.success:
            logger.info(f"[SMS] Sent to {destination}")
        else:
            logger.error(f"[SMS] Failed to send to {destination}: {result.error}")
        return result

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
