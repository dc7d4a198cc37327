"""
Razorpay REST client using httpx sync client.
Every call is bounded by GatewayConfig.timeout and runs through the "gateway"
circuit breaker; any transport failure surfaces as GatewayUnavailable.
"""
import logging
import time

import httpx
import pybreaker

from checkout.core.config import GatewayConfig
from checkout.core.errors import GatewayUnavailable, ValidationError
from checkout.services.circuit_breaker import get_circuit_breaker
from checkout.utils.metrics import gateway_requests_total, gateway_request_duration_seconds


logger = logging.getLogger(__name__)


class GatewayRejected(Exception):
    """4xx from the gateway: the request is wrong, the gateway is healthy."""

    def __init__(self, status_code: int, description: str) -> None:
        super().__init__(f"{status_code}: {description}")
        self.status_code = status_code
        self.description = description


class GatewayServerError(Exception):
    pass


class RazorpayClient:
    def __init__(
        self,
        config: GatewayConfig,
        http_client: httpx.Client | None = None,
        breaker: pybreaker.CircuitBreaker | None = None,
    ) -> None:
        self._config = config
        self._client = http_client
        self._breaker = breaker or get_circuit_breaker("gateway", exclude=[GatewayRejected])

    @property
    def key_id(self) -> str:
        return self._config.key_id

    @property
    def client(self) -> httpx.Client:
        """Lazy initialization of httpx client."""
        if self._client is None:
            self._client = httpx.Client(
                base_url=self._config.api_base,
                auth=(self._config.key_id, self._config.key_secret),
                timeout=self._config.timeout,
            )
        return self._client

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    def _record_request(self, method: str, status: str, duration: float) -> None:
        gateway_requests_total.labels(method=method, status=status).inc()
        gateway_request_duration_seconds.labels(method=method).observe(duration)

    def _request(self, http_method: str, path: str, json: dict | None = None) -> dict:
        resp = self.client.request(http_method, path, json=json)
        if resp.status_code >= 500:
            raise GatewayServerError(f"{resp.status_code}: {resp.text[:200]}")
        if resp.status_code >= 400:
            try:
                description = resp.json().get("error", {}).get("description", resp.text)
            except (ValueError, AttributeError):
                description = resp.text
            raise GatewayRejected(resp.status_code, description)
        try:
            body = resp.json()
        except ValueError as e:
            raise GatewayServerError(f"{resp.status_code}: non-JSON body: {resp.text[:200]}") from e
        if not isinstance(body, dict):
            raise GatewayServerError(f"{resp.status_code}: unexpected body type {type(body).__name__}")
        return body

    def _call(self, method: str, http_method: str, path: str, json: dict | None = None) -> dict:
        start = time.time()
        try:
            result = self._breaker.call(self._request, http_method, path, json)
        except GatewayRejected as e:
            self._record_request(method, "rejected", time.time() - start)
            logger.warning(
                "gateway_request_rejected",
                extra={"method": method, "status_code": e.status_code, "error": e.description},
            )
            raise ValidationError(f"Payment gateway rejected request: {e.description}") from e
        except (httpx.HTTPError, GatewayServerError, pybreaker.CircuitBreakerError) as e:
            self._record_request(method, "error", time.time() - start)
            logger.error(
                "gateway_unavailable",
                extra={"method": method, "error": f"{type(e).__name__}: {e}"},
            )
            raise GatewayUnavailable("Payment gateway unavailable, please retry") from e
        self._record_request(method, "success", time.time() - start)
        return result

    def create_order(self, amount: int, currency: str, receipt: str, notes: dict | None = None) -> dict:
        """Create a remote order; amount is in minor units."""
        payload = {"amount": amount, "currency": currency, "receipt": receipt, "notes": notes or {}}
        order = self._call("orders.create", "POST", "/orders", json=payload)
        if not isinstance(order.get("id"), str) or not order["id"]:
            logger.error("gateway_order_without_id", extra={"method": "orders.create"})
            raise GatewayUnavailable("Payment gateway returned an order without id, please retry")
        return order

    def fetch_payment(self, payment_id: str) -> dict:
        return self._call("payments.fetch", "GET", f"/payments/{payment_id}")

    def fetch_order_payments(self, order_id: str) -> list[dict]:
        result = self._call("orders.payments", "GET", f"/orders/{order_id}/payments")
        return result.get("items", [])
