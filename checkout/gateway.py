"""
Payment intent gateway client.

Creates a PaymentIntent through one of two transports:

- DevServerTransport: the local development endpoint (/api/create-payment-intent)
- ManagedFunctionTransport: the hosted serverless function, invoked by name

Both send the same JSON body {amount, currency, metadata} and expect
{clientSecret, paymentIntentId} back. Every failure (network, timeout,
non-2xx status, or a 2xx body without clientSecret) is raised as
GatewayTransportError. No retries happen here.
"""

import logging
from typing import Dict, Optional

import httpx

from checkout import config
from checkout.errors import GatewayTransportError
from checkout.schemas import PaymentIntentHandle, PaymentIntentRequest

log = logging.getLogger(__name__)

DEV_INTENT_PATH = "/api/create-payment-intent"


def _json_or_empty(response: httpx.Response) -> dict:
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


class _HttpTransport:
    """Shared request/response handling for both transports."""

    default_error = "Failed to create payment intent"

    def __init__(self, base_url: str, timeout: float, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url
        self.timeout = httpx.Timeout(timeout)
        # injectable for tests (httpx.MockTransport / ASGITransport)
        self._transport = transport

    def _path(self) -> str:
        raise NotImplementedError

    def _headers(self) -> Dict[str, str]:
        return {"Content-Type": "application/json"}

    def _error_message(self, response: httpx.Response, body: dict) -> str:
        return body.get("error") or self.default_error

    async def send(self, payload: dict, idempotency_key: Optional[str] = None) -> dict:
        headers = self._headers()
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key

        try:
            async with httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout,
                                         transport=self._transport) as client:
                response = await client.post(self._path(), json=payload, headers=headers)
        except httpx.TimeoutException as e:
            log.error(f"Payment intent request timed out after {self.timeout.read}s: {e}")
            raise GatewayTransportError("Payment service timed out. Please try again.", kind="network") from e
        except httpx.TransportError as e:
            log.error(f"Payment intent request failed: {e}")
            raise GatewayTransportError(f"Network error: {e}", kind="network") from e
        except httpx.HTTPError as e:
            # decoding errors, redirect loops and the like
            log.error(f"Payment intent response could not be read: {e}")
            raise GatewayTransportError(f"Network error: {e}", kind="network") from e

        body = _json_or_empty(response)
        if response.is_error:
            message = self._error_message(response, body)
            log.warning(f"Payment intent creation rejected (HTTP {response.status_code}): {message}")
            raise GatewayTransportError(message, kind="http")
        return body


class DevServerTransport(_HttpTransport):
    def _path(self) -> str:
        return DEV_INTENT_PATH

    def _error_message(self, response, body):
        return body.get("error") or f"HTTP {response.status_code}"


class ManagedFunctionTransport(_HttpTransport):
    def __init__(self, functions_url: str, key: str, name: str, timeout: float,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        super().__init__(functions_url, timeout, transport)
        self.key = key
        self.name = name

    def _path(self) -> str:
        return f"/functions/v1/{self.name}"

    def _headers(self):
        headers = super()._headers()
        if self.key:
            headers["Authorization"] = f"Bearer {self.key}"
            headers["apikey"] = self.key
        return headers

    def _error_message(self, response, body):
        return body.get("error") or body.get("message") or self.default_error


class PaymentIntentClient:
    def __init__(self, transport: _HttpTransport):
        self.transport = transport

    async def create_payment_intent(self, amount_minor: int, currency: str,
                                    metadata: Optional[Dict[str, object]] = None,
                                    idempotency_key: Optional[str] = None) -> PaymentIntentHandle:
        """
        Request a PaymentIntent for ``amount_minor`` (already in minor units).

        Returns:
            PaymentIntentHandle: id and client secret of the new intent.

        Raises:
            GatewayTransportError: on any failure; nothing partial is returned.
        """
        request = PaymentIntentRequest(
            amount=amount_minor,
            currency=currency,
            metadata={k: str(v) for k, v in metadata.items()} if metadata else None,
        )
        body = await self.transport.send(request.model_dump(exclude_none=True), idempotency_key)

        client_secret = body.get("clientSecret")
        payment_intent_id = body.get("paymentIntentId")
        if not client_secret:
            raise GatewayTransportError(body.get("error") or "Missing client secret in response", kind="response")
        if not payment_intent_id:
            raise GatewayTransportError("Missing payment intent id in response", kind="response")

        return PaymentIntentHandle(payment_intent_id=payment_intent_id, client_secret=client_secret)


def build_gateway_client() -> PaymentIntentClient:
    if config.IS_DEVELOPMENT:
        transport = DevServerTransport(config.PAYMENT_API_URL, config.PAYMENT_INTENT_TIMEOUT)
    else:
        if not config.FUNCTIONS_URL:
            raise RuntimeError("FUNCTIONS_URL is not set. Check your .env file.")
        transport = ManagedFunctionTransport(
            config.FUNCTIONS_URL,
            config.FUNCTIONS_KEY,
            config.PAYMENT_INTENT_FUNCTION,
            config.PAYMENT_INTENT_TIMEOUT,
        )
    return PaymentIntentClient(transport)


_gateway_client: Optional[PaymentIntentClient] = None


def get_gateway_client() -> PaymentIntentClient:
    global _gateway_client
    if _gateway_client is None:
        _gateway_client = build_gateway_client()
        log.info(f"Payment intent client ready ({type(_gateway_client.transport).__name__}).")
    return _gateway_client


def reset_gateway_client():
    """Tests only: forget the cached client."""
    global _gateway_client
    _gateway_client = None
