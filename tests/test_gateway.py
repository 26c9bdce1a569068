import json

import httpx
import pytest

from checkout import config, gateway
from checkout.errors import GatewayTransportError
from checkout.gateway import (
    DevServerTransport,
    ManagedFunctionTransport,
    PaymentIntentClient,
    get_gateway_client,
    reset_gateway_client,
)


def dev_client(handler):
    transport = DevServerTransport("http://testserver", 15, transport=httpx.MockTransport(handler))
    return PaymentIntentClient(transport)


def managed_client(handler):
    transport = ManagedFunctionTransport(
        "https://functions.test", "anon-key", "create-payment-intent", 15,
        transport=httpx.MockTransport(handler),
    )
    return PaymentIntentClient(transport)


@pytest.fixture
def fresh_gateway_client():
    reset_gateway_client()
    yield
    reset_gateway_client()


@pytest.mark.asyncio
async def test_dev_transport_success():
    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        seen["idempotency"] = request.headers.get("Idempotency-Key")
        return httpx.Response(200, json={"clientSecret": "pi_1_secret", "paymentIntentId": "pi_1"})

    handle = await dev_client(handler).create_payment_intent(
        9999, "USD", metadata={"item_count": 2}, idempotency_key="checkout-abc"
    )

    assert handle.payment_intent_id == "pi_1"
    assert handle.client_secret == "pi_1_secret"
    assert seen["path"] == "/api/create-payment-intent"
    assert seen["body"] == {"amount": 9999, "currency": "usd", "metadata": {"item_count": "2"}}
    assert seen["idempotency"] == "checkout-abc"


@pytest.mark.asyncio
async def test_dev_transport_error_body_is_surfaced_verbatim():
    def handler(request):
        return httpx.Response(402, json={"error": "card_declined"})

    with pytest.raises(GatewayTransportError) as exc:
        await dev_client(handler).create_payment_intent(1000, "usd")

    assert exc.value.message == "card_declined"
    assert exc.value.kind == "http"


@pytest.mark.asyncio
async def test_dev_transport_non_json_error_falls_back_to_status():
    def handler(request):
        return httpx.Response(500, text="Internal Server Error")

    with pytest.raises(GatewayTransportError) as exc:
        await dev_client(handler).create_payment_intent(1000, "usd")

    assert exc.value.message == "HTTP 500"


@pytest.mark.asyncio
async def test_timeout_is_a_network_error():
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(GatewayTransportError) as exc:
        await dev_client(handler).create_payment_intent(1000, "usd")

    assert exc.value.kind == "network"


@pytest.mark.asyncio
async def test_connection_failure_is_a_network_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(GatewayTransportError) as exc:
        await dev_client(handler).create_payment_intent(1000, "usd")

    assert exc.value.kind == "network"
    assert "connection refused" in exc.value.message


@pytest.mark.asyncio
async def test_success_without_client_secret_is_an_error():
    def handler(request):
        return httpx.Response(200, json={"paymentIntentId": "pi_1"})

    with pytest.raises(GatewayTransportError) as exc:
        await managed_client(handler).create_payment_intent(1000, "usd")

    assert exc.value.message == "Missing client secret in response"
    assert exc.value.kind == "response"


@pytest.mark.asyncio
async def test_success_status_with_error_body_uses_the_error():
    def handler(request):
        return httpx.Response(200, json={"error": "Amount must be at least 50 cents"})

    with pytest.raises(GatewayTransportError) as exc:
        await managed_client(handler).create_payment_intent(10, "usd")

    assert exc.value.message == "Amount must be at least 50 cents"


@pytest.mark.asyncio
async def test_managed_transport_invokes_named_function():
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["auth"] = request.headers.get("Authorization")
        return httpx.Response(200, json={"clientSecret": "s", "paymentIntentId": "pi_2"})

    handle = await managed_client(handler).create_payment_intent(500, "eur")

    assert handle.payment_intent_id == "pi_2"
    assert seen["url"] == "https://functions.test/functions/v1/create-payment-intent"
    assert seen["auth"] == "Bearer anon-key"


@pytest.mark.asyncio
async def test_managed_transport_error_message_field():
    def handler(request):
        return httpx.Response(500, json={"message": "Function crashed"})

    with pytest.raises(GatewayTransportError) as exc:
        await managed_client(handler).create_payment_intent(500, "eur")

    assert exc.value.message == "Function crashed"


def test_gateway_client_is_built_once(fresh_gateway_client, monkeypatch):
    monkeypatch.setattr(config, "IS_DEVELOPMENT", True)

    first = get_gateway_client()
    second = get_gateway_client()

    assert first is second
    assert isinstance(first.transport, DevServerTransport)
    assert first.transport.timeout.read == config.PAYMENT_INTENT_TIMEOUT


def test_production_uses_managed_function(fresh_gateway_client, monkeypatch):
    monkeypatch.setattr(config, "IS_DEVELOPMENT", False)
    monkeypatch.setattr(config, "FUNCTIONS_URL", "https://functions.test")

    client = gateway.get_gateway_client()

    assert isinstance(client.transport, ManagedFunctionTransport)
    assert client.transport.name == config.PAYMENT_INTENT_FUNCTION


def test_production_without_functions_url_fails(fresh_gateway_client, monkeypatch):
    monkeypatch.setattr(config, "IS_DEVELOPMENT", False)
    monkeypatch.setattr(config, "FUNCTIONS_URL", "")

    with pytest.raises(RuntimeError):
        get_gateway_client()


@pytest.mark.asyncio
async def test_undecodable_response_is_a_network_error():
    def handler(request):
        return httpx.Response(200, headers={"Content-Encoding": "gzip"}, content=b"not gzip")

    with pytest.raises(GatewayTransportError) as exc:
        await dev_client(handler).create_payment_intent(1000, "usd")

    assert exc.value.kind == "network"


@pytest.mark.asyncio
async def test_redirect_loop_is_a_network_error(mocker):
    mocker.patch("httpx.AsyncClient.post", side_effect=httpx.TooManyRedirects("Exceeded maximum allowed redirects."))

    with pytest.raises(GatewayTransportError) as exc:
        await dev_client(lambda request: httpx.Response(200)).create_payment_intent(1000, "usd")

    assert exc.value.kind == "network"
    assert "redirects" in exc.value.message
