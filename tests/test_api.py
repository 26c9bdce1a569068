import pytest
import stripe
from fastapi.testclient import TestClient

from checkout.main import app as fastapi_app


@pytest.fixture
def client():
    with TestClient(fastapi_app) as c:
        yield c


def test_create_payment_intent_success(client, mocker):
    mock_intent = mocker.Mock()
    mock_intent.id = "pi_123"
    mock_intent.client_secret = "secret_123"
    create = mocker.patch("checkout.routes.create_payment", return_value=mock_intent)

    response = client.post(
        "/api/create-payment-intent",
        json={"amount": 5000, "currency": "EUR", "metadata": {"customer_id": "user-1"}},
        headers={"Idempotency-Key": "checkout-1"},
    )

    assert response.status_code == 200
    assert response.json() == {"clientSecret": "secret_123", "paymentIntentId": "pi_123"}
    create.assert_called_once_with(5000, "eur", "checkout-1", {"customer_id": "user-1"})


def test_create_payment_intent_card_error(client, mocker):
    mocker.patch(
        "checkout.routes.create_payment",
        side_effect=stripe.CardError("Your card was declined.", "card", "card_declined"),
    )

    response = client.post("/api/create-payment-intent", json={"amount": 5000, "currency": "usd"})

    assert response.status_code == 402
    assert response.json() == {"error": "Your card was declined."}


def test_create_payment_intent_stripe_unavailable(client, mocker):
    mocker.patch(
        "checkout.routes.create_payment",
        side_effect=stripe.APIConnectionError("Could not connect to Stripe"),
    )

    response = client.post("/api/create-payment-intent", json={"amount": 5000, "currency": "usd"})

    assert response.status_code == 502
    assert response.json() == {"error": "Could not connect to Stripe"}


def test_create_payment_intent_invalid_body(client, mocker):
    create = mocker.patch("checkout.routes.create_payment")

    response = client.post("/api/create-payment-intent", json={"amount": 5000})

    assert response.status_code == 400
    assert "currency" in response.json()["error"]
    create.assert_not_called()


def test_create_payment_forwards_to_stripe(mocker):
    from checkout.stripe_service import create_payment

    stripe_create = mocker.patch("stripe.PaymentIntent.create", return_value=mocker.Mock())

    create_payment(1050, "usd", "checkout-1", {"customer_id": "user-1"})

    stripe_create.assert_called_once_with(
        amount=1050,
        currency="usd",
        automatic_payment_methods={"enabled": True},
        metadata={"customer_id": "user-1"},
        idempotency_key="checkout-1",
    )


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}
