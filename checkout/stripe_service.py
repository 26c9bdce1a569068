import logging
from typing import Dict, Optional

import stripe
from fastapi.concurrency import run_in_threadpool

from checkout.config import STRIPE_SECRET_KEY
from checkout.errors import GatewayConfirmError
from checkout.schemas import ConfirmResult

stripe.api_key = STRIPE_SECRET_KEY

log = logging.getLogger(__name__)


def create_payment(amount: int, currency: str, idempotency_key: Optional[str] = None,
                   metadata: Optional[Dict[str, str]] = None):
    params = dict(
        amount=amount,
        currency=currency,
        automatic_payment_methods={"enabled": True},
        metadata=metadata or {},
    )
    if idempotency_key:
        params["idempotency_key"] = idempotency_key
    return stripe.PaymentIntent.create(**params)


def _stripe_message(e: stripe.StripeError) -> str:
    return e.user_message or str(e) or "Payment failed"


def confirm_payment(payment_intent_id: str, payment_token: str, billing_details: dict,
                    return_url: str) -> ConfirmResult:
    """
    Attach a card built from ``payment_token`` and ``billing_details`` to the
    intent and confirm it.

    Raises GatewayConfirmError when Stripe rejects either call.
    """
    try:
        payment_method = stripe.PaymentMethod.create(
            type="card",
            card={"token": payment_token},
            billing_details=billing_details,
        )
        intent = stripe.PaymentIntent.confirm(
            payment_intent_id,
            payment_method=payment_method.id,
            return_url=return_url,
        )
    except stripe.StripeError as e:
        log.warning(f"[Intent: {payment_intent_id}] Confirmation rejected by Stripe: {e}")
        raise GatewayConfirmError(_stripe_message(e)) from e

    error = None
    last_error = getattr(intent, "last_payment_error", None)
    if last_error:
        error = getattr(last_error, "message", None)
    return ConfirmResult(status=intent.status, error=error)


class StripeConfirmer:
    """Async confirmer used by the orchestrator; the Stripe SDK call runs in the threadpool."""

    async def confirm(self, payment_intent_id: str, payment_token: str, billing_details: dict,
                      return_url: str) -> ConfirmResult:
        return await run_in_threadpool(
            confirm_payment, payment_intent_id, payment_token, billing_details, return_url
        )
