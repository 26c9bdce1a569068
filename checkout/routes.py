import logging
from typing import Optional

import stripe
from fastapi import APIRouter, Header
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from checkout.gateway import DEV_INTENT_PATH
from checkout.schemas import PaymentIntentRequest
from checkout.stripe_service import create_payment

router = APIRouter()
log = logging.getLogger(__name__)


@router.post(DEV_INTENT_PATH)
async def create_payment_intent_api(
    request: PaymentIntentRequest,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
):
    """
    Development endpoint behind the DevServerTransport.

    Responds with {clientSecret, paymentIntentId}, or {error} with 402 for card
    errors and 502 for any other Stripe failure.
    """
    try:
        intent = await run_in_threadpool(
            create_payment, request.amount, request.currency, idempotency_key, request.metadata
        )
    except stripe.CardError as e:
        log.warning(f"Payment intent declined: {e}")
        return JSONResponse(status_code=402, content={"error": e.user_message or str(e)})
    except stripe.StripeError as e:
        log.error(f"Stripe error while creating payment intent: {e}")
        return JSONResponse(status_code=502, content={"error": e.user_message or str(e)})

    log.info(f"Payment intent {intent.id} created for {request.amount} {request.currency}.")
    return {"clientSecret": intent.client_secret, "paymentIntentId": intent.id}


@router.get("/health")
def health_check():
    return {"status": "ok"}
