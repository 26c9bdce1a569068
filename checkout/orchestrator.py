"""
orchestrator.py: State machine for a single checkout attempt.

A CheckoutOrchestrator drives one attempt through:

    idle -> initializing -> ready -> confirming -> persisting -> succeeded
                 |                       |             |
                 +-----------------------+-------------+--> failed

1. start(): normalize the total to minor units and create a PaymentIntent.
2. submit(): the user confirms; billing details go to the gateway.
3. On a succeeded/processing confirmation, write Order, OrderItems and the
   PaymentRecord through the persistence adapter.

The state only changes through _fire(), which looks the (state, event) pair
up in TRANSITIONS. succeeded and failed are terminal for the attempt; a new
attempt needs a new orchestrator and a new intent. The single exception is
retry_persistence(), which re-runs the persisting phase after a captured
payment could not be saved. It never confirms again.

Listeners registered with add_listener() are called synchronously on every
transition with (previous_state, new_state, orchestrator).
"""

import logging
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Tuple

from fastapi.concurrency import run_in_threadpool

from checkout.amounts import from_minor_units, to_minor_units
from checkout.config import CHECKOUT_RETURN_URL
from checkout.errors import (
    CheckoutError,
    CheckoutStateError,
    GatewayConfirmError,
    GatewayTransportError,
    PartialPersistenceError,
    PersistenceError,
    ValidationError,
)
from checkout.gateway import get_gateway_client
from checkout.persistence import (
    OrderDraft,
    OrderItemDraft,
    OrderPersistenceAdapter,
    PaymentRecordDraft,
    PersistedOrder,
)
from checkout.schemas import PAYABLE_STATUSES, Address, CheckoutContext, IntentStatus, PaymentIntentHandle
from checkout.stripe_service import StripeConfirmer

log = logging.getLogger(__name__)


class CheckoutState(str, Enum):
    IDLE = "idle"
    INITIALIZING = "initializing"
    READY = "ready"
    CONFIRMING = "confirming"
    PERSISTING = "persisting"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class CheckoutEvent(str, Enum):
    START = "start"
    INTENT_CREATED = "intent_created"
    INTENT_FAILED = "intent_failed"
    SUBMIT = "submit"
    PAYMENT_CONFIRMED = "payment_confirmed"
    CONFIRM_FAILED = "confirm_failed"
    ORDER_PERSISTED = "order_persisted"
    PERSIST_FAILED = "persist_failed"
    RETRY_PERSISTENCE = "retry_persistence"


S, E = CheckoutState, CheckoutEvent

TRANSITIONS = {
    (S.IDLE, E.START): S.INITIALIZING,
    (S.INITIALIZING, E.INTENT_CREATED): S.READY,
    (S.INITIALIZING, E.INTENT_FAILED): S.FAILED,
    (S.READY, E.SUBMIT): S.CONFIRMING,
    (S.CONFIRMING, E.PAYMENT_CONFIRMED): S.PERSISTING,
    (S.CONFIRMING, E.CONFIRM_FAILED): S.FAILED,
    (S.PERSISTING, E.ORDER_PERSISTED): S.SUCCEEDED,
    (S.PERSISTING, E.PERSIST_FAILED): S.FAILED,
    # only allowed once the payment is captured, see retry_persistence()
    (S.FAILED, E.RETRY_PERSISTENCE): S.PERSISTING,
}

Listener = Callable[[CheckoutState, CheckoutState, "CheckoutOrchestrator"], None]


@dataclass
class CheckoutResult:
    state: CheckoutState
    payment_intent_id: Optional[str] = None
    order_id: Optional[str] = None
    order_number: Optional[str] = None
    error: Optional[CheckoutError] = None

    @property
    def succeeded(self) -> bool:
        return self.state is CheckoutState.SUCCEEDED

    @property
    def message(self) -> Optional[str]:
        return self.error.user_message if self.error else None


class CheckoutOrchestrator:
    """
    Drives one checkout attempt.

    Args:
        context (CheckoutContext): Items, totals and customer/shipping data for the attempt.
        gateway: Object with ``async create_payment_intent(...)``; defaults to the
            process-wide client from ``get_gateway_client()``.
        confirmer: Object with ``async confirm(payment_intent_id, payment_token,
            billing_details, return_url) -> ConfirmResult``; defaults to Stripe.
        persistence (OrderPersistenceAdapter): Writes the order graph.
        return_url (str): Where the gateway sends the customer after an
            out-of-band authentication step.
    """

    def __init__(self, context: CheckoutContext, gateway=None, confirmer=None,
                 persistence: Optional[OrderPersistenceAdapter] = None,
                 return_url: str = CHECKOUT_RETURN_URL):
        self.context = context
        self.gateway = gateway
        self.confirmer = confirmer or StripeConfirmer()
        self.persistence = persistence or OrderPersistenceAdapter()
        self.return_url = return_url

        self.attempt_id = uuid.uuid4().hex
        self.state = CheckoutState.IDLE
        self.history: List[Tuple[CheckoutState, CheckoutEvent, CheckoutState]] = []
        self.handle: Optional[PaymentIntentHandle] = None
        self.error: Optional[CheckoutError] = None
        self.payment_status: Optional[str] = None
        self.order: Optional[PersistedOrder] = None

        self._amount_minor: Optional[int] = None
        self._billing_address: Optional[Address] = None
        self._order_draft: Optional[OrderDraft] = None
        self._cancelled = False
        self._listeners: List[Listener] = []

    # --- state machine ---

    @property
    def log_prefix(self) -> str:
        return f"[Checkout: {self.attempt_id}]"

    @property
    def payment_intent_id(self) -> Optional[str]:
        return self.handle.payment_intent_id if self.handle else None

    @property
    def client_secret(self) -> Optional[str]:
        return self.handle.client_secret if self.handle else None

    @property
    def payment_captured(self) -> bool:
        return self.payment_status in PAYABLE_STATUSES

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def add_listener(self, listener: Listener):
        self._listeners.append(listener)

    def _fire(self, event: CheckoutEvent):
        key = (self.state, event)
        if key not in TRANSITIONS:
            raise CheckoutStateError(f"Event '{event.value}' is not allowed in state '{self.state.value}'")
        previous = self.state
        self.state = TRANSITIONS[key]
        self.history.append((previous, event, self.state))
        log.info(f"{self.log_prefix} {previous.value} -> {self.state.value} ({event.value})")
        for listener in list(self._listeners):
            try:
                listener(previous, self.state, self)
            except Exception:
                log.exception(f"{self.log_prefix} Transition listener failed")

    def result(self) -> CheckoutResult:
        return CheckoutResult(
            state=self.state,
            payment_intent_id=self.payment_intent_id,
            order_id=self.order.order_id if self.order else None,
            order_number=self.order.order_number if self.order else None,
            error=self.error,
        )

    def cancel(self):
        """Abandon the attempt. A pending intent result is discarded when it arrives."""
        if not self._cancelled:
            log.info(f"{self.log_prefix} Attempt cancelled in state {self.state.value}.")
        self._cancelled = True

    # --- phase 1: intent creation ---

    def _validate_context(self):
        ctx = self.context
        if not ctx.items:
            raise ValidationError("Cart is empty", field="items")
        if not ctx.customer_id:
            raise ValidationError("Customer is not signed in", field="customer_id")
        if not ctx.customer_email or "@" not in ctx.customer_email:
            raise ValidationError("A valid email address is required", field="customer_email")
        if to_minor_units(ctx.total_amount.amount, ctx.total_amount.currency) <= 0:
            raise ValidationError("Order total must be greater than zero", field="total_amount")

    async def start(self) -> CheckoutState:
        """
        Create the PaymentIntent for this attempt.

        Only the first call does anything; later calls (including concurrent
        ones while the intent request is in flight) return the current state.
        A context that fails validation leaves the attempt in ``idle`` with
        ``error`` set and nothing sent to the gateway.
        """
        if self.state is not CheckoutState.IDLE or self._cancelled:
            log.debug(f"{self.log_prefix} start() ignored in state {self.state.value}.")
            return self.state

        try:
            self._validate_context()
        except ValidationError as e:
            log.warning(f"{self.log_prefix} Checkout context rejected: {e.message}")
            self.error = e
            return self.state

        total = self.context.total_amount
        self._amount_minor = to_minor_units(total.amount, total.currency)
        gateway = self.gateway or get_gateway_client()
        metadata = {
            "customer_id": self.context.customer_id,
            "customer_email": self.context.customer_email,
            "item_count": len(self.context.items),
        }

        self.error = None
        self._fire(CheckoutEvent.START)
        log.info(f"{self.log_prefix} Creating payment intent for {self._amount_minor} {total.currency.lower()}.")
        try:
            handle = await gateway.create_payment_intent(
                self._amount_minor,
                total.currency.lower(),
                metadata=metadata,
                idempotency_key=f"checkout-{self.attempt_id}",
            )
        except GatewayTransportError as e:
            return self._intent_failed(e)
        except Exception as e:
            log.exception(f"{self.log_prefix} Unexpected error while creating payment intent")
            return self._intent_failed(GatewayTransportError(f"Failed to create payment intent: {e}", kind="response"))

        if self._cancelled:
            log.info(f"{self.log_prefix} Intent {handle.payment_intent_id} resolved after cancellation, discarded.")
            return self.state

        self.handle = handle
        self._fire(CheckoutEvent.INTENT_CREATED)
        return self.state

    def _intent_failed(self, error: GatewayTransportError) -> CheckoutState:
        if self._cancelled:
            log.info(f"{self.log_prefix} Intent creation failed after cancellation, discarded: {error.message}")
            return self.state
        log.error(f"{self.log_prefix} Intent creation failed ({error.kind}): {error.message}")
        self.error = error
        self._fire(CheckoutEvent.INTENT_FAILED)
        return self.state

    # --- phase 2: confirmation ---

    def _billing_details(self, billing: Address) -> dict:
        return {
            "name": self.context.customer_name,
            "email": self.context.customer_email,
            "address": {
                "line1": billing.street,
                "city": billing.city,
                "state": billing.state,
                "postal_code": billing.postal_code,
                "country": billing.country,
            },
        }

    def _resolve_billing(self, same_as_shipping: bool, billing_address: Optional[Address]) -> Address:
        if same_as_shipping:
            return self.context.shipping_address
        billing = billing_address or self.context.billing_address
        if billing is None:
            raise ValidationError("Billing address is required", field="billing_address")
        return billing

    async def submit(self, payment_token: str, same_as_shipping: bool = True,
                     billing_address: Optional[Address] = None) -> CheckoutResult:
        """
        Confirm the payment and, if it goes through, persist the order.

        Before ``ready`` (no client secret yet) the call is a no-op, and while a
        confirmation or persistence is running further submits are rejected.
        Validation problems keep the attempt in ``ready`` so the user can fix
        them and submit again.
        """
        if self.state in (CheckoutState.CONFIRMING, CheckoutState.PERSISTING):
            log.warning(f"{self.log_prefix} Duplicate submit rejected while {self.state.value}.")
            return self.result()
        if self.state is not CheckoutState.READY or self.handle is None:
            log.warning(f"{self.log_prefix} submit() ignored: payment not initialized (state {self.state.value}).")
            return self.result()

        try:
            if not payment_token:
                raise ValidationError("Payment details are incomplete", field="payment_token")
            billing = self._resolve_billing(same_as_shipping, billing_address)
        except ValidationError as e:
            log.warning(f"{self.log_prefix} Submit rejected: {e.message}")
            self.error = e
            return self.result()

        self.error = None
        self._billing_address = billing
        self._fire(CheckoutEvent.SUBMIT)

        intent_id = self.handle.payment_intent_id
        try:
            confirmation = await self.confirmer.confirm(
                intent_id, payment_token, self._billing_details(billing), self.return_url
            )
        except GatewayConfirmError as e:
            return self._confirm_failed(e)
        except Exception as e:
            log.exception(f"{self.log_prefix} Unexpected error while confirming {intent_id}")
            return self._confirm_failed(GatewayConfirmError(f"Payment error: {e}"))

        if not confirmation.payable:
            message = confirmation.error or f"Payment status: {confirmation.status}"
            return self._confirm_failed(GatewayConfirmError(message, status=confirmation.status))

        self.payment_status = confirmation.status
        log.info(f"{self.log_prefix} Payment {intent_id} confirmed with status {confirmation.status}.")
        self._fire(CheckoutEvent.PAYMENT_CONFIRMED)
        return await self._persist()

    def _confirm_failed(self, error: GatewayConfirmError) -> CheckoutResult:
        log.warning(f"{self.log_prefix} Confirmation failed: {error.message}")
        self.error = error
        self._fire(CheckoutEvent.CONFIRM_FAILED)
        return self.result()

    # --- phase 3: persistence ---

    def _build_drafts(self):
        ctx = self.context
        currency = ctx.total_amount.currency
        if self._order_draft is None:
            self._order_draft = OrderDraft(
                user_id=ctx.customer_id,
                status="processing" if self.payment_status == IntentStatus.SUCCEEDED.value else "pending",
                total_amount=ctx.total_amount.amount,
                currency=currency,
                payment_intent_id=self.handle.payment_intent_id,
                shipping_address=ctx.shipping_address.model_dump(),
                billing_address=self._billing_address.model_dump() if self._billing_address else None,
            )
        items = [
            OrderItemDraft(
                product_id=item.product_id,
                product_name=item.product_name,
                quantity=item.quantity,
                price=item.price,
                seller_id=item.seller_id,
            )
            for item in ctx.items
        ]
        payment = PaymentRecordDraft(
            gateway_intent_id=self.handle.payment_intent_id,
            status=self.payment_status,
            amount=from_minor_units(self._amount_minor, currency),
            currency=currency.lower(),
        )
        return self._order_draft, items, payment

    async def _persist(self) -> CheckoutResult:
        intent_id = self.handle.payment_intent_id
        order, items, payment = self._build_drafts()
        try:
            persisted = await run_in_threadpool(self.persistence.persist, order, items, payment)
        except Exception as e:
            if isinstance(e, PartialPersistenceError):
                error = e
            else:
                message = e.message if isinstance(e, PersistenceError) else str(e)
                error = PartialPersistenceError(message, intent_id)
                error.__cause__ = e
            log.critical(
                f"{self.log_prefix} PAYMENT CAPTURED BUT ORDER NOT SAVED for intent {intent_id}: {error.message}"
            )
            self.error = error
            self._fire(CheckoutEvent.PERSIST_FAILED)
            return self.result()

        self.order = persisted
        self._fire(CheckoutEvent.ORDER_PERSISTED)
        return self.result()

    async def retry_persistence(self) -> CheckoutResult:
        """Re-run the persisting phase for an attempt whose payment was captured but not saved."""
        if self.state is not CheckoutState.FAILED or not self.payment_captured:
            log.warning(f"{self.log_prefix} retry_persistence() rejected in state {self.state.value}.")
            return self.result()
        log.info(f"{self.log_prefix} Retrying persistence for intent {self.payment_intent_id}.")
        self.error = None
        self._fire(CheckoutEvent.RETRY_PERSISTENCE)
        return await self._persist()
