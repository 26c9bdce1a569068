"""
Error taxonomy for a checkout attempt.

Every error keeps the gateway or storage text that triggered it in ``message``
and exposes a ``user_message`` that is safe to show at checkout.
"""
from typing import Optional


class CheckoutError(Exception):
    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    @property
    def user_message(self) -> str:
        return self.message


class ValidationError(CheckoutError):
    """Client-side field problem caught before anything is sent to the gateway."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class GatewayTransportError(CheckoutError):
    """
    Intent creation failed: network failure, timeout, non-success status,
    or a success response without a client secret.

    kind is one of "network", "http" or "response".
    """

    def __init__(self, message: str, kind: str = "http"):
        super().__init__(message)
        self.kind = kind


class GatewayConfirmError(CheckoutError):
    """Confirmation raised, or ended in a status other than succeeded/processing."""

    def __init__(self, message: str, status: Optional[str] = None):
        super().__init__(message)
        self.status = status


class PersistenceError(CheckoutError):
    """The Order row could not be written."""

    def __init__(self, message: str, payment_intent_id: str, order_id: Optional[str] = None):
        super().__init__(message)
        self.payment_intent_id = payment_intent_id
        self.order_id = order_id

    @property
    def user_message(self) -> str:
        # funds have already moved at this point
        return (
            "Your payment was received but we could not save your order. "
            f"Please contact support and quote payment reference {self.payment_intent_id}."
        )


class PartialPersistenceError(PersistenceError):
    """Payment captured, order graph incomplete (order_id is None if no Order row exists)."""

    @property
    def user_message(self) -> str:
        return (
            "Your payment was received and your order is being finalised. "
            f"If it does not appear shortly, contact support with payment reference {self.payment_intent_id}."
        )


class CheckoutStateError(RuntimeError):
    """An event arrived that the current checkout state cannot accept."""
