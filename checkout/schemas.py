"""
schemas.py: Data models for a checkout attempt.

Pydantic models for what the caller hands to the orchestrator and for the
payloads exchanged with the payment gateway.

Models:
    - Money: a display amount with its ISO 4217 currency.
    - Address: a postal address, used for shipping and billing.
    - CheckoutItem: one cart line.
    - CheckoutContext: everything one checkout attempt is built from.
    - PaymentIntentRequest: body of the intent-creation call (both transports).
    - PaymentIntentHandle: id + client secret returned by intent creation.
    - ConfirmResult: outcome of the gateway confirmation call.
"""

from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


class IntentStatus(str, Enum):
    REQUIRES_PAYMENT_METHOD = "requires_payment_method"
    REQUIRES_CONFIRMATION = "requires_confirmation"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    REQUIRES_ACTION = "requires_action"
    CANCELED = "canceled"


# confirmation outcomes that lead to an order being written
PAYABLE_STATUSES = frozenset({IntentStatus.SUCCEEDED.value, IntentStatus.PROCESSING.value})


class Money(BaseModel):
    """
    Attributes:
        amount (Decimal): Display-level amount, e.g. 10.50.
        currency (str): ISO 4217 code, upper-cased on construction.
    """
    amount: Decimal
    currency: str = Field(..., min_length=3, max_length=3)

    @field_validator("currency")
    @classmethod
    def _normalize_currency(cls, v: str) -> str:
        return v.strip().upper()


class Address(BaseModel):
    street: str = ""
    city: str = ""
    state: str = ""
    postal_code: str = ""
    country: str = ""


class CheckoutItem(BaseModel):
    """
    Attributes:
        product_id (str): Catalogue identifier of the product.
        product_name (str): Name shown on the order.
        quantity (int): Units ordered. Must be greater than zero.
        price (Decimal): Unit price in the checkout currency.
        seller_id (str, optional): Seller fulfilling the line.
    """
    product_id: str
    product_name: str
    quantity: int = Field(..., gt=0)
    price: Decimal = Field(..., ge=0)
    seller_id: Optional[str] = None


class CheckoutContext(BaseModel):
    """
    Represents one checkout attempt as supplied by the cart and identity services.

    Read-only for the orchestrator, apart from the billing address which may be
    overridden at confirmation time.
    """
    items: List[CheckoutItem]
    total_amount: Money
    customer_id: str
    customer_email: str
    customer_name: str = ""
    shipping_address: Address
    billing_address: Optional[Address] = None


class PaymentIntentRequest(BaseModel):
    amount: int = Field(..., ge=0)
    currency: str = Field(..., min_length=3, max_length=3)
    metadata: Optional[Dict[str, str]] = None

    @field_validator("currency")
    @classmethod
    def _lower_currency(cls, v: str) -> str:
        return v.strip().lower()


class PaymentIntentHandle(BaseModel):
    payment_intent_id: str
    client_secret: str


class ConfirmResult(BaseModel):
    status: Optional[str] = None
    error: Optional[str] = None

    @property
    def payable(self) -> bool:
        return self.error is None and self.status in PAYABLE_STATUSES
