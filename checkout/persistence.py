"""
Order persistence adapter.

Writes the order graph for a captured payment: the Order row first (its id is
needed by the rest), then the OrderItems and the PaymentRecord. The whole write
is keyed by payment_intent_id, so running it again for the same intent reuses
the existing Order and only fills in what is missing.
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from checkout.database import SessionLocal
from checkout.errors import PartialPersistenceError, PersistenceError
from checkout.models import Order, OrderItem, PaymentRecord

log = logging.getLogger(__name__)

ORDER_NUMBER_ATTEMPTS = 3


def generate_order_number() -> str:
    return f"ORD-{int(time.time() * 1000)}-{uuid.uuid4().hex[:6].upper()}"


@dataclass
class OrderDraft:
    user_id: str
    status: str
    total_amount: Decimal
    currency: str
    payment_intent_id: str
    shipping_address: Optional[dict] = None
    billing_address: Optional[dict] = None
    order_number: str = field(default_factory=generate_order_number)


@dataclass
class OrderItemDraft:
    product_id: str
    product_name: str
    quantity: int
    price: Decimal
    seller_id: Optional[str] = None


@dataclass
class PaymentRecordDraft:
    gateway_intent_id: str
    status: str
    amount: Decimal
    currency: str


@dataclass
class PersistedOrder:
    order_id: str
    order_number: str
    created: bool


class OrderPersistenceAdapter:
    def __init__(self, session_factory=None):
        self.session_factory = session_factory or SessionLocal

    def find_order(self, payment_intent_id: str) -> Optional[Order]:
        db = self.session_factory()
        try:
            return db.query(Order).filter_by(payment_intent_id=payment_intent_id).first()
        finally:
            db.close()

    def persist(self, order: OrderDraft, items: List[OrderItemDraft],
                payment: PaymentRecordDraft) -> PersistedOrder:
        """
        Write Order, then items and payment record, for one payment intent.

        Raises:
            PersistenceError: the Order row could not be written.
            PartialPersistenceError: the Order exists but items or the payment
                record could not be written.
        """
        intent_id = order.payment_intent_id
        log_prefix = f"[Intent: {intent_id}]"
        db = self.session_factory()
        try:
            try:
                row, created = self._get_or_create_order(db, order)
            except SQLAlchemyError as e:
                db.rollback()
                log.error(f"{log_prefix} Order write failed: {e}")
                raise PersistenceError(str(e), intent_id) from e

            order_id, order_number = row.id, row.order_number

            try:
                if db.query(OrderItem).filter_by(order_id=order_id).count() == 0:
                    db.add_all([
                        OrderItem(
                            order_id=order_id,
                            product_id=item.product_id,
                            product_name=item.product_name,
                            quantity=item.quantity,
                            price=item.price,
                            seller_id=item.seller_id,
                        )
                        for item in items
                    ])
                if db.query(PaymentRecord).filter_by(order_id=order_id).first() is None:
                    db.add(PaymentRecord(
                        order_id=order_id,
                        gateway_intent_id=payment.gateway_intent_id,
                        status=payment.status,
                        amount=payment.amount,
                        currency=payment.currency.lower(),
                    ))
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                log.critical(f"{log_prefix} Order {order_number} written but items/payment record failed: {e}")
                raise PartialPersistenceError(str(e), intent_id, order_id=order_id) from e
        finally:
            db.close()

        log.info(f"{log_prefix} Order {order_number} persisted (order_id={order_id}, new={created}).")
        return PersistedOrder(order_id=order_id, order_number=order_number, created=created)

    def _get_or_create_order(self, db, order: OrderDraft):
        intent_id = order.payment_intent_id
        for _ in range(ORDER_NUMBER_ATTEMPTS):
            existing = db.query(Order).filter_by(payment_intent_id=intent_id).first()
            if existing is not None:
                log.info(f"[Intent: {intent_id}] Order {existing.order_number} already exists, reusing it.")
                return existing, False
            try:
                return self._insert_order(db, order), True
            except IntegrityError:
                # either this intent was stored concurrently, or the order number is taken
                db.rollback()
                if db.query(Order).filter_by(payment_intent_id=intent_id).first() is None:
                    taken = order.order_number
                    order.order_number = generate_order_number()
                    log.warning(f"[Intent: {intent_id}] Order number {taken} taken, retrying as {order.order_number}.")
        raise PersistenceError("Could not allocate a unique order number", intent_id)

    def _insert_order(self, db, order: OrderDraft) -> Order:
        row = Order(
            user_id=order.user_id,
            order_number=order.order_number,
            status=order.status,
            total_amount=order.total_amount,
            currency=order.currency.upper(),
            shipping_address=order.shipping_address,
            billing_address=order.billing_address,
            payment_intent_id=order.payment_intent_id,
        )
        db.add(row)
        db.commit()
        db.refresh(row)
        return row
