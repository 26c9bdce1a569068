import uuid

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, Numeric, String, func
from sqlalchemy.orm import relationship

from checkout.database import Base


def _uuid():
    return str(uuid.uuid4())


class Order(Base):
    __tablename__ = "orders"

    id = Column(String, primary_key=True, default=_uuid)
    user_id = Column(String, nullable=False, index=True)
    order_number = Column(String, unique=True, nullable=False)
    status = Column(String, nullable=False)                  # pending | processing | ... (fulfillment)
    total_amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=False)
    shipping_address = Column(JSON)
    billing_address = Column(JSON)
    payment_intent_id = Column(String, unique=True, nullable=False, index=True)  # idempotency key
    created_at = Column(DateTime, server_default=func.now())

    items = relationship("OrderItem", back_populates="order")
    payment = relationship("PaymentRecord", back_populates="order", uselist=False)


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(String, ForeignKey("orders.id"), nullable=False, index=True)
    product_id = Column(String, nullable=False)
    product_name = Column(String, nullable=False)
    quantity = Column(Integer, nullable=False)
    price = Column(Numeric(12, 2), nullable=False)
    seller_id = Column(String)

    order = relationship("Order", back_populates="items")


class PaymentRecord(Base):
    __tablename__ = "payment_records"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(String, ForeignKey("orders.id"), unique=True, nullable=False)
    gateway_intent_id = Column(String, unique=True, nullable=False)   # Stripe PaymentIntent ID
    status = Column(String, nullable=False)                           # gateway status at write time
    amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=False)                      # lowercase
    created_at = Column(DateTime, server_default=func.now())

    order = relationship("Order", back_populates="payment")
