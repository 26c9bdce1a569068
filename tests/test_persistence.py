from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker

from checkout.database import Base
from checkout.errors import PartialPersistenceError, PersistenceError
from checkout.models import Order, OrderItem, PaymentRecord
from checkout.persistence import (
    OrderDraft,
    OrderItemDraft,
    OrderPersistenceAdapter,
    PaymentRecordDraft,
)

SQLALCHEMY_DATABASE_URL = "sqlite:///./test_persistence.db"
engine = create_engine(SQLALCHEMY_DATABASE_URL, connect_args={
                       "check_same_thread": False})
TestingSessionLocal = sessionmaker(
    autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(autouse=True)
def setup_db():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def adapter():
    return OrderPersistenceAdapter(session_factory=TestingSessionLocal)


def make_drafts(intent_id="pi_test_1"):
    order = OrderDraft(
        user_id="user-1",
        status="processing",
        total_amount=Decimal("99.99"),
        currency="USD",
        payment_intent_id=intent_id,
        shipping_address={"street": "1 Main St", "city": "Springfield"},
    )
    items = [
        OrderItemDraft(product_id="p1", product_name="Mug", quantity=1, price=Decimal("19.99")),
        OrderItemDraft(product_id="p2", product_name="Lamp", quantity=2, price=Decimal("40.00"), seller_id="s9"),
    ]
    payment = PaymentRecordDraft(
        gateway_intent_id=intent_id, status="succeeded", amount=Decimal("99.99"), currency="USD"
    )
    return order, items, payment


def count(model):
    db = TestingSessionLocal()
    try:
        return db.query(model).count()
    finally:
        db.close()


def test_persist_writes_order_items_and_payment(adapter):
    result = adapter.persist(*make_drafts())

    assert result.created is True
    assert result.order_number.startswith("ORD-")

    db = TestingSessionLocal()
    order = db.query(Order).filter_by(payment_intent_id="pi_test_1").one()
    assert order.id == result.order_id
    assert order.total_amount == Decimal("99.99")
    assert order.currency == "USD"
    assert order.shipping_address["city"] == "Springfield"
    assert [i.product_id for i in order.items] == ["p1", "p2"]
    assert order.payment.currency == "usd"
    assert order.payment.amount == Decimal("99.99")
    db.close()


def test_persist_twice_for_same_intent_does_not_duplicate(adapter):
    first = adapter.persist(*make_drafts())
    second = adapter.persist(*make_drafts())

    assert second.created is False
    assert second.order_id == first.order_id
    assert count(Order) == 1
    assert count(OrderItem) == 2
    assert count(PaymentRecord) == 1


def test_find_order(adapter):
    assert adapter.find_order("pi_test_1") is None
    adapter.persist(*make_drafts())
    assert adapter.find_order("pi_test_1").order_number.startswith("ORD-")


def test_order_write_failure_raises_persistence_error(adapter, mocker):
    mocker.patch.object(adapter, "_insert_order", side_effect=OperationalError("INSERT", {}, Exception("db down")))

    with pytest.raises(PersistenceError) as exc:
        adapter.persist(*make_drafts())

    assert not isinstance(exc.value, PartialPersistenceError)
    assert exc.value.payment_intent_id == "pi_test_1"
    assert exc.value.order_id is None
    assert count(Order) == 0
    assert count(OrderItem) == 0


def test_item_write_failure_keeps_order_and_raises_partial(adapter):
    order, items, payment = make_drafts()
    items[1].quantity = None  # NOT NULL violation on order_items

    with pytest.raises(PartialPersistenceError) as exc:
        adapter.persist(order, items, payment)

    assert exc.value.order_id is not None
    assert "pi_test_1" in exc.value.user_message
    assert count(Order) == 1
    assert count(OrderItem) == 0
    assert count(PaymentRecord) == 0

    # a later retry completes the same order
    order, items, payment = make_drafts()
    result = adapter.persist(order, items, payment)
    assert result.order_id == exc.value.order_id
    assert count(Order) == 1
    assert count(OrderItem) == 2
    assert count(PaymentRecord) == 1


def test_orders_persisted_in_the_same_millisecond_get_distinct_numbers(adapter, mocker):
    mocker.patch("checkout.persistence.time.time", return_value=1760000000.5)

    first = adapter.persist(*make_drafts("pi_A"))
    second = adapter.persist(*make_drafts("pi_B"))

    assert first.order_number != second.order_number
    assert first.order_number.startswith("ORD-1760000000500-")
    assert count(Order) == 2
    assert count(PaymentRecord) == 2


def test_taken_order_number_is_replaced_instead_of_failing(adapter):
    order_a, items_a, payment_a = make_drafts("pi_A")
    order_b, items_b, payment_b = make_drafts("pi_B")
    order_a.order_number = order_b.order_number = "ORD-1"

    adapter.persist(order_a, items_a, payment_a)
    second = adapter.persist(order_b, items_b, payment_b)

    assert second.created is True
    assert second.order_number != "ORD-1"
    assert order_b.order_number == second.order_number
    assert count(Order) == 2
    assert count(OrderItem) == 4
