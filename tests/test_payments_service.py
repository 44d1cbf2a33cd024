"""Stripe session crediting against the test MongoDB (skipped when it is not reachable)."""

import asyncio
import random
from decimal import Decimal

import pytest
from beanie import PydanticObjectId

from app.core.exceptions import BadRequestError
from app.models.checkout_order import CheckoutOrder
from app.models.chip_product import ChipProduct
from app.models.payment_transaction import PaymentTransaction
from app.models.user import User
from app.services import credits as credits_service
from app.services import payments as payments_service
from app.services.stripe_gateway import CheckoutSessionInfo

pytestmark = pytest.mark.asyncio


async def _paid_session(with_order: bool = True):
    user = User(email=f"{PydanticObjectId()}@example.com", name="Buyer", role="user")
    await user.insert()
    product = ChipProduct(product_id=random.randint(10**6, 10**9), name="Starter", price_in_cents=500, chips=500)
    await product.insert()
    session_id = f"cs_test_{PydanticObjectId()}"
    if with_order:
        await CheckoutOrder(
            session_id=session_id, user=user, product_id=product.product_id, amount_cents=500
        ).insert()
    info = CheckoutSessionInfo(
        id=session_id,
        payment_status="paid",
        amount_total=500,
        user_id=str(user.id),
        product_id=product.product_id,
    )
    return user, info


async def test_credit_paid_session_once(mongo):
    user, info = await _paid_session()

    tx = await payments_service.credit_paid_session(info)
    again = await payments_service.credit_paid_session(info)

    assert tx is not None
    assert again is None
    assert await credits_service.get_balance(user.id) == Decimal("500")
    order = await CheckoutOrder.find_one(CheckoutOrder.session_id == info.id)
    assert order.status == "paid"


async def test_webhook_and_return_url_race_credit_once(mongo):
    user, info = await _paid_session()

    results = await asyncio.gather(
        payments_service.credit_paid_session(info),
        payments_service.credit_paid_session(info.model_copy()),
    )

    assert sum(r is not None for r in results) == 1
    assert await credits_service.get_balance(user.id) == Decimal("500")
    key = f"stripe_checkout:{info.id}"
    assert await PaymentTransaction.find(PaymentTransaction.idempotency_key == key).count() == 1


async def test_race_without_order_credits_once(mongo):
    user, info = await _paid_session(with_order=False)

    await asyncio.gather(
        payments_service.credit_paid_session(info),
        payments_service.credit_paid_session(info.model_copy()),
    )

    assert await credits_service.get_balance(user.id) == Decimal("500")


async def test_failed_credit_reopens_order(mongo, monkeypatch):
    user, info = await _paid_session()

    async def broken(*args, **kwargs):
        raise RuntimeError("ledger unavailable")

    monkeypatch.setattr(credits_service, "apply_transaction", broken)
    with pytest.raises(RuntimeError):
        await payments_service.credit_paid_session(info)
    order = await CheckoutOrder.find_one(CheckoutOrder.session_id == info.id)
    assert order.status == "open"

    monkeypatch.undo()
    assert await payments_service.credit_paid_session(info) is not None
    assert await credits_service.get_balance(user.id) == Decimal("500")


async def test_unpaid_session_rejected(mongo):
    _, info = await _paid_session()
    info.payment_status = "unpaid"
    with pytest.raises(BadRequestError):
        await payments_service.credit_paid_session(info)
