"""Concurrency tests for the customer credit balance.

Each task runs in its own session on its own connection (``session_factory``
fixture), so the balance updates genuinely interleave.
"""

import asyncio
import uuid

import pytest
from fastapi import HTTPException
from services.referral_service.models import Commission, CreditRedemption
from services.referral_service.services.commission_ops import (
    get_credit_balance,
    record_customer_credit,
    redeem_credit,
)
from sqlalchemy import func, select
from tests.factories import CustomerFactory, OrderFactory


async def _seed(session_factory, *objects):
    async with session_factory() as db:
        db.add_all(objects)
        await db.commit()


@pytest.mark.asyncio
@pytest.mark.unit
async def test_concurrent_credits_are_all_applied(session_factory):
    """Five simultaneous credits for one referrer add up exactly."""
    referrer = CustomerFactory.create()
    orders = [OrderFactory.create(subtotal_amount=1000 * (i + 1)) for i in range(5)]
    await _seed(session_factory, referrer, *orders)

    async def credit(order):
        async with session_factory() as db:
            return await record_customer_credit(
                db,
                order_id=order.id,
                order_amount=order.subtotal_amount,
                referred_customer=order.customer_email,
                referring_customer_id=referrer.id,
            )

    results = await asyncio.gather(*(credit(order) for order in orders))

    assert all(r.balance_update_error is None for r in results)
    async with session_factory() as db:
        # 10% of 1000 + 2000 + 3000 + 4000 + 5000
        assert await get_credit_balance(db, referrer.id) == 1500


@pytest.mark.asyncio
@pytest.mark.unit
async def test_concurrent_replays_credit_once(session_factory):
    """Simultaneous deliveries of the same order produce one credit."""
    referrer = CustomerFactory.create()
    order = OrderFactory.create(subtotal_amount=8000)
    await _seed(session_factory, referrer, order)

    async def credit():
        async with session_factory() as db:
            return await record_customer_credit(
                db,
                order_id=order.id,
                order_amount=order.subtotal_amount,
                referred_customer=order.customer_email,
                referring_customer_id=referrer.id,
            )

    results = await asyncio.gather(*(credit() for _ in range(4)))

    assert len({r.commission.id for r in results}) == 1
    async with session_factory() as db:
        count = await db.execute(
            select(func.count(Commission.id)).where(Commission.order_id == order.id)
        )
        assert count.scalar_one() == 1
        assert await get_credit_balance(db, referrer.id) == 800


@pytest.mark.asyncio
@pytest.mark.unit
async def test_concurrent_redemptions_never_overdraw(session_factory):
    """Racing redemptions cannot spend more than the balance."""
    customer = CustomerFactory.create(current_credit_balance=1000)
    await _seed(session_factory, customer)

    async def redeem():
        async with session_factory() as db:
            try:
                redemption, _ = await redeem_credit(
                    db, customer_id=customer.id, order_id=uuid.uuid4(), amount=400
                )
                return redemption
            except HTTPException as exc:
                assert exc.status_code == 400
                return None

    results = await asyncio.gather(*(redeem() for _ in range(5)))

    succeeded = [r for r in results if r is not None]
    assert len(succeeded) == 2
    async with session_factory() as db:
        assert await get_credit_balance(db, customer.id) == 200
        total = await db.execute(select(func.sum(CreditRedemption.amount)))
        assert total.scalar_one() == 800
