"""Unit tests for commission_ops core business logic.

Tests call commission_ops functions directly with the db_session fixture.
No HTTP layer involved.
"""

import uuid
from decimal import Decimal

import pytest
from fastapi import HTTPException
from services.referral_service.models import (
    Commission,
    CommissionStatus,
    CommissionType,
    Customer,
    OrderStatus,
    RecipientType,
    ReferralType,
)
from services.referral_service.services import commission_ops
from services.referral_service.services.commission_ops import (
    calculate_commission_amount,
    calculate_discount_amount,
    get_credit_balance,
    process_completed_order,
    record_customer_credit,
    record_partner_commission,
    redeem_credit,
    update_commission_status,
)
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError
from tests.factories import (
    CommissionFactory,
    CustomerCreditFactory,
    CustomerFactory,
    InfluencerFactory,
    OrderFactory,
    PartnerFactory,
    ReferralCodeFactory,
    days_from_now,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def _make_customer(db, balance=0, **overrides):
    customer = CustomerFactory.create(current_credit_balance=balance, **overrides)
    db.add(customer)
    await db.commit()
    return customer


async def _make_order(db, **overrides):
    order = OrderFactory.create(**overrides)
    db.add(order)
    await db.commit()
    return order


async def _commission_count(db, order_id) -> int:
    result = await db.execute(
        select(func.count(Commission.id)).where(Commission.order_id == order_id)
    )
    return result.scalar_one()


# ---------------------------------------------------------------------------
# Amounts
# ---------------------------------------------------------------------------


@pytest.mark.unit
def test_commission_amount_rounds_half_up():
    """round(order_amount * rate / 100) with half-up rounding."""
    assert calculate_commission_amount(10000, Decimal("10.00")) == 1000
    assert calculate_commission_amount(1005, Decimal("10.00")) == 101
    assert calculate_commission_amount(0, Decimal("10.00")) == 0


@pytest.mark.unit
def test_discount_amount_rounds_half_up():
    """Discounts use the same half-up rounding on the subtotal."""
    assert calculate_discount_amount(4599, Decimal("10.00")) == 460
    assert calculate_discount_amount(4594, Decimal("10.00")) == 459


# ---------------------------------------------------------------------------
# record_partner_commission
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_partner_commission_is_pending(db_session):
    """Partner commissions wait for payout review."""
    order = await _make_order(db_session)

    commission, created = await record_partner_commission(
        db_session,
        order_id=order.id,
        order_amount=10000,
        partner_id=uuid.uuid4(),
        partner_email="partner@example.com",
        commission_rate=Decimal("12.50"),
    )

    assert created is True
    assert commission.status == CommissionStatus.PENDING
    assert commission.commission_type == CommissionType.PARTNER_COMMISSION
    assert commission.commission_amount == 1250
    assert commission.commission_rate == Decimal("12.50")


@pytest.mark.asyncio
@pytest.mark.unit
async def test_partner_commission_replay_is_idempotent(db_session):
    """A replay returns the stored row, ignoring any new rate."""
    order = await _make_order(db_session)
    partner_id = uuid.uuid4()

    first, created_first = await record_partner_commission(
        db_session,
        order_id=order.id,
        order_amount=10000,
        partner_id=partner_id,
        partner_email=None,
        commission_rate=Decimal("10.00"),
    )
    second, created_second = await record_partner_commission(
        db_session,
        order_id=order.id,
        order_amount=10000,
        partner_id=partner_id,
        partner_email=None,
        commission_rate=Decimal("20.00"),
    )

    assert created_first is True
    assert created_second is False
    assert second.id == first.id
    assert second.commission_amount == 1000
    assert await _commission_count(db_session, order.id) == 1


# ---------------------------------------------------------------------------
# record_customer_credit
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_customer_credit_is_approved_and_credited(db_session):
    """Customer credits are auto-approved and added to the referrer's balance."""
    referrer = await _make_customer(db_session, balance=250)
    order = await _make_order(db_session, subtotal_amount=4500)

    result = await record_customer_credit(
        db_session,
        order_id=order.id,
        order_amount=4500,
        referred_customer="friend@example.com",
        referring_customer_id=referrer.id,
    )

    assert result.created is True
    assert result.balance_update_error is None
    assert result.commission.status == CommissionStatus.APPROVED
    assert result.commission.commission_amount == 450
    assert result.commission.balance_credited is True
    assert result.commission.commission_metadata["source_customer"] == "friend@example.com"
    assert result.new_balance == 700


@pytest.mark.asyncio
@pytest.mark.unit
async def test_customer_credit_replay_does_not_double_credit(db_session):
    """Replaying the same order leaves the balance where it was."""
    referrer = await _make_customer(db_session)
    order = await _make_order(db_session)

    first = await record_customer_credit(
        db_session,
        order_id=order.id,
        order_amount=10000,
        referred_customer="friend@example.com",
        referring_customer_id=referrer.id,
    )
    second = await record_customer_credit(
        db_session,
        order_id=order.id,
        order_amount=10000,
        referred_customer="friend@example.com",
        referring_customer_id=referrer.id,
    )

    assert second.created is False
    assert second.commission.id == first.commission.id
    assert second.new_balance == 1000
    assert await get_credit_balance(db_session, referrer.id) == 1000


@pytest.mark.asyncio
@pytest.mark.unit
async def test_customer_credit_unknown_referrer(db_session):
    """A missing referring customer is a 404, and nothing is recorded."""
    order = await _make_order(db_session)

    with pytest.raises(HTTPException) as exc_info:
        await record_customer_credit(
            db_session,
            order_id=order.id,
            order_amount=10000,
            referred_customer="friend@example.com",
            referring_customer_id=uuid.uuid4(),
        )

    assert exc_info.value.status_code == 404
    assert await _commission_count(db_session, order.id) == 0


@pytest.mark.asyncio
@pytest.mark.unit
async def test_balance_failure_keeps_record_and_reports_error(db_session, monkeypatch):
    """A failed balance update keeps the credit row; a replay finishes the job."""
    referrer = await _make_customer(db_session)
    order = await _make_order(db_session)
    # A failed update rolls back, which expires loaded instances
    referrer_id = referrer.id
    order_id = order.id

    real_update = commission_ops.update

    def failing_update(*args, **kwargs):
        raise OperationalError("UPDATE customers", {}, Exception("database is locked"))

    monkeypatch.setattr(commission_ops, "update", failing_update)
    result = await record_customer_credit(
        db_session,
        order_id=order_id,
        order_amount=10000,
        referred_customer="friend@example.com",
        referring_customer_id=referrer_id,
    )

    assert result.balance_update_error is not None
    assert "database is locked" in result.balance_update_error
    assert result.new_balance is None
    assert result.commission.balance_credited is False
    assert await _commission_count(db_session, order_id) == 1
    assert await get_credit_balance(db_session, referrer_id) == 0

    monkeypatch.setattr(commission_ops, "update", real_update)
    retry = await record_customer_credit(
        db_session,
        order_id=order_id,
        order_amount=10000,
        referred_customer="friend@example.com",
        referring_customer_id=referrer_id,
    )

    assert retry.created is False
    assert retry.balance_update_error is None
    assert retry.new_balance == 1000
    assert retry.commission.balance_credited is True


# ---------------------------------------------------------------------------
# redeem_credit
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_redeem_credit_decrements_balance(db_session):
    """Redemption writes a ledger row with before/after balances."""
    customer = await _make_customer(db_session, balance=1000)
    db_session.add(CustomerCreditFactory.create(recipient_id=customer.id))
    await db_session.commit()
    order_id = uuid.uuid4()

    redemption, created = await redeem_credit(
        db_session, customer_id=customer.id, order_id=order_id, amount=400
    )

    assert created is True
    assert redemption.balance_before == 1000
    assert redemption.balance_after == 600
    assert await get_credit_balance(db_session, customer.id) == 600


@pytest.mark.asyncio
@pytest.mark.unit
async def test_redeem_credit_never_goes_negative(db_session):
    """Asking for more than the balance fails and changes nothing."""
    customer = await _make_customer(db_session, balance=300)
    customer_id = customer.id

    with pytest.raises(HTTPException) as exc_info:
        await redeem_credit(
            db_session, customer_id=customer_id, order_id=uuid.uuid4(), amount=301
        )

    assert exc_info.value.status_code == 400
    assert "Insufficient" in exc_info.value.detail
    assert await get_credit_balance(db_session, customer_id) == 300


@pytest.mark.asyncio
@pytest.mark.unit
async def test_redeem_credit_rejects_non_positive_amount(db_session):
    """Zero is not a redemption."""
    customer = await _make_customer(db_session, balance=300)

    with pytest.raises(HTTPException) as exc_info:
        await redeem_credit(
            db_session, customer_id=customer.id, order_id=uuid.uuid4(), amount=0
        )

    assert exc_info.value.status_code == 400


@pytest.mark.asyncio
@pytest.mark.unit
async def test_redeem_credit_is_idempotent_per_order(db_session):
    """A second redemption for the same order returns the first."""
    customer = await _make_customer(db_session, balance=1000)
    order_id = uuid.uuid4()

    first, _ = await redeem_credit(
        db_session, customer_id=customer.id, order_id=order_id, amount=500
    )
    second, created = await redeem_credit(
        db_session, customer_id=customer.id, order_id=order_id, amount=500
    )

    assert created is False
    assert second.id == first.id
    assert await get_credit_balance(db_session, customer.id) == 500


@pytest.mark.asyncio
@pytest.mark.unit
async def test_redeem_marks_oldest_credits_first(db_session):
    """Credits are consumed oldest-first; partial use is tracked in metadata."""
    customer = await _make_customer(db_session, balance=1000)
    older = CustomerCreditFactory.create(
        recipient_id=customer.id,
        commission_amount=500,
        created_at=days_from_now(-2),
    )
    newer = CustomerCreditFactory.create(recipient_id=customer.id, commission_amount=500)
    db_session.add_all([older, newer])
    await db_session.commit()
    order_id = uuid.uuid4()

    await redeem_credit(
        db_session, customer_id=customer.id, order_id=order_id, amount=700
    )

    await db_session.refresh(older)
    await db_session.refresh(newer)
    assert older.status == CommissionStatus.REDEEMED
    assert older.commission_metadata["redeemed_amount"] == 500
    assert "redeemed_at" in older.commission_metadata
    assert newer.status == CommissionStatus.APPROVED
    assert newer.commission_metadata["redeemed_amount"] == 200
    assert newer.commission_metadata["redemption_order_ids"] == [str(order_id)]


# ---------------------------------------------------------------------------
# update_commission_status
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_status_moves_pending_to_approved_to_paid(db_session):
    """The payout path records each move in status_history."""
    commission = CommissionFactory.create()
    db_session.add(commission)
    await db_session.commit()

    await update_commission_status(
        db_session, commission.id, CommissionStatus.APPROVED, changed_by="auth-admin"
    )
    paid = await update_commission_status(
        db_session, commission.id, CommissionStatus.PAID, note="BACS run 12"
    )

    assert paid.status == CommissionStatus.PAID
    history = paid.commission_metadata["status_history"]
    assert [h["to"] for h in history] == ["approved", "paid"]
    assert history[0]["by"] == "auth-admin"
    assert history[1]["note"] == "BACS run 12"
    assert "paid_at" in paid.commission_metadata


@pytest.mark.asyncio
@pytest.mark.unit
async def test_status_rejects_backwards_move(db_session):
    """Paid commissions cannot go back to pending."""
    commission = CommissionFactory.create(status=CommissionStatus.PAID)
    db_session.add(commission)
    await db_session.commit()

    with pytest.raises(HTTPException) as exc_info:
        await update_commission_status(
            db_session, commission.id, CommissionStatus.PENDING
        )

    assert exc_info.value.status_code == 400


@pytest.mark.asyncio
@pytest.mark.unit
async def test_cancelling_credit_takes_it_off_the_balance(db_session):
    """Cancelling an unspent customer credit debits the balance."""
    customer = await _make_customer(db_session, balance=800)
    credit = CustomerCreditFactory.create(recipient_id=customer.id, commission_amount=500)
    db_session.add(credit)
    await db_session.commit()

    await update_commission_status(db_session, credit.id, CommissionStatus.CANCELLED)

    assert await get_credit_balance(db_session, customer.id) == 300


@pytest.mark.asyncio
@pytest.mark.unit
async def test_cancelling_spent_credit_conflicts(db_session):
    """A credit the customer already spent cannot be cancelled."""
    customer = await _make_customer(db_session, balance=100)
    credit = CustomerCreditFactory.create(recipient_id=customer.id, commission_amount=500)
    db_session.add(credit)
    await db_session.commit()
    customer_id, credit_id = customer.id, credit.id

    with pytest.raises(HTTPException) as exc_info:
        await update_commission_status(
            db_session, credit_id, CommissionStatus.CANCELLED
        )

    assert exc_info.value.status_code == 409
    assert await get_credit_balance(db_session, customer_id) == 100


@pytest.mark.asyncio
@pytest.mark.unit
async def test_update_unknown_commission(db_session):
    """Unknown commission ids are a 404."""
    with pytest.raises(HTTPException) as exc_info:
        await update_commission_status(
            db_session, uuid.uuid4(), CommissionStatus.APPROVED
        )

    assert exc_info.value.status_code == 404


# ---------------------------------------------------------------------------
# process_completed_order
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_partner_first_order_uses_captured_rate(db_session):
    """The first order pays the rate captured at signup, later ones the lifetime rate."""
    partner = PartnerFactory.create(
        commission_rate=Decimal("20.00"), lifetime_commission_rate=Decimal("5.00")
    )
    db_session.add(partner)
    customer = await _make_customer(
        db_session,
        referral_type=ReferralType.PARTNER,
        referrer_id=partner.id,
        referral_code_used="PAWS10",
        referral_commission_rate=Decimal("15.00"),
    )
    first = await _make_order(
        db_session, customer_id=customer.id, customer_email=customer.email
    )
    second = await _make_order(
        db_session, customer_id=customer.id, customer_email=customer.email
    )

    first_outcome = await process_completed_order(db_session, first)
    second_outcome = await process_completed_order(db_session, second)

    assert first_outcome.commissions[0].commission_rate == Decimal("15.00")
    assert first_outcome.commissions[0].commission_amount == 1500
    assert first_outcome.commissions[0].commission_metadata["first_order"] is True
    assert second_outcome.commissions[0].commission_rate == Decimal("5.00")
    assert second_outcome.commissions[0].commission_amount == 500

    refreshed = await db_session.get(Customer, customer.id)
    await db_session.refresh(refreshed)
    assert refreshed.referral_order_id == first.id


@pytest.mark.asyncio
@pytest.mark.unit
async def test_influencer_order_records_influencer_commission(db_session):
    """Influencer referrals produce a pending influencer commission."""
    influencer = InfluencerFactory.create(commission_rate=Decimal("15.00"))
    db_session.add(influencer)
    customer = await _make_customer(
        db_session,
        referral_type=ReferralType.INFLUENCER,
        referrer_id=influencer.id,
    )
    order = await _make_order(
        db_session, customer_id=customer.id, customer_email=customer.email
    )

    outcome = await process_completed_order(db_session, order)

    assert len(outcome.commissions) == 1
    commission = outcome.commissions[0]
    assert commission.recipient_type == RecipientType.INFLUENCER
    assert commission.recipient_id == influencer.id
    assert commission.commission_amount == 1500
    assert commission.status == CommissionStatus.PENDING


@pytest.mark.asyncio
@pytest.mark.unit
async def test_customer_referral_credits_referrer_and_replay_is_safe(db_session):
    """A customer referral credits 10%; processing twice changes nothing."""
    referrer = await _make_customer(db_session)
    customer = await _make_customer(
        db_session,
        referral_type=ReferralType.CUSTOMER,
        referrer_id=referrer.id,
    )
    order = await _make_order(
        db_session,
        customer_id=customer.id,
        customer_email=customer.email,
        subtotal_amount=6000,
    )

    await process_completed_order(db_session, order)
    await process_completed_order(db_session, order)

    assert await get_credit_balance(db_session, referrer.id) == 600
    assert await _commission_count(db_session, order.id) == 1


@pytest.mark.asyncio
@pytest.mark.unit
async def test_organic_order_records_nothing(db_session):
    """Unattributed customers generate no commission."""
    customer = await _make_customer(db_session)
    order = await _make_order(
        db_session, customer_id=customer.id, customer_email=customer.email
    )

    outcome = await process_completed_order(db_session, order)

    assert outcome.commissions == []
    assert await _commission_count(db_session, order.id) == 0


@pytest.mark.asyncio
@pytest.mark.unit
async def test_guest_checkout_with_customer_code_credits_code_owner(db_session):
    """A guest's checkout code credits the owner of that personal code."""
    sharer = await _make_customer(db_session, personal_referral_code="FRIEND1")
    sharer_id = sharer.id
    order = await _make_order(
        db_session,
        customer_email="guest@example.com",
        subtotal_amount=9000,
        referral_code="FRIEND1",
        referral_type=ReferralType.CUSTOMER.value,
    )
    order_id = order.id

    outcome = await process_completed_order(db_session, order)
    replay = await process_completed_order(db_session, order)

    assert len(outcome.commissions) == 1
    credit = outcome.commissions[0]
    assert credit.recipient_id == sharer_id
    assert credit.commission_amount == 900
    assert credit.commission_metadata["source_customer"] == "guest@example.com"
    assert replay.commissions[0].id == credit.id
    assert await _commission_count(db_session, order_id) == 1
    assert await get_credit_balance(db_session, sharer_id) == 900


@pytest.mark.asyncio
@pytest.mark.unit
async def test_unattributed_customer_checkout_code_credits_code_owner(db_session):
    """A registered but organic buyer's checkout code is honoured too."""
    sharer = await _make_customer(db_session, personal_referral_code="PALS22")
    buyer = await _make_customer(db_session)
    sharer_id = sharer.id
    order = await _make_order(
        db_session,
        customer_id=buyer.id,
        customer_email=buyer.email,
        referral_code="PALS22",
        referral_type=ReferralType.CUSTOMER.value,
    )

    outcome = await process_completed_order(db_session, order)

    assert [c.recipient_id for c in outcome.commissions] == [sharer_id]
    assert await get_credit_balance(db_session, sharer_id) == 1000


@pytest.mark.asyncio
@pytest.mark.unit
async def test_checkout_code_of_the_buyer_is_ignored(db_session):
    """Buyers cannot credit themselves through their own checkout code."""
    buyer = await _make_customer(db_session, personal_referral_code="MINE99")
    buyer_id = buyer.id
    order = await _make_order(
        db_session,
        customer_id=buyer.id,
        customer_email=buyer.email,
        referral_code="MINE99",
        referral_type=ReferralType.CUSTOMER.value,
    )
    order_id = order.id

    outcome = await process_completed_order(db_session, order)

    assert outcome.commissions == []
    assert await _commission_count(db_session, order_id) == 0
    assert await get_credit_balance(db_session, buyer_id) == 0


@pytest.mark.asyncio
@pytest.mark.unit
async def test_guest_checkout_with_partner_code_records_nothing(db_session):
    """Only customer codes are credited from checkout metadata."""
    partner = PartnerFactory.create()
    db_session.add_all(
        [partner, ReferralCodeFactory.create(owner_id=partner.id, code="SHOP10")]
    )
    await db_session.commit()
    order = await _make_order(
        db_session,
        customer_email="guest@example.com",
        referral_code="SHOP10",
        referral_type=ReferralType.CUSTOMER.value,
    )
    order_id = order.id

    outcome = await process_completed_order(db_session, order)

    assert outcome.commissions == []
    assert await _commission_count(db_session, order_id) == 0


@pytest.mark.asyncio
@pytest.mark.unit
async def test_unpaid_order_is_skipped(db_session):
    """Pending or cancelled orders are not revenue and earn nothing."""
    partner = PartnerFactory.create()
    db_session.add(partner)
    customer = await _make_customer(
        db_session, referral_type=ReferralType.PARTNER, referrer_id=partner.id
    )
    order = await _make_order(
        db_session,
        customer_id=customer.id,
        customer_email=customer.email,
        status=OrderStatus.PENDING,
    )

    outcome = await process_completed_order(db_session, order)

    assert outcome.commissions == []


@pytest.mark.asyncio
@pytest.mark.unit
async def test_order_with_credit_applied_redeems(db_session):
    """credit_applied on the order is redeemed from the buyer's balance."""
    customer = await _make_customer(db_session, balance=1500)
    order = await _make_order(
        db_session,
        customer_id=customer.id,
        customer_email=customer.email,
        credit_applied=1000,
    )

    outcome = await process_completed_order(db_session, order)

    assert outcome.redemption is not None
    assert outcome.redemption.amount == 1000
    assert outcome.redemption_error is None
    assert await get_credit_balance(db_session, customer.id) == 500


@pytest.mark.asyncio
@pytest.mark.unit
async def test_order_with_unbacked_credit_reports_error(db_session):
    """A redemption the balance cannot cover is reported, not raised."""
    customer = await _make_customer(db_session, balance=200)
    order = await _make_order(
        db_session,
        customer_id=customer.id,
        customer_email=customer.email,
        credit_applied=1000,
    )
    customer_id = customer.id

    outcome = await process_completed_order(db_session, order)

    assert outcome.redemption is None
    assert "Insufficient" in outcome.redemption_error
    assert await get_credit_balance(db_session, customer_id) == 200
