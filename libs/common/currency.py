"""Currency and percentage helpers for Pawtraits.

Internal storage unit: pence (smallest GBP unit, 100 pence = £1).
API / display unit: pounds (float, e.g. 45.0 = £45.00), display only.

Every monetary calculation is done on integer pence with ``Decimal`` rates so
that no floating-point value is ever persisted or sent to Stripe.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

# ─── constants ───────────────────────────────────────────────────────────────

PENCE_PER_POUND: int = 100
HUNDRED = Decimal("100")

# ─── conversion helpers ───────────────────────────────────────────────────────


def pounds_to_pence(pounds: float | Decimal | str) -> int:
    """Convert pounds to pence (round half-up). £1 = 100 pence."""
    return int(
        (Decimal(str(pounds)) * PENCE_PER_POUND).quantize(
            Decimal("1"), rounding=ROUND_HALF_UP
        )
    )


def pence_to_pounds(pence: int) -> float:
    """Convert pence to pounds for display. 100 pence = £1."""
    return pence / PENCE_PER_POUND


def to_rate(value: float | int | str | Decimal) -> Decimal:
    """Normalise a percentage rate to two decimal places."""
    return Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def percentage_of(amount_pence: int, rate: float | int | str | Decimal) -> int:
    """Return ``round(amount_pence * rate / 100)`` in whole pence (half-up)."""
    if amount_pence < 0:
        raise ValueError("Amount cannot be negative")
    value = Decimal(amount_pence) * to_rate(rate) / HUNDRED
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def percent_share(part: int | float, total: int | float) -> float:
    """Share of ``part`` in ``total`` as a percentage rounded to 2dp (0 when empty)."""
    if not total:
        return 0.0
    return round(part / total * 100, 2)
