"""Fee arithmetic for escrowed adoption payments."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

CENT = Decimal("0.01")


@dataclass(frozen=True)
class FeeSplit:
    """How a captured amount is divided between the platform and the owner."""

    amount: Decimal
    fee_rate: Decimal
    platform_fee: Decimal
    net_amount: Decimal


def to_money(value: Decimal | int | str) -> Decimal:
    """Normalize a value to a two-place Decimal."""
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def split_fee(amount: Decimal, fee_rate: Decimal) -> FeeSplit:
    """Compute the platform fee and the owner's net amount.

    The fee is rounded half-up to the cent and the net amount is whatever
    remains, so ``platform_fee + net_amount == amount`` always holds.

    Raises:
        ValueError: If the amount is not positive or the rate is outside [0, 1).
    """
    amount = to_money(amount)
    if amount <= 0:
        raise ValueError(f"Amount must be positive, got {amount}")
    if not (Decimal("0") <= fee_rate < Decimal("1")):
        raise ValueError(f"Fee rate must be in [0, 1), got {fee_rate}")

    platform_fee = (amount * fee_rate).quantize(CENT, rounding=ROUND_HALF_UP)
    return FeeSplit(
        amount=amount,
        fee_rate=fee_rate,
        platform_fee=platform_fee,
        net_amount=amount - platform_fee,
    )
