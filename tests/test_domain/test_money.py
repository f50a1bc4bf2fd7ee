"""Tests for platform fee arithmetic."""

from __future__ import annotations

from decimal import Decimal

import pytest

from rehoming_escrow.domain.money import split_fee, to_money


class TestSplitFee:
    def test_five_percent_of_a_thousand(self) -> None:
        split = split_fee(Decimal("1000"), Decimal("0.05"))
        assert split.amount == Decimal("1000.00")
        assert split.platform_fee == Decimal("50.00")
        assert split.net_amount == Decimal("950.00")

    def test_fee_rounds_half_up_to_the_cent(self) -> None:
        # 0.05 * 10.10 = 0.505 -> 0.51
        split = split_fee(Decimal("10.10"), Decimal("0.05"))
        assert split.platform_fee == Decimal("0.51")
        assert split.net_amount == Decimal("9.59")

    @pytest.mark.parametrize("amount", ["0.01", "19.99", "333.33", "1234.57", "99999.99"])
    def test_parts_always_sum_to_the_amount(self, amount: str) -> None:
        split = split_fee(Decimal(amount), Decimal("0.075"))
        assert split.platform_fee + split.net_amount == split.amount

    def test_zero_rate(self) -> None:
        split = split_fee(Decimal("250"), Decimal("0"))
        assert split.platform_fee == Decimal("0.00")
        assert split.net_amount == Decimal("250.00")

    def test_rejects_non_positive_amount(self) -> None:
        with pytest.raises(ValueError, match="positive"):
            split_fee(Decimal("0"), Decimal("0.05"))

    def test_rejects_rate_of_one_or_more(self) -> None:
        with pytest.raises(ValueError, match="Fee rate"):
            split_fee(Decimal("100"), Decimal("1"))


class TestToMoney:
    def test_normalizes_to_two_places(self) -> None:
        assert to_money(5) == Decimal("5.00")
        assert to_money("12.345") == Decimal("12.35")
        assert str(to_money(Decimal("7.1"))) == "7.10"
