"""Tests for point and bonus scoring."""

from decimal import Decimal

import pytest

from onchain_rewards.errors import ValidationError
from onchain_rewards.ledger.models import TransactionType
from onchain_rewards.ledger.scoring import (
    BonusCurve,
    ScoringRules,
    score_transaction,
    trade_notional,
    trade_points,
)

RULES = ScoringRules()


class TestTradePoints:
    def test_square_root_model(self) -> None:
        # floor(5 * sqrt(100)) = 50
        assert trade_points(Decimal("100"), has_minted=False, rules=RULES) == 50

    def test_minting_multiplier(self) -> None:
        assert trade_points(Decimal("100"), has_minted=True, rules=RULES) == 150

    def test_capped(self) -> None:
        assert trade_points(Decimal("10000000"), has_minted=True, rules=RULES) == 1000

    def test_huge_notional_is_capped(self) -> None:
        assert trade_points(Decimal("1e400"), has_minted=True, rules=RULES) == 1000

    def test_tiny_trade_earns_at_least_one_point(self) -> None:
        assert trade_points(Decimal("0.0001"), has_minted=False, rules=RULES) == 1

    def test_monotonic_in_notional(self) -> None:
        previous = 0
        for notional in (1, 4, 9, 50, 100, 1000, 40000, 10**6):
            points = trade_points(Decimal(notional), has_minted=False, rules=RULES)
            assert points >= previous
            previous = points

    def test_notional_uses_price(self) -> None:
        assert trade_notional(Decimal("10"), Decimal("2.5")) == Decimal("25")
        assert trade_notional(Decimal("10"), None) == Decimal("10")


class TestScoreTransaction:
    def test_base_transaction_is_fixed(self) -> None:
        points = score_transaction(
            TransactionType.BASE_TRANSACTION, Decimal("999"), None, has_minted=True, rules=RULES
        )
        assert points == 1

    def test_sell_scores_like_buy(self) -> None:
        buy = score_transaction(TransactionType.BUY, Decimal("16"), None, has_minted=False, rules=RULES)
        sell = score_transaction(TransactionType.SELL, Decimal("16"), None, has_minted=False, rules=RULES)
        assert buy == sell == 20

    def test_internal_types_rejected(self) -> None:
        with pytest.raises(ValidationError):
            score_transaction(TransactionType.STREAK_BONUS, Decimal("1"), None, has_minted=False, rules=RULES)


class TestBonusCurve:
    def test_default_curve(self) -> None:
        curve = BonusCurve()
        assert [curve.bonus_points(s) for s in (1, 2, 3)] == [10, 15, 20]
        assert curve.bonus_points(19) == 100
        assert curve.bonus_points(365) == 100

    def test_monotonic_and_capped(self) -> None:
        curve = BonusCurve()
        values = [curve.bonus_points(s) for s in range(1, 60)]
        assert values == sorted(values)
        assert max(values) == curve.max_points

    def test_token_bonus_capped_at_seven_days(self) -> None:
        curve = BonusCurve()
        assert curve.token_bonus(1) == Decimal("1")
        assert curve.token_bonus(7) == Decimal("7")
        assert curve.token_bonus(30) == Decimal("7")

    def test_streak_must_be_positive(self) -> None:
        with pytest.raises(ValidationError):
            BonusCurve().bonus_points(0)
