"""Tests for streak decisions."""

from datetime import date, timedelta

from onchain_rewards.ledger.streak import StreakOutcome, decide_streak

TODAY = date(2026, 3, 2)


class TestDecideStreak:
    def test_first_bonus_starts_streak(self) -> None:
        decision = decide_streak(TODAY, None, 0)
        assert decision.outcome == StreakOutcome.RESET
        assert decision.new_streak == 1
        assert decision.should_award

    def test_consecutive_day_continues(self) -> None:
        decision = decide_streak(TODAY, TODAY - timedelta(days=1), 4)
        assert decision.outcome == StreakOutcome.CONTINUE
        assert decision.new_streak == 5

    def test_same_day_is_already_processed(self) -> None:
        decision = decide_streak(TODAY, TODAY, 4)
        assert decision.outcome == StreakOutcome.ALREADY_PROCESSED
        assert decision.new_streak == 4
        assert not decision.should_award

    def test_missed_day_resets(self) -> None:
        decision = decide_streak(TODAY, TODAY - timedelta(days=2), 9)
        assert decision.outcome == StreakOutcome.RESET
        assert decision.new_streak == 1

    def test_future_date_never_awards(self) -> None:
        decision = decide_streak(TODAY, TODAY + timedelta(days=1), 3)
        assert decision.outcome == StreakOutcome.ALREADY_PROCESSED

    def test_month_boundary_continues(self) -> None:
        decision = decide_streak(date(2026, 3, 1), date(2026, 2, 28), 1)
        assert decision.outcome == StreakOutcome.CONTINUE
        assert decision.new_streak == 2
