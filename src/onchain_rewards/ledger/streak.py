"""Daily holding streak decisions.

Pure: the reference date is always passed in, so callers (and tests) choose
the calendar day. Dates are UTC calendar dates.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from enum import Enum


class StreakOutcome(str, Enum):
    CONTINUE = "continue"
    RESET = "reset"
    ALREADY_PROCESSED = "already_processed"


@dataclass(frozen=True)
class StreakDecision:
    outcome: StreakOutcome
    new_streak: int

    @property
    def should_award(self) -> bool:
        return self.outcome != StreakOutcome.ALREADY_PROCESSED


def decide_streak(today: date, last_bonus_date: date | None, current_streak: int) -> StreakDecision:
    """Decide whether today's bonus continues, resets or repeats a streak.

    Args:
        today: The UTC calendar day being processed.
        last_bonus_date: Day of the last successful bonus, if any.
        current_streak: Streak stored on the profile.

    Returns:
        ALREADY_PROCESSED (streak unchanged) when the bonus was already given
        today, CONTINUE (streak + 1) when it was given yesterday, otherwise
        RESET (streak = 1).
    """
    if last_bonus_date is not None:
        # A date after today only happens with clock skew; never bonus twice.
        if last_bonus_date >= today:
            return StreakDecision(StreakOutcome.ALREADY_PROCESSED, current_streak)
        if (today - last_bonus_date).days == 1:
            return StreakDecision(StreakOutcome.CONTINUE, max(current_streak, 0) + 1)
    return StreakDecision(StreakOutcome.RESET, 1)
