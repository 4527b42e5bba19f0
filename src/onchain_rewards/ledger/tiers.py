"""Tier table and tier calculation.

The table must partition the non-negative integers: the first tier starts at
0, each tier starts exactly one point above the previous tier's maximum and
the last tier is open-ended. A table violating this is rejected when it is
constructed, so ``tier_for`` is total for any non-negative input.
"""

from __future__ import annotations

from collections.abc import Iterable

from onchain_rewards.errors import ConfigurationError, ValidationError
from onchain_rewards.ledger.models import TierInfo

DEFAULT_TIERS: tuple[TierInfo, ...] = (
    TierInfo("Bronze", 0, 999, color="text-amber-600", bg_color="bg-amber-600/10"),
    TierInfo("Silver", 1_000, 4_999, color="text-gray-400", bg_color="bg-gray-400/10"),
    TierInfo("Gold", 5_000, 14_999, color="text-yellow-500", bg_color="bg-yellow-500/10"),
    TierInfo("Platinum", 15_000, 49_999, color="text-blue-400", bg_color="bg-blue-400/10"),
    TierInfo("Diamond", 50_000, None, color="text-purple-500", bg_color="bg-purple-500/10"),
)


class TierTable:
    """Validated, ordered tier table."""

    def __init__(self, tiers: Iterable[TierInfo]) -> None:
        self._tiers = tuple(sorted(tiers, key=lambda t: t.min_points))
        self._validate()
        self._by_name = {t.name: t for t in self._tiers}

    def _validate(self) -> None:
        if not self._tiers:
            raise ConfigurationError("Tier table is empty")
        names = [t.name for t in self._tiers]
        if len(set(names)) != len(names):
            raise ConfigurationError(f"Duplicate tier names: {names}")
        if self._tiers[0].min_points != 0:
            raise ConfigurationError(
                f"First tier {self._tiers[0].name} must start at 0, got {self._tiers[0].min_points}"
            )

        for current, following in zip(self._tiers, self._tiers[1:]):
            if current.max_points is None:
                raise ConfigurationError(
                    f"Tier {current.name} is open-ended but is followed by {following.name}"
                )
            if current.max_points < current.min_points:
                raise ConfigurationError(f"Tier {current.name} has max < min")
            if following.min_points <= current.max_points:
                raise ConfigurationError(f"Tiers {current.name} and {following.name} overlap")
            if following.min_points != current.max_points + 1:
                raise ConfigurationError(f"Gap between tiers {current.name} and {following.name}")

        if self._tiers[-1].max_points is not None:
            raise ConfigurationError(f"Top tier {self._tiers[-1].name} must be open-ended")

    @property
    def tiers(self) -> tuple[TierInfo, ...]:
        return self._tiers

    @property
    def lowest(self) -> TierInfo:
        return self._tiers[0]

    def tier_for(self, points: int) -> TierInfo:
        """Return the unique tier whose bounds contain ``points``."""
        if points < 0:
            raise ValidationError(f"Points must be non-negative, got {points}")
        for tier in reversed(self._tiers):
            if points >= tier.min_points:
                return tier
        # Unreachable for a validated table.
        raise ConfigurationError(f"No tier covers {points} points")

    def get(self, name: str) -> TierInfo:
        try:
            return self._by_name[name]
        except KeyError as e:
            raise ValidationError(f"Unknown tier: {name!r}") from e

    def next_tier(self, name: str) -> TierInfo | None:
        idx = self._tiers.index(self.get(name))
        return self._tiers[idx + 1] if idx + 1 < len(self._tiers) else None

    def points_to_next_tier(self, points: int) -> int | None:
        """Points still needed to reach the next tier (None at the top)."""
        following = self.next_tier(self.tier_for(points).name)
        if following is None:
            return None
        return following.min_points - points


DEFAULT_TIER_TABLE = TierTable(DEFAULT_TIERS)


def tier_for(points: int) -> TierInfo:
    """Tier lookup against the default table."""
    return DEFAULT_TIER_TABLE.tier_for(points)
