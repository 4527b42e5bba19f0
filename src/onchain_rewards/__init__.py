"""On-chain rewards ledger: points, streaks, tiers, achievements and leaderboards."""

__version__ = "0.1.0"
