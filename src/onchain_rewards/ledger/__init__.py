"""Rewards ledger layer - Scoring, streaks, tiers, achievements and ranking."""
