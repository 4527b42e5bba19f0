"""Tests for runtime wiring and the command line."""

import json
from datetime import date
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from onchain_rewards.__main__ import main, parse_args
from onchain_rewards.config import (
    BonusSettings,
    DatabaseSettings,
    LeaderboardSettings,
    RedisSettings,
    ScoringSettings,
    Settings,
    clear_settings_cache,
)
from onchain_rewards.ledger.identity import SocialIdentity
from onchain_rewards.runtime import RewardsRuntime, RuntimeState, run_daily_bonus


@pytest.fixture
def settings(tmp_path, monkeypatch: pytest.MonkeyPatch) -> Settings:
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("REDIS_URL", raising=False)
    return Settings(
        database=DatabaseSettings(DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'runtime.db'}"),
        redis=RedisSettings(),
        scoring=ScoringSettings(),
        bonus=BonusSettings(BONUS_CONCURRENCY=1, BONUS_RETRY_BASE_DELAY_SECONDS=0.0),
        leaderboard=LeaderboardSettings(),
    )


class TestRewardsRuntime:
    @pytest.mark.asyncio
    async def test_lifecycle(self, settings) -> None:
        runtime = RewardsRuntime(settings)
        assert runtime.state == RuntimeState.STOPPED
        with pytest.raises(RuntimeError):
            _ = runtime.db

        async with runtime:
            assert runtime.state == RuntimeState.RUNNING
            assert runtime.ledger is not None
            assert runtime.enricher is None
            with pytest.raises(RuntimeError):
                await runtime.start()

        assert runtime.state == RuntimeState.STOPPED
        await runtime.stop()

    @pytest.mark.asyncio
    async def test_end_to_end_day(self, settings, alice, bob) -> None:
        async with RewardsRuntime(settings) as runtime:
            await runtime.db.init_schema_async()
            await runtime.ledger.record_transaction(alice, "buy", 100)
            await runtime.ledger.record_transaction(bob, "buy", 16)

            result = await run_daily_bonus(runtime, trigger="manual", today=date(2026, 3, 2))

            assert result.success
            assert result.bonused == 2
            assert await runtime.leaderboard.rank_of(alice) == 1
            profile = await runtime.ledger.get_profile(alice)
            assert profile.weekly_streak == 1
            assert profile.current_rank == 1
            assert profile.token_balance == Decimal("101")

    @pytest.mark.asyncio
    async def test_leaderboard_refresh_failure_keeps_result(self, settings, alice) -> None:
        async with RewardsRuntime(settings) as runtime:
            await runtime.db.init_schema_async()
            await runtime.ledger.record_transaction(alice, "buy", 100)
            runtime.leaderboard.refresh = AsyncMock(side_effect=RuntimeError("redis down"))

            result = await run_daily_bonus(runtime, today=date(2026, 3, 2))

            assert result.success
            assert result.bonused == 1
            runtime.leaderboard.refresh.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_identity_provider_wired(self, settings, alice) -> None:
        provider = AsyncMock()
        provider.lookup.return_value = SocialIdentity(username="alice")

        async with RewardsRuntime(settings, identity_provider=provider) as runtime:
            await runtime.db.init_schema_async()
            await runtime.ledger.record_transaction(alice, "base_transaction", 1)
            assert await runtime.enricher.enrich(alice) == SocialIdentity(username="alice")

    @pytest.mark.asyncio
    async def test_run_daily_bonus_requires_started_runtime(self, settings) -> None:
        with pytest.raises(RuntimeError):
            await run_daily_bonus(RewardsRuntime(settings))


class TestCommandLine:
    def test_parse_distribute(self) -> None:
        args = parse_args(["distribute-bonuses", "--manual", "--date", "2026-03-02", "--timeout", "30"])
        assert args.command == "distribute-bonuses"
        assert args.manual is True
        assert args.date == date(2026, 3, 2)
        assert args.timeout == 30.0

    def test_parse_record(self) -> None:
        args = parse_args(["record-transaction", "0xabc", "buy", "12.5", "--price", "2"])
        assert args.amount == Decimal("12.5")
        assert args.price == Decimal("2")
        assert args.tx_hash is None

    def test_rejects_bonus_type(self) -> None:
        with pytest.raises(SystemExit):
            parse_args(["record-transaction", "0xabc", "streak_bonus", "1"])

    def test_commands_against_sqlite(self, tmp_path, monkeypatch: pytest.MonkeyPatch, capsys, alice) -> None:
        monkeypatch.chdir(tmp_path)
        monkeypatch.delenv("REDIS_URL", raising=False)
        monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'cli.db'}")
        monkeypatch.setenv("EVALUATE_ACHIEVEMENTS_ON_RECORD", "false")
        clear_settings_cache()
        try:
            assert main(["init-db"]) == 0
            assert main(["record-transaction", alice, "buy", "100"]) == 0
            recorded = json.loads(capsys.readouterr().out)
            assert recorded["points"] == 50

            assert main(["leaderboard", "--top", "5"]) == 0
            board = json.loads(capsys.readouterr().out)
            assert [e["user_address"] for e in board] == [alice]

            assert main(["reconcile", alice]) == 0
            assert json.loads(capsys.readouterr().out)["consistent"] is True

            assert main(["reconcile", "0x" + "9" * 40]) == 2
        finally:
            clear_settings_cache()
