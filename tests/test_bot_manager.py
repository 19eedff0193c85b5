"""Tests for bot cycles and the bot lifecycle."""

import asyncio
import random
from unittest.mock import AsyncMock

import pytest

from discovery.token_filter import TokenFilter
from monitor.signal_generator import SignalGenerator
from tests.factories import create_user, make_token
from trader.bot_engine import BotEngine, CycleOutcome
from trader.bot_manager import BotManager
from trader.safety_rails import SafetyRails
from trader.trade_simulator import TradeSimulator
from utils.errors import InsufficientBalanceError, InvalidStateError, NotFoundError


@pytest.fixture
def feed():
    feed = AsyncMock()
    feed.get_recommended_tokens.return_value = [make_token("top", score=95, symbol="TOP")]
    return feed


@pytest.fixture
def engine(settings, db, feed):
    token_filter = TokenFilter(settings)
    return BotEngine(
        settings, db, feed, SignalGenerator(token_filter), TradeSimulator(rng=random.Random(11)), SafetyRails()
    )


@pytest.fixture
def wallet():
    wallet = AsyncMock()
    wallet.get_balance.return_value = 5.0
    return wallet


@pytest.fixture
def manager(settings, db, engine, wallet):
    return BotManager(settings, db, engine, wallet, SafetyRails(), rng=random.Random(3))


async def _activate(db, user_id):
    await db.set_bot_active(user_id, True)


class TestBotCycle:

    @pytest.mark.asyncio
    async def test_executes_one_trade(self, engine, db, feed):
        user_id = await create_user(db)
        await _activate(db, user_id)
        feed.get_recommended_tokens.return_value = [
            make_token("a", score=95, symbol="AAA"),
            make_token("b", score=95, symbol="BBB"),
        ]

        outcome = await engine.run_cycle(user_id)

        assert outcome == CycleOutcome.TRADED
        trades = await db.get_transactions(user_id, "trade")
        assert len(trades) == 1
        assert trades[0]["token"] == "AAA"
        assert trades[0]["status"] == "confirmed"
        assert trades[0]["signature"].startswith("simulated_buy_")
        assert trades[0]["metadata"]["action"] == "buy"
        assert trades[0]["metadata"]["confidence"] == 90
        config = await db.get_bot_config(user_id)
        assert config["current_trades"] == 1
        assert config["last_trade_at"] is not None
        # Buys don't realize profit or loss
        assert config["total_profit"] == 0 and config["total_loss"] == 0

    @pytest.mark.asyncio
    async def test_max_trades_is_a_no_op(self, engine, db, feed):
        user_id = await create_user(db)
        await _activate(db, user_id)
        await db.update_bot_config(user_id, {"max_trades": 2})
        for _ in range(2):
            await db.record_bot_trade(user_id, profit=0.0, loss=0.0)
        before = await db.get_bot_config(user_id)

        for _ in range(3):
            assert await engine.run_cycle(user_id) == CycleOutcome.LIMIT_REACHED

        assert await db.get_bot_config(user_id) == before
        assert await db.count_transactions(user_id) == 0
        feed.get_recommended_tokens.assert_not_called()

    @pytest.mark.asyncio
    async def test_inactive_config(self, engine, db):
        user_id = await create_user(db)
        assert await engine.run_cycle(user_id) == CycleOutcome.INACTIVE
        assert await engine.run_cycle(999) == CycleOutcome.INACTIVE

    @pytest.mark.asyncio
    async def test_no_candidates(self, engine, db, feed):
        user_id = await create_user(db)
        await _activate(db, user_id)
        feed.get_recommended_tokens.return_value = []
        assert await engine.run_cycle(user_id) == CycleOutcome.NO_CANDIDATES

    @pytest.mark.asyncio
    async def test_low_risk_needs_80(self, engine, db, feed):
        user_id = await create_user(db)
        await _activate(db, user_id)
        await db.update_bot_config(user_id, {"risk_level": "low"})
        # score 95 -> 90, low risk -> 70, below the low-risk bar of 80
        feed.get_recommended_tokens.return_value = [make_token("a", score=95)]

        assert await engine.run_cycle(user_id) == CycleOutcome.NO_SIGNAL
        assert await db.count_transactions(user_id) == 0


class TestLifecycle:

    @pytest.mark.asyncio
    async def test_start_and_stop(self, manager, db):
        user_id = await create_user(db)

        config = await manager.start(user_id)

        assert config.is_active
        assert manager.is_running(user_id)
        assert (await db.get_bot_job(user_id))["desired_state"] == "running"

        await manager.stop(user_id)

        assert not manager.is_running(user_id)
        assert not (await db.get_bot_config(user_id))["is_active"]
        assert (await db.get_bot_job(user_id))["desired_state"] == "stopped"

    @pytest.mark.asyncio
    async def test_start_requires_balance(self, manager, db, wallet):
        user_id = await create_user(db)
        wallet.get_balance.return_value = 0.05

        with pytest.raises(InsufficientBalanceError):
            await manager.start(user_id)

        assert not manager.is_running(user_id)
        assert not (await db.get_bot_config(user_id))["is_active"]

    @pytest.mark.asyncio
    async def test_start_unknown_user(self, manager, db):
        with pytest.raises(NotFoundError):
            await manager.start(42)
        user_id = await create_user(db, with_config=False)
        with pytest.raises(NotFoundError):
            await manager.start(user_id)

    @pytest.mark.asyncio
    async def test_double_start_rejected(self, manager, db):
        user_id = await create_user(db)
        await manager.start(user_id)

        with pytest.raises(InvalidStateError):
            await manager.start(user_id)

        await manager.stop_all()

    @pytest.mark.asyncio
    async def test_stop_then_start_keeps_one_loop(self, manager, db):
        user_id = await create_user(db)
        await manager.start(user_id)
        first_task = manager._loops[user_id].task

        await manager.stop(user_id)
        await manager.start(user_id)
        await asyncio.sleep(0)

        assert len(manager._loops) == 1
        assert manager._loops[user_id].task is not first_task
        await asyncio.wait_for(first_task, timeout=1)
        assert manager.is_running(user_id)

        await manager.stop_all()

    @pytest.mark.asyncio
    async def test_concurrent_starts_register_one_loop(self, settings, db, wallet):
        settings.bot_cycle_interval = 0.02
        engine = AsyncMock()
        engine.run_cycle.return_value = CycleOutcome.NO_SIGNAL
        manager = BotManager(settings, db, engine, wallet, SafetyRails())
        user_id = await create_user(db)

        results = await asyncio.gather(
            manager.start(user_id), manager.start(user_id), return_exceptions=True
        )

        assert sum(isinstance(r, InvalidStateError) for r in results) == 1
        assert sum(not isinstance(r, Exception) for r in results) == 1
        loops = [t for t in asyncio.all_tasks() if t.get_coro().__qualname__ == "BotManager._run_loop"]
        assert len(loops) == 1

        await manager.stop(user_id)
        await asyncio.wait_for(loops[0], timeout=1)
        cycles = engine.run_cycle.await_count
        await asyncio.sleep(0.1)

        assert engine.run_cycle.await_count == cycles
        assert not [t for t in asyncio.all_tasks() if t.get_coro().__qualname__ == "BotManager._run_loop"]

    @pytest.mark.asyncio
    async def test_failed_persist_unregisters_loop(self, manager, db, monkeypatch):
        user_id = await create_user(db)
        monkeypatch.setattr(db, "upsert_bot_job", AsyncMock(side_effect=RuntimeError("disk full")))

        with pytest.raises(RuntimeError):
            await manager.start(user_id)

        assert not manager._loops
        leftover = [t for t in asyncio.all_tasks() if t.get_coro().__qualname__ == "BotManager._run_loop"]
        await asyncio.wait_for(asyncio.gather(*leftover), timeout=1)

    @pytest.mark.asyncio
    async def test_stop_without_loop_is_fine(self, manager, db):
        user_id = await create_user(db)
        config = await manager.stop(user_id)
        assert not config.is_active

    @pytest.mark.asyncio
    async def test_reset(self, manager, db):
        user_id = await create_user(db)
        await db.record_bot_trade(user_id, profit=0.2, loss=0.0)
        await _activate(db, user_id)

        with pytest.raises(InvalidStateError):
            await manager.reset(user_id)
        assert (await db.get_bot_config(user_id))["current_trades"] == 1

        await db.set_bot_active(user_id, False)
        config = await manager.reset(user_id)

        assert config.current_trades == 0
        assert config.total_profit == 0
        assert config.total_loss == 0
        assert config.last_trade_at is None


class TestLoop:

    @pytest.mark.asyncio
    async def test_loop_runs_cycles(self, settings, db, wallet):
        settings.bot_cycle_interval = 0.01
        engine = AsyncMock()
        engine.run_cycle.return_value = CycleOutcome.NO_SIGNAL
        manager = BotManager(settings, db, engine, wallet, SafetyRails())
        user_id = await create_user(db)

        await manager.start(user_id)
        await asyncio.sleep(0.1)
        await manager.stop(user_id)

        assert engine.run_cycle.await_count >= 2
        assert (await db.get_bot_job(user_id))["last_cycle_at"] is not None

    @pytest.mark.asyncio
    async def test_cycle_errors_are_recorded_and_loop_continues(self, settings, db, wallet):
        settings.bot_cycle_interval = 0.01
        engine = AsyncMock()
        engine.run_cycle.side_effect = RuntimeError("feed exploded")
        manager = BotManager(settings, db, engine, wallet, SafetyRails())
        user_id = await create_user(db)

        await manager.start(user_id)
        await asyncio.sleep(0.1)

        assert manager.is_running(user_id)
        assert engine.run_cycle.await_count >= 2
        assert (await db.get_bot_job(user_id))["last_error"] == "feed exploded"
        await manager.stop(user_id)

    @pytest.mark.asyncio
    async def test_loop_ends_when_config_goes_inactive(self, settings, db, wallet):
        settings.bot_cycle_interval = 0.01
        engine = AsyncMock()
        engine.run_cycle.return_value = CycleOutcome.INACTIVE
        manager = BotManager(settings, db, engine, wallet, SafetyRails())
        user_id = await create_user(db)

        await manager.start(user_id)
        await asyncio.sleep(0.1)

        assert not manager.is_running(user_id)
        assert (await db.get_bot_job(user_id))["desired_state"] == "stopped"

    @pytest.mark.asyncio
    async def test_demo_mode_expires(self, settings, db, wallet):
        settings.demo_mode = True
        settings.demo_interval_min = 0.01
        settings.demo_interval_max = 0.02
        settings.demo_max_runtime = 0.05
        engine = AsyncMock()
        engine.run_cycle.return_value = CycleOutcome.NO_SIGNAL
        manager = BotManager(settings, db, engine, wallet, SafetyRails(), rng=random.Random(1))
        user_id = await create_user(db)

        await manager.start(user_id)
        await asyncio.sleep(0.3)

        assert not manager.is_running(user_id)
        assert not (await db.get_bot_config(user_id))["is_active"]


class TestReconcile:

    @pytest.mark.asyncio
    async def test_reconcile(self, manager, db):
        resumed = await create_user(db, "a@x.io", "a")
        await db.set_bot_active(resumed, True)
        await db.upsert_bot_job(resumed, "running", 60)

        orphan_job = await create_user(db, "b@x.io", "b")
        await db.upsert_bot_job(orphan_job, "running", 60)

        orphan_flag = await create_user(db, "c@x.io", "c")
        await db.set_bot_active(orphan_flag, True)

        assert await manager.reconcile() == 1

        assert manager.is_running(resumed)
        assert (await db.get_bot_job(orphan_job))["desired_state"] == "stopped"
        assert not (await db.get_bot_config(orphan_flag))["is_active"]

        await manager.stop_all()
        # Shutdown leaves persisted state alone
        assert (await db.get_bot_config(resumed))["is_active"]
        assert (await db.get_bot_job(resumed))["desired_state"] == "running"


class TestStats:

    @pytest.mark.asyncio
    async def test_win_rate_counts_profitable_sells(self, manager, db):
        user_id = await create_user(db)
        for i, (action, profit) in enumerate([("buy", None), ("sell", 0.02), ("sell", -0.01), ("buy", None)]):
            metadata = {"action": action}
            if profit is not None:
                metadata["profit"] = profit
            await db.insert_transaction({
                "user_id": user_id, "type": "trade", "amount": 0.1,
                "signature": f"sig{i}", "status": "confirmed", "metadata": metadata,
            })
        await db.record_bot_trade(user_id, profit=0.02, loss=0.0)
        await db.record_bot_trade(user_id, profit=0.0, loss=0.01)

        stats = await manager.stats(user_id)

        assert stats["total_trades"] == 4
        assert stats["win_rate"] == 25.0
        assert stats["total_profit"] == pytest.approx(0.01)
        assert stats["current_trades"] == 2
        assert stats["is_running"] is False
        assert stats["configuration"]["risk_level"] == "medium"

    @pytest.mark.asyncio
    async def test_missing_config(self, manager):
        with pytest.raises(NotFoundError):
            await manager.stats(7)
