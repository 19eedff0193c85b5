"""
Bot Manager
===========
Owns every operator's bot loop: start, stop, reset, stats, and recovery
after a restart.

Each running bot is one asyncio task on the shared event loop. The task
sleeps for the bot's interval, runs one BotEngine cycle, and repeats until
its stop event is set. Stopping never cancels a cycle that is already
running; it only prevents the next one.

Whether a bot *should* be running is persisted in the bot_jobs table, so
reconcile() can bring loops back after the process restarts.
"""

import asyncio
import random
from dataclasses import dataclass
from typing import Any

from config.settings import Settings
from database.db import Database
from trader.bot_config import BotConfig
from trader.bot_engine import BotEngine, CycleOutcome
from trader.safety_rails import SafetyRails
from utils.errors import InvalidStateError, NotFoundError
from utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class _BotLoop:
    task: asyncio.Task
    stop_event: asyncio.Event
    interval: float


class BotManager:
    """
    Usage:
        manager = BotManager(settings, db, engine, wallet, rails)
        await manager.reconcile()       # on startup
        await manager.start(user_id)
        await manager.stop(user_id)
        await manager.stop_all()        # on shutdown
    """

    def __init__(
        self,
        settings: Settings,
        db: Database,
        engine: BotEngine,
        wallet: Any,
        rails: SafetyRails,
        rng: random.Random | None = None,
    ):
        self.settings = settings
        self.db = db
        self.engine = engine
        self.wallet = wallet
        self.rails = rails
        self.rng = rng or random.Random()
        self._loops: dict[int, _BotLoop] = {}

    # =========================================================================
    # Configuration
    # =========================================================================

    async def get_config(self, user_id: int) -> BotConfig:
        return BotConfig.from_row(await self.db.get_or_create_bot_config(user_id))

    async def update_config(self, user_id: int, updates: dict[str, Any]) -> BotConfig:
        row = await self.db.get_bot_config(user_id)
        if not row:
            raise NotFoundError("Bot configuration not found")
        columns = self.rails.validate_config_update(updates, BotConfig.from_row(row))
        row = await self.db.update_bot_config(user_id, columns)
        logger.info("bot_config_updated", user_id=user_id, fields=sorted(columns))
        return BotConfig.from_row(row)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def is_running(self, user_id: int) -> bool:
        loop = self._loops.get(user_id)
        return loop is not None and not loop.task.done()

    def _pick_interval(self) -> float:
        if self.settings.demo_mode:
            return self.rng.uniform(self.settings.demo_interval_min, self.settings.demo_interval_max)
        return self.settings.bot_cycle_interval

    async def start(self, user_id: int) -> BotConfig:
        user = await self.db.get_user_by_id(user_id)
        if not user:
            raise NotFoundError("User not found")
        row = await self.db.get_bot_config(user_id)
        if not row:
            raise NotFoundError("Bot configuration not found")
        if self.is_running(user_id):
            raise InvalidStateError("Bot is already running")

        config = BotConfig.from_row(row)
        balance = await self.wallet.get_balance(user["wallet_address"])
        self.rails.check_start(config, balance)

        # Another start may have won while we were waiting on the RPC.
        # No await between this check and _spawn, so only one start registers a loop.
        if self.is_running(user_id):
            raise InvalidStateError("Bot is already running")

        interval = self._pick_interval()
        self._spawn(user_id, interval)
        try:
            await self.db.set_bot_active(user_id, True)
            await self.db.upsert_bot_job(user_id, "running", interval)
        except Exception:
            self._halt(user_id)
            raise

        logger.info("bot_started", user_id=user_id, interval=round(interval, 1), balance=balance)
        config.is_active = True
        return config

    async def stop(self, user_id: int) -> BotConfig:
        row = await self.db.get_bot_config(user_id)
        if not row:
            raise NotFoundError("Bot configuration not found")

        await self.db.set_bot_active(user_id, False)
        await self.db.upsert_bot_job(user_id, "stopped")
        was_running = self._halt(user_id)

        logger.info("bot_stopped", user_id=user_id, was_running=was_running)
        config = BotConfig.from_row(row)
        config.is_active = False
        return config

    async def reset(self, user_id: int) -> BotConfig:
        row = await self.db.get_bot_config(user_id)
        if not row:
            raise NotFoundError("Bot configuration not found")
        self.rails.check_reset(BotConfig.from_row(row))

        await self.db.reset_bot_counters(user_id)
        logger.info("bot_counters_reset", user_id=user_id)
        return BotConfig.from_row(await self.db.get_bot_config(user_id))

    async def stats(self, user_id: int) -> dict[str, Any]:
        row = await self.db.get_bot_config(user_id)
        if not row:
            raise NotFoundError("Bot statistics not found")
        config = BotConfig.from_row(row)

        trade_stats = await self.db.get_trade_stats(user_id)
        total_trades = trade_stats["total_trades"]
        win_rate = trade_stats["winning_trades"] / total_trades * 100 if total_trades else 0.0

        return {
            "is_active": config.is_active,
            "is_running": self.is_running(user_id),
            "total_trades": total_trades,
            "current_trades": config.current_trades,
            "max_trades": config.max_trades,
            "win_rate": round(win_rate, 2),
            "total_profit": round(config.total_profit - config.total_loss, 4),
            "total_profit_value": config.total_profit,
            "total_loss_value": config.total_loss,
            "last_trade_at": config.last_trade_at.isoformat() if config.last_trade_at else None,
            "configuration": config.strategy.to_dict(),
        }

    # =========================================================================
    # Startup / shutdown
    # =========================================================================

    async def reconcile(self) -> int:
        """
        Line up running loops with what the database says should be running.

        - job running + config active   -> resume the loop
        - job running + config inactive -> mark the job stopped
        - config active + no running job -> mark the config inactive

        Returns the number of loops resumed.
        """
        resumed: set[int] = set()
        for job in await self.db.get_running_jobs():
            user_id = job["user_id"]
            row = await self.db.get_bot_config(user_id)
            if row and row["is_active"]:
                if not self.is_running(user_id):
                    self._spawn(user_id, job["interval_seconds"] or self._pick_interval())
                resumed.add(user_id)
            else:
                await self.db.upsert_bot_job(user_id, "stopped")
                logger.info("bot_job_closed", user_id=user_id, reason="config inactive")

        for row in await self.db.get_active_bot_configs():
            if row["user_id"] not in resumed:
                await self.db.set_bot_active(row["user_id"], False)
                logger.info("bot_config_deactivated", user_id=row["user_id"], reason="no running job")

        logger.info("bots_reconciled", resumed=len(resumed))
        return len(resumed)

    async def stop_all(self) -> None:
        """End every loop without touching persisted state (reconcile resumes them)."""
        loops = list(self._loops.values())
        self._loops.clear()
        for loop in loops:
            loop.stop_event.set()
            loop.task.cancel()
        if loops:
            await asyncio.gather(*(loop.task for loop in loops), return_exceptions=True)
        logger.info("all_bots_stopped", count=len(loops))

    # =========================================================================
    # Loops
    # =========================================================================

    def _spawn(self, user_id: int, interval: float) -> None:
        stop_event = asyncio.Event()
        task = asyncio.create_task(self._run_loop(user_id, interval, stop_event))
        self._loops[user_id] = _BotLoop(task=task, stop_event=stop_event, interval=interval)

    def _halt(self, user_id: int) -> bool:
        loop = self._loops.pop(user_id, None)
        if loop is None:
            return False
        loop.stop_event.set()
        return True

    def _release(self, user_id: int, stop_event: asyncio.Event) -> None:
        loop = self._loops.get(user_id)
        # A newer loop may already be registered for this user
        if loop is not None and loop.stop_event is stop_event:
            del self._loops[user_id]

    async def _run_loop(self, user_id: int, interval: float, stop_event: asyncio.Event) -> None:
        started = asyncio.get_running_loop().time()
        try:
            while not stop_event.is_set():
                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=interval)
                    break
                except asyncio.TimeoutError:
                    pass

                if self.settings.demo_mode:
                    elapsed = asyncio.get_running_loop().time() - started
                    if elapsed >= self.settings.demo_max_runtime:
                        logger.info("bot_demo_expired", user_id=user_id, runtime=round(elapsed))
                        await self.stop(user_id)
                        break

                try:
                    outcome = await self.engine.run_cycle(user_id)
                    await self.db.mark_job_cycle(user_id)
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    logger.error("bot_cycle_error", user_id=user_id, error=str(e))
                    try:
                        await self.db.mark_job_cycle(user_id, error=str(e))
                    except Exception as db_error:
                        logger.error("bot_job_update_failed", user_id=user_id, error=str(db_error))
                    continue

                if outcome == CycleOutcome.INACTIVE:
                    # Config was switched off outside the manager
                    await self.db.upsert_bot_job(user_id, "stopped")
                    logger.info("bot_loop_ended", user_id=user_id, reason="inactive")
                    break
        except asyncio.CancelledError:
            logger.debug("bot_loop_cancelled", user_id=user_id)
        except Exception as e:
            logger.error("bot_loop_crashed", user_id=user_id, error=str(e))
        finally:
            self._release(user_id, stop_event)
