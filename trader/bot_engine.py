"""
Bot Engine
==========
One decision cycle for one operator's bot.

The flow for a cycle:
1. Re-read the bot configuration (it may have been stopped or edited)
2. Safety rails: inactive -> end the loop, at max trades -> idle
3. Ask the token feed for the top-ranked candidates
4. Generate signals, best confidence first
5. Take the first signal that clears the risk level's minimum confidence
6. Paper-trade it, append a ledger row, update the bot's counters

At most one trade per cycle. BotManager decides when cycles run.
"""

from enum import Enum

from config.settings import Settings
from database.db import Database
from discovery.token_feed import TokenFeed
from monitor.signal_generator import SignalGenerator, TradeSignal, min_confidence_for_risk
from trader.bot_config import BotConfig
from trader.safety_rails import SafetyRails
from trader.trade_simulator import SimulatedTrade, TradeSimulator
from utils.logger import get_logger

logger = get_logger(__name__)


class CycleOutcome(str, Enum):
    INACTIVE = "inactive"
    LIMIT_REACHED = "limit_reached"
    NO_CANDIDATES = "no_candidates"
    NO_SIGNAL = "no_signal"
    TRADED = "traded"


class BotEngine:
    """
    Usage:
        engine = BotEngine(settings, db, feed, generator, simulator, rails)
        outcome = await engine.run_cycle(user_id)
    """

    def __init__(
        self,
        settings: Settings,
        db: Database,
        feed: TokenFeed,
        generator: SignalGenerator,
        simulator: TradeSimulator,
        rails: SafetyRails,
    ):
        self.settings = settings
        self.db = db
        self.feed = feed
        self.generator = generator
        self.simulator = simulator
        self.rails = rails

    async def run_cycle(self, user_id: int) -> CycleOutcome:
        row = await self.db.get_bot_config(user_id)
        config = BotConfig.from_row(row) if row else None

        can_run, reason = self.rails.pre_cycle_check(config)
        if not can_run:
            if config is None or not config.is_active:
                return CycleOutcome.INACTIVE
            logger.info("bot_trade_limit_reached", user_id=user_id, reason=reason)
            return CycleOutcome.LIMIT_REACHED

        candidates = await self.feed.get_recommended_tokens(self.settings.bot_candidate_count)
        if not candidates:
            logger.info("bot_no_candidates", user_id=user_id)
            return CycleOutcome.NO_CANDIDATES

        threshold = min_confidence_for_risk(config.risk_level)
        signals = self.generator.analyze_signals(candidates, config)
        for signal in signals:
            if signal.confidence >= threshold:
                await self._execute(user_id, signal)
                return CycleOutcome.TRADED

        logger.info("bot_no_signal", user_id=user_id, candidates=len(candidates), threshold=threshold)
        return CycleOutcome.NO_SIGNAL

    async def _execute(self, user_id: int, signal: TradeSignal) -> SimulatedTrade:
        token = signal.token
        result = self.simulator.simulate(signal.action, signal)

        # Buys return exactly what was spent, so only sells move profit/loss
        pnl = result.amount - signal.amount
        metadata = {
            "action": signal.action,
            "token_mint": token["mint"],
            "price": result.price,
            "confidence": signal.confidence,
            "reason": signal.reason,
        }
        if signal.action == "sell":
            metadata["profit"] = pnl

        await self.db.insert_transaction({
            "user_id": user_id,
            "type": "trade",
            "amount": signal.amount,
            "token": token.get("symbol") or "SOL",
            "signature": result.signature,
            "status": "confirmed",
            "metadata": metadata,
        })
        # No rollback if this fails after the ledger insert
        await self.db.record_bot_trade(
            user_id,
            profit=pnl if pnl > 0 else 0.0,
            loss=-pnl if pnl < 0 else 0.0,
        )

        logger.info(
            "bot_trade_executed",
            user_id=user_id,
            action=signal.action,
            token=token.get("symbol"),
            amount=signal.amount,
            price=f"{result.price:.10f}",
            confidence=signal.confidence,
            signature=result.signature,
        )
        return result
