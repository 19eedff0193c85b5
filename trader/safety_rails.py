"""
Safety Rails
=============
Hard limits on what a bot may do and what a configuration may contain.

The rails:
1. Configuration ranges: investment in (0, 100] SOL, stop loss 0-100%,
   take profit > 0%, slippage 0.1-50%, max trades 1-100
2. Start check: wallet must hold at least one investment_amount
3. Cycle gate: inactive bots do nothing, bots at max_trades do nothing
4. Reset check: counters can only be zeroed while the bot is stopped
"""

from typing import Any

from trader.bot_config import BotConfig, StrategyConfig
from utils.errors import InsufficientBalanceError, InvalidStateError, ValidationError
from utils.logger import get_logger

logger = get_logger(__name__)

# (column, lower bound, lower inclusive, upper bound, message)
CONFIG_RANGES = (
    ("investment_amount", 0, False, 100, "investment_amount must be between 0.01 and 100 SOL"),
    ("stop_loss", 0, True, 100, "stop_loss must be between 0% and 100%"),
    ("take_profit", 0, False, None, "take_profit must be greater than 0%"),
    ("slippage", 0.1, True, 50, "slippage must be between 0.1% and 50%"),
    ("max_trades", 1, True, 100, "max_trades must be between 1 and 100"),
)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


class SafetyRails:
    """
    Usage:
        rails = SafetyRails()
        can_run, reason = rails.pre_cycle_check(config)
        columns = rails.validate_config_update(updates, current)
    """

    def pre_cycle_check(self, config: BotConfig | None) -> tuple[bool, str]:
        """
        Gate run at the top of every bot cycle.

        Returns:
            (can_run, reason): True if the cycle may look for a trade
        """
        if config is None or not config.is_active:
            return False, "Bot is not active"

        # Reaching the limit doesn't stop the bot, it just idles
        if config.trade_limit_reached:
            return False, f"Max trades reached: {config.current_trades}/{config.max_trades}"

        return True, ""

    def check_start(self, config: BotConfig, balance_sol: float) -> None:
        if balance_sol < config.investment_amount:
            logger.warning(
                "BOT_START_BLOCKED",
                user_id=config.user_id,
                balance=f"{balance_sol:.4f} SOL",
                required=f"{config.investment_amount} SOL",
            )
            raise InsufficientBalanceError(
                f"Insufficient balance. Required: {config.investment_amount} SOL, available: {balance_sol} SOL"
            )

    def check_reset(self, config: BotConfig) -> None:
        if config.is_active:
            logger.warning("BOT_RESET_BLOCKED", user_id=config.user_id, reason="bot is active")
            raise InvalidStateError("Stop the bot before resetting its trades")

    def validate_config_update(self, updates: dict[str, Any], current: BotConfig) -> dict[str, Any]:
        """
        Check a configuration update and return the columns to write.

        Only keys present in `updates` are checked. A "configuration" object is
        merged onto the current strategy, and unknown strategy keys are rejected.
        Raises ValidationError on the first problem.
        """
        columns: dict[str, Any] = {}

        for key, low, low_inclusive, high, message in CONFIG_RANGES:
            if updates.get(key) is None:
                continue
            value = updates[key]
            if not _is_number(value):
                raise ValidationError(message)
            too_low = value < low if low_inclusive else value <= low
            too_high = high is not None and value > high
            if too_low or too_high:
                logger.warning("CONFIG_OUT_OF_RANGE", user_id=current.user_id, field=key, value=value)
                raise ValidationError(message)
            columns[key] = value

        if updates.get("max_trades") is not None and not float(updates["max_trades"]).is_integer():
            raise ValidationError("max_trades must be a whole number")
        if "max_trades" in columns:
            columns["max_trades"] = int(columns["max_trades"])

        if updates.get("target_token") is not None:
            columns["target_token"] = updates["target_token"]

        if updates.get("configuration") is not None:
            strategy = StrategyConfig.from_dict(updates["configuration"], base=current.strategy)
            columns.update(strategy.to_dict())

        return columns
