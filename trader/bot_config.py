"""
Bot Configuration
=================
Typed view of a `bot_configs` row.

The strategy block (risk level, auto-reinvest, liquidity floor, position cap)
is a closed set of keys: anything else sent by a client is rejected with a
ValidationError instead of being stored.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from utils.errors import ValidationError


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


# Values a new bot starts with (signup and lazy creation)
DEFAULT_BOT_CONFIG: dict[str, Any] = {
    "investment_amount": 0.1,
    "stop_loss": 10.0,
    "take_profit": 20.0,
    "slippage": 5.0,
    "max_trades": 10,
    "risk_level": RiskLevel.MEDIUM.value,
    "auto_reinvest": False,
    "min_liquidity": 1000.0,
    "max_position_size": 5.0,
}


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


@dataclass
class StrategyConfig:
    risk_level: RiskLevel = RiskLevel.MEDIUM
    auto_reinvest: bool = False
    min_liquidity: float = 1000.0
    max_position_size: float = 5.0

    KNOWN_KEYS = ("risk_level", "auto_reinvest", "min_liquidity", "max_position_size")

    @classmethod
    def from_dict(cls, data: dict[str, Any], base: "StrategyConfig | None" = None) -> "StrategyConfig":
        """
        Build a strategy from client input, starting from `base` (or defaults)
        and overriding only the keys present in `data`.
        """
        if not isinstance(data, dict):
            raise ValidationError("configuration must be an object")

        unknown = sorted(set(data) - set(cls.KNOWN_KEYS))
        if unknown:
            raise ValidationError(f"Unknown configuration keys: {', '.join(unknown)}")

        strategy = cls(**asdict(base)) if base else cls()

        if "risk_level" in data:
            try:
                strategy.risk_level = RiskLevel(data["risk_level"])
            except ValueError:
                raise ValidationError("risk_level must be one of: low, medium, high") from None
        if "auto_reinvest" in data:
            if not isinstance(data["auto_reinvest"], bool):
                raise ValidationError("auto_reinvest must be true or false")
            strategy.auto_reinvest = data["auto_reinvest"]
        if "min_liquidity" in data:
            if not _is_number(data["min_liquidity"]) or data["min_liquidity"] < 0:
                raise ValidationError("min_liquidity must be a number >= 0")
            strategy.min_liquidity = float(data["min_liquidity"])
        if "max_position_size" in data:
            if not _is_number(data["max_position_size"]) or data["max_position_size"] <= 0:
                raise ValidationError("max_position_size must be a number > 0")
            strategy.max_position_size = float(data["max_position_size"])

        return strategy

    def to_dict(self) -> dict[str, Any]:
        return {
            "risk_level": self.risk_level.value,
            "auto_reinvest": self.auto_reinvest,
            "min_liquidity": self.min_liquidity,
            "max_position_size": self.max_position_size,
        }


@dataclass
class BotConfig:
    user_id: int
    investment_amount: float
    stop_loss: float
    take_profit: float
    slippage: float = 5.0
    max_trades: int = 10
    is_active: bool = False
    current_trades: int = 0
    total_profit: float = 0.0
    total_loss: float = 0.0
    last_trade_at: datetime | None = None
    strategy: StrategyConfig = field(default_factory=StrategyConfig)
    target_token: str | None = None
    id: int | None = None
    created_at: str | None = None
    updated_at: str | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "BotConfig":
        """Convert a `bot_configs` row (SQLite ints for booleans, ISO strings for dates)."""
        last_trade_at = row.get("last_trade_at")
        return cls(
            id=row.get("id"),
            user_id=row["user_id"],
            is_active=bool(row.get("is_active")),
            target_token=row.get("target_token"),
            investment_amount=float(row["investment_amount"]),
            stop_loss=float(row["stop_loss"]),
            take_profit=float(row["take_profit"]),
            slippage=float(row.get("slippage") or 0),
            max_trades=int(row.get("max_trades") or 0),
            current_trades=int(row.get("current_trades") or 0),
            total_profit=float(row.get("total_profit") or 0),
            total_loss=float(row.get("total_loss") or 0),
            last_trade_at=datetime.fromisoformat(last_trade_at) if last_trade_at else None,
            strategy=StrategyConfig(
                risk_level=RiskLevel(row.get("risk_level") or RiskLevel.MEDIUM.value),
                auto_reinvest=bool(row.get("auto_reinvest")),
                min_liquidity=float(row.get("min_liquidity") or 0),
                max_position_size=float(row.get("max_position_size") or 0),
            ),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )

    @property
    def risk_level(self) -> RiskLevel:
        return self.strategy.risk_level

    @property
    def trade_limit_reached(self) -> bool:
        return self.current_trades >= self.max_trades

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "is_active": self.is_active,
            "target_token": self.target_token,
            "investment_amount": self.investment_amount,
            "stop_loss": self.stop_loss,
            "take_profit": self.take_profit,
            "slippage": self.slippage,
            "max_trades": self.max_trades,
            "current_trades": self.current_trades,
            "total_profit": self.total_profit,
            "total_loss": self.total_loss,
            "last_trade_at": self.last_trade_at.isoformat() if self.last_trade_at else None,
            "configuration": self.strategy.to_dict(),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }
