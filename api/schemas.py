"""
Request bodies for the REST API.

Auth and wallet bodies keep every field optional so the services can answer
with their own messages ("Email, password and username are required", ...).
Bot configuration bodies reject unknown keys.
"""

from pydantic import BaseModel, ConfigDict

from trader.bot_config import RiskLevel


class RegisterRequest(BaseModel):
    email: str | None = None
    password: str | None = None
    username: str | None = None


class LoginRequest(BaseModel):
    email: str | None = None
    password: str | None = None


class ProfileUpdate(BaseModel):
    username: str | None = None


class WithdrawRequest(BaseModel):
    to_address: str | None = None
    amount: float | None = None


class ValidateAddressRequest(BaseModel):
    address: str | None = None


class StrategyConfigIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    risk_level: RiskLevel | None = None
    auto_reinvest: bool | None = None
    min_liquidity: float | None = None
    max_position_size: float | None = None


class BotConfigUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    investment_amount: float | None = None
    stop_loss: float | None = None
    take_profit: float | None = None
    slippage: float | None = None
    max_trades: int | None = None
    target_token: str | None = None
    configuration: StrategyConfigIn | None = None
