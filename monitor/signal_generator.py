"""
Signal Generator
================
Turns scored candidate tokens into trade signals for one bot.

For each token:
1. Score sets the base confidence (>=80: 90, >=60: 70, >=40: 50, else no signal)
2. The bot's risk level shifts it (low -20, high +10)
3. Penalties: liquidity below the bot's floor (-30), token under 1 hour old (-40)
4. Below 30 confidence there is no signal

The bot cycle then acts on the best signal that clears the risk level's
minimum confidence (see min_confidence_for_risk).

Only buy signals are produced. There is no open-position tracking to
decide when to sell.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from discovery.token_filter import TokenFilter, token_age_hours
from trader.bot_config import BotConfig, RiskLevel

RISK_ADJUSTMENT = {
    RiskLevel.LOW: -20,
    RiskLevel.MEDIUM: 0,
    RiskLevel.HIGH: 10,
}

MIN_CONFIDENCE = {
    RiskLevel.LOW: 80,
    RiskLevel.MEDIUM: 60,
    RiskLevel.HIGH: 40,
}

# Signals below this confidence are discarded outright
CONFIDENCE_FLOOR = 30


def min_confidence_for_risk(risk_level: Any) -> int:
    """Minimum confidence a signal needs before a bot at this risk level acts on it."""
    try:
        return MIN_CONFIDENCE[RiskLevel(risk_level)]
    except ValueError:
        return MIN_CONFIDENCE[RiskLevel.MEDIUM]


@dataclass
class TradeSignal:
    action: str  # "buy" or "sell"
    token: dict
    amount: float  # SOL
    confidence: int  # 0-100
    reason: str


class SignalGenerator:
    """
    Usage:
        generator = SignalGenerator(token_filter)
        signal = generator.generate_signal(token, config)
        signals = generator.analyze_signals(tokens, config)
    """

    def __init__(self, token_filter: TokenFilter):
        self.token_filter = token_filter

    def generate_signal(
        self, token: dict, config: BotConfig, score: int | None = None, now: datetime | None = None
    ) -> TradeSignal | None:
        """Build a buy signal for `token`, or None if it isn't worth one."""
        if score is None:
            score = self.token_filter.score_token(token, now)

        if score >= 80:
            confidence, reason = 90, "very high score"
        elif score >= 60:
            confidence, reason = 70, "high score"
        elif score >= 40:
            confidence, reason = 50, "medium score"
        else:
            return None

        confidence += RISK_ADJUSTMENT.get(config.risk_level, 0)

        if (token.get("liquidity") or 0) < config.strategy.min_liquidity:
            confidence -= 30
            reason += " (low liquidity)"

        if token_age_hours(token, now) < 1:
            confidence -= 40
            reason += " (token too new)"

        if confidence < CONFIDENCE_FLOOR:
            return None

        return TradeSignal(
            action="buy",
            token=token,
            amount=config.investment_amount,
            confidence=min(confidence, 100),
            reason=reason,
        )

    def analyze_signals(self, tokens: list[dict], config: BotConfig, now: datetime | None = None) -> list[TradeSignal]:
        """Signals for every token that earns one, most confident first."""
        signals = []
        for token in tokens:
            signal = self.generate_signal(token, config, token.get("score"), now)
            if signal:
                signals.append(signal)
        signals.sort(key=lambda s: s.confidence, reverse=True)
        return signals
