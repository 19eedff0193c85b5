"""
Trade Simulator
===============
Paper-trades a signal: no DEX, no on-chain transaction.

The executed price drifts from the token's catalog price by a random
variation in [-5%, +5%], then slippage is applied (1% when liquidity is
above 5,000, otherwise 5%). A sell returns the signal amount scaled by the
same variation, so sells are where profit and loss come from.

Pass a seeded random.Random and a fixed clock for reproducible results.
"""

import random
import time
from dataclasses import dataclass
from typing import Callable

from monitor.signal_generator import TradeSignal

# Max price drift either way
PRICE_VARIATION = 0.05
DEEP_LIQUIDITY = 5_000
LOW_SLIPPAGE = 0.01
HIGH_SLIPPAGE = 0.05


@dataclass
class SimulatedTrade:
    success: bool
    signature: str
    amount: float  # SOL
    price: float


class TradeSimulator:
    """
    Usage:
        simulator = TradeSimulator(rng=random.Random(42), clock=lambda: 1_700_000_000.0)
        result = simulator.simulate("buy", signal)
    """

    def __init__(self, rng: random.Random | None = None, clock: Callable[[], float] = time.time):
        self.rng = rng or random.Random()
        self.clock = clock

    def simulate(self, action: str, signal: TradeSignal) -> SimulatedTrade:
        variation = (self.rng.random() - 0.5) * 2 * PRICE_VARIATION
        price = (signal.token.get("price") or 0) * (1 + variation)

        liquidity = signal.token.get("liquidity") or 0
        slippage = LOW_SLIPPAGE if liquidity > DEEP_LIQUIDITY else HIGH_SLIPPAGE
        final_price = price * (1 + slippage if action == "buy" else 1 - slippage)

        amount = signal.amount * (1 + variation) if action == "sell" else signal.amount

        millis = int(self.clock() * 1000)
        signature = f"simulated_{action}_{millis}_{self.rng.getrandbits(32):08x}"

        return SimulatedTrade(success=True, signature=signature, amount=amount, price=final_price)
