"""Synthetic market-data and order event generator with chaos injection."""

from __future__ import annotations

import random
import time
from typing import Any

from tradeops.core.types import (
    MarketDataEvent,
    MarketDataEventType,
    OrderEvent,
    OrderEventType,
    OrderSide,
    OrderStatus,
)

DEFAULT_PRICES: dict[str, float] = {
    "BTC/USD": 45000.0,
    "ETH/USD": 2500.0,
    "SOL/USD": 100.0,
    "AAPL": 180.0,
    "TSLA": 250.0,
}

HEARTBEAT_SYMBOL = "SYSTEM"
REJECT_REASON = "INSUFFICIENT_MARGIN"

# 5 bps half-spread; 0.1% max step per tick.
_SPREAD = 0.0005
_STEP = 0.001


class MarketSimulator:
    """Random-walk quote/trade generator for drills and load tests.

    Chaos switches degrade the generated stream:

    - latency spike: every event reports the configured latency
    - stale data: consumers should stop delivering market data
    - rejects: orders are rejected with the configured probability

    Pass ``seed`` for a reproducible stream.
    """

    def __init__(
        self,
        seed: int | None = None,
        prices: dict[str, float] | None = None,
        message_rate: float = 20.0,
    ) -> None:
        self._rng = random.Random(seed)
        self._prices = dict(prices or DEFAULT_PRICES)
        self._symbols = list(self._prices)
        self._message_rate = message_rate
        self._order_seq = 0

        self._latency_spike_ms: float | None = None
        self._stale_data = False
        self._reject_rate: float | None = None

    @property
    def rng(self) -> random.Random:
        return self._rng

    @property
    def stale_data(self) -> bool:
        return self._stale_data

    def price(self, symbol: str) -> float:
        return self._prices[symbol]

    # ── Chaos switches ──────────────────────────────────────────

    def enable_latency_spike(self, latency_ms: float) -> None:
        if latency_ms < 0:
            raise ValueError(f"latency_ms must be >= 0, got {latency_ms}")
        self._latency_spike_ms = latency_ms

    def disable_latency_spike(self) -> None:
        self._latency_spike_ms = None

    def enable_stale_data(self) -> None:
        self._stale_data = True

    def disable_stale_data(self) -> None:
        self._stale_data = False

    def enable_rejects(self, rate: float) -> None:
        if not 0 <= rate <= 1:
            raise ValueError(f"reject rate must be within [0, 1], got {rate}")
        self._reject_rate = rate

    def disable_rejects(self) -> None:
        self._reject_rate = None

    # ── Generation ──────────────────────────────────────────────

    def generate_market_data(self, now: float | None = None) -> MarketDataEvent:
        """One market-data message: ~10% heartbeats, ~30% trades, the rest quotes."""
        now = time.time() if now is None else now
        symbol = self._rng.choice(self._symbols)
        current = self._prices[symbol]
        new_price = current + (self._rng.random() - 0.5) * current * _STEP
        self._prices[symbol] = new_price

        spread = new_price * _SPREAD
        latency = self._latency(lo=1.0, span=10.0)

        if self._rng.random() < 0.1:
            return MarketDataEvent(
                type=MarketDataEventType.HEARTBEAT,
                symbol=HEARTBEAT_SYMBOL,
                timestamp=now,
                latency_ms=latency,
            )
        if self._rng.random() < 0.3:
            return MarketDataEvent(
                type=MarketDataEventType.TRADE,
                symbol=symbol,
                timestamp=now,
                price=new_price,
                volume=float(self._rng.randint(1, 100)),
                latency_ms=latency,
            )
        return MarketDataEvent(
            type=MarketDataEventType.QUOTE,
            symbol=symbol,
            timestamp=now,
            bid=new_price - spread,
            ask=new_price + spread,
            latency_ms=latency,
        )

    def generate_order_event(
        self, order_id: str | None = None, now: float | None = None,
    ) -> OrderEvent:
        """One order acknowledgement, or a rejection when reject chaos fires."""
        now = time.time() if now is None else now
        if order_id is None:
            self._order_seq += 1
            order_id = f"ORD-{int(now * 1000)}-{self._order_seq}"

        symbol = self._rng.choice(self._symbols)
        side = OrderSide.BUY if self._rng.random() < 0.5 else OrderSide.SELL
        quantity = float(self._rng.randint(1, 100))
        latency = self._latency(lo=5.0, span=20.0)

        if self._reject_rate is not None and self._rng.random() < self._reject_rate:
            return OrderEvent(
                type=OrderEventType.REJECT,
                order_id=order_id,
                symbol=symbol,
                timestamp=now,
                side=side,
                quantity=quantity,
                status=OrderStatus.REJECTED,
                latency_ms=latency,
                reject_reason=REJECT_REASON,
            )
        return OrderEvent(
            type=OrderEventType.ACK,
            order_id=order_id,
            symbol=symbol,
            timestamp=now,
            side=side,
            quantity=quantity,
            price=self._prices[symbol],
            status=OrderStatus.ACKNOWLEDGED,
            latency_ms=latency,
        )

    def status(self) -> dict[str, Any]:
        return {
            "message_rate": self._message_rate,
            "chaos": {
                "latency_spike_ms": self._latency_spike_ms or 0,
                "stale_data": self._stale_data,
                "reject_rate": self._reject_rate or 0,
            },
        }

    def _latency(self, lo: float, span: float) -> float:
        if self._latency_spike_ms is not None:
            return self._latency_spike_ms
        return self._rng.random() * span + lo
