"""Moving-average crossover backtesting over OHLC candles."""

import logging
from dataclasses import dataclass, asdict
from typing import List, Optional, Sequence

from tradedesk.services.indicators import calc_sma_series

logger = logging.getLogger(__name__)


@dataclass
class BacktestTrade:
    type: str
    entry_timestamp: object
    entry_price: float
    exit_timestamp: Optional[object] = None
    exit_price: Optional[float] = None
    reason: str = ""

    @property
    def profit(self) -> float:
        """One-unit P&L; 0 while the trade is still open."""
        if self.exit_price is None:
            return 0.0
        if self.type == "buy":
            return self.exit_price - self.entry_price
        return self.entry_price - self.exit_price

    def to_dict(self) -> dict:
        data = asdict(self)
        data["profit"] = self.profit
        return data


def run_ma_cross(
    candles: Sequence[dict], fast_period: int = 10, slow_period: int = 30
) -> List[BacktestTrade]:
    """Trade golden and death crosses of two simple moving averages.

    Each candle needs ``timestamp`` and ``close``. A golden cross closes any
    short and goes long; a death cross closes any long and goes short. The
    trade still open after the last candle is closed at that candle.
    """
    closes = [float(c["close"]) for c in candles]
    if len(closes) < slow_period or fast_period >= slow_period:
        logger.warning("Not enough data for MA cross (%d candles, slow period %d)", len(closes), slow_period)
        return []

    fast = calc_sma_series(closes, fast_period)
    slow = calc_sma_series(closes, slow_period)

    trades: List[BacktestTrade] = []
    position = "none"
    current: Optional[BacktestTrade] = None

    for i in range(slow_period, len(candles)):
        prev_fast, prev_slow = fast[i - 1], slow[i - 1]
        cur_fast, cur_slow = fast[i], slow[i]
        timestamp = candles[i]["timestamp"]
        price = closes[i]

        if prev_fast <= prev_slow and cur_fast > cur_slow and position != "long":
            if current is not None:
                current.exit_timestamp, current.exit_price = timestamp, price
                current.reason = "Exit Short (Golden Cross)"
                trades.append(current)
            position = "long"
            current = BacktestTrade("buy", timestamp, price, reason="Entry Long (Golden Cross)")
        elif prev_fast >= prev_slow and cur_fast < cur_slow and position != "short":
            if current is not None:
                current.exit_timestamp, current.exit_price = timestamp, price
                current.reason = "Exit Long (Death Cross)"
                trades.append(current)
            position = "short"
            current = BacktestTrade("sell", timestamp, price, reason="Entry Short (Death Cross)")

    if current is not None and current.exit_timestamp is None:
        current.exit_timestamp = candles[-1]["timestamp"]
        current.exit_price = closes[-1]
        current.reason += " (End of Data)"
        trades.append(current)

    logger.info("MA cross backtest produced %d trades", len(trades))
    return trades


def summarize(trades: Sequence[BacktestTrade], initial_capital: float = 10000.0) -> dict:
    net_profit = sum(t.profit for t in trades)
    wins = sum(1 for t in trades if t.profit > 0)
    losses = sum(1 for t in trades if t.profit < 0)
    total = len(trades)
    return {
        "initial_capital": initial_capital,
        "final_capital": initial_capital + net_profit,
        "net_profit": net_profit,
        "net_profit_percentage": (net_profit / initial_capital * 100) if initial_capital else 0.0,
        "total_trades": total,
        "winning_trades": wins,
        "losing_trades": losses,
        "win_rate": (wins / total * 100) if total else 0.0,
    }
