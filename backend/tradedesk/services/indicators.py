import math
from typing import List, Optional, Tuple


def calc_sma_series(values: List[float], period: int) -> List[Optional[float]]:
    """Simple moving average aligned with the input.

    The first ``period - 1`` entries are ``None``. An invalid period or too
    little data gives a list of ``None``.
    """
    result: List[Optional[float]] = [None] * len(values)
    if period <= 0 or period > len(values):
        return result
    window_sum = sum(values[:period])
    result[period - 1] = window_sum / period
    for i in range(period, len(values)):
        window_sum += values[i] - values[i - period]
        result[i] = window_sum / period
    return result


def calc_ema_series(values: List[float], period: int) -> List[Optional[float]]:
    """Exponential moving average seeded with the SMA of the first ``period`` values."""
    result: List[Optional[float]] = [None] * len(values)
    if period <= 0 or period > len(values):
        return result
    multiplier = 2.0 / (period + 1)
    ema = sum(values[:period]) / period
    result[period - 1] = ema
    for i in range(period, len(values)):
        ema = (values[i] - ema) * multiplier + ema
        result[i] = ema
    return result


def calc_ma(closes: List[float], period: int) -> float:
    """Simple moving average of the last `period` prices."""
    if len(closes) < period:
        return closes[-1] if closes else 0.0
    return sum(closes[-period:]) / period


def calc_rsi(closes: List[float], period: int = 14) -> float:
    """RSI over the last `period` price changes, simple averages.
    Returns 50.0 with insufficient data, 100.0 when there were no losses."""
    if len(closes) <= period:
        return 50.0
    deltas = [closes[i] - closes[i - 1] for i in range(len(closes) - period, len(closes))]
    avg_gain = sum(d for d in deltas if d > 0) / period
    avg_loss = sum(-d for d in deltas if d < 0) / period
    if avg_loss == 0:
        return 100.0
    rs = avg_gain / avg_loss
    return 100.0 - (100.0 / (1.0 + rs))


def calc_bollinger(
    closes: List[float], period: int = 20, std_dev: float = 2.0
) -> Tuple[float, float, float]:
    """Return (lower, middle, upper). Falls back to +-2% around the last price."""
    if not closes:
        return (0.0, 0.0, 0.0)
    if len(closes) < period:
        last = closes[-1]
        return (last * 0.98, last, last * 1.02)
    window = closes[-period:]
    middle = sum(window) / period
    std = math.sqrt(sum((p - middle) ** 2 for p in window) / period)
    return (middle - std_dev * std, middle, middle + std_dev * std)


def calc_macd(
    closes: List[float], fast: int = 12, slow: int = 26, signal: int = 9
) -> Tuple[float, float, float]:
    """(macd, signal, histogram) for the latest bar.

    The signal line is the EMA of the MACD line; until there are enough MACD
    values for it, the signal equals the MACD and the histogram is 0.
    """
    if len(closes) < slow:
        return (0.0, 0.0, 0.0)
    fast_ema = calc_ema_series(closes, fast)
    slow_ema = calc_ema_series(closes, slow)
    macd_line = [f - s for f, s in zip(fast_ema, slow_ema) if f is not None and s is not None]
    macd = macd_line[-1]
    signal_series = calc_ema_series(macd_line, signal)
    signal_value = signal_series[-1] if signal_series and signal_series[-1] is not None else macd
    return (macd, signal_value, macd - signal_value)


def calc_stochastic(
    highs: List[float], lows: List[float], closes: List[float],
    k_period: int = 14, d_period: int = 3,
) -> Tuple[float, float]:
    """Stochastic oscillator (%K, %D).

    %D is the mean of the last `d_period` %K values (fewer when the history
    is short). Returns (50.0, 50.0) with insufficient data.
    """
    n = len(closes)
    if n < k_period:
        return (50.0, 50.0)

    def k_at(end: int) -> float:
        highest = max(highs[end - k_period + 1:end + 1])
        lowest = min(lows[end - k_period + 1:end + 1])
        if highest == lowest:
            return 50.0
        return (closes[end] - lowest) / (highest - lowest) * 100.0

    ks = [k_at(i) for i in range(max(k_period - 1, n - d_period), n)]
    return (ks[-1], sum(ks) / len(ks))
