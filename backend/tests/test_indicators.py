import pytest
from tradedesk.services.indicators import (
    calc_rsi, calc_ma, calc_bollinger, calc_sma_series, calc_ema_series, calc_macd, calc_stochastic,
)

def test_calc_rsi_oversold():
    # Steadily declining prices → RSI should be low
    prices = [float(100 - i) for i in range(16)]
    rsi = calc_rsi(prices, period=14)
    assert rsi < 30

def test_calc_rsi_overbought_without_losses_is_100():
    prices = [float(100 + i) for i in range(16)]
    assert calc_rsi(prices, period=14) == 100.0

def test_calc_rsi_neutral_returns_50_on_insufficient_data():
    assert calc_rsi([100.0, 101.0], period=14) == 50.0
    # exactly `period` prices is still one change short
    assert calc_rsi([float(i) for i in range(14)], period=14) == 50.0

def test_calc_rsi_mixed_moves():
    # gains 2, losses 1 over the last 2 changes → RS 2 → RSI 66.67
    assert calc_rsi([10.0, 12.0, 11.0], period=2) == pytest.approx(66.6667, rel=1e-4)

def test_calc_ma():
    prices = [1.0, 2.0, 3.0, 4.0, 5.0]
    assert calc_ma(prices, period=3) == pytest.approx(4.0)  # avg of last 3: 3,4,5

def test_calc_ma_insufficient_data_returns_last():
    assert calc_ma([42.0], period=5) == 42.0
    assert calc_ma([], period=5) == 0.0

def test_calc_sma_series_is_aligned():
    assert calc_sma_series([1.0, 2.0, 3.0, 4.0], 2) == [None, 1.5, 2.5, 3.5]
    assert calc_sma_series([1.0], 3) == [None]

def test_calc_ema_series_seeded_with_sma():
    ema = calc_ema_series([2.0, 4.0, 6.0, 8.0], 3)
    assert ema[:2] == [None, None]
    assert ema[2] == pytest.approx(4.0)
    # multiplier 0.5: (8 - 4) * 0.5 + 4
    assert ema[3] == pytest.approx(6.0)

def test_calc_bollinger_buy_signal():
    # Price well below lower band → should be at or below lower band
    prices = [100.0] * 19 + [70.0]
    lower, middle, upper = calc_bollinger(prices, period=20, std_dev=2.0)
    assert prices[-1] <= lower

def test_calc_bollinger_sell_signal():
    prices = [100.0] * 19 + [130.0]
    lower, middle, upper = calc_bollinger(prices, period=20, std_dev=2.0)
    assert prices[-1] >= upper

def test_calc_bollinger_flat_prices_collapse_bands():
    lower, middle, upper = calc_bollinger([100.0] * 20, period=20, std_dev=2.0)
    assert lower == middle == upper == 100.0

def test_calc_bollinger_insufficient_data_uses_two_percent_band():
    lower, middle, upper = calc_bollinger([50.0], period=20)
    assert (lower, middle, upper) == (pytest.approx(49.0), 50.0, pytest.approx(51.0))

def test_calc_macd_rising_prices_positive():
    closes = [100.0 + i for i in range(40)]
    macd, signal, hist = calc_macd(closes)
    assert macd > 0
    assert hist == pytest.approx(macd - signal)

def test_calc_macd_insufficient_data():
    assert calc_macd([1.0] * 10) == (0.0, 0.0, 0.0)

def test_calc_stochastic_at_top_of_range():
    highs = [float(10 + i) for i in range(14)]
    lows = [float(i) for i in range(14)]
    closes = highs[:]
    k, d = calc_stochastic(highs, lows, closes, k_period=14, d_period=3)
    assert k == pytest.approx(100.0)
    assert d == pytest.approx(100.0)

def test_calc_stochastic_flat_and_short():
    assert calc_stochastic([5.0] * 14, [5.0] * 14, [5.0] * 14) == (50.0, 50.0)
    assert calc_stochastic([1.0], [1.0], [1.0]) == (50.0, 50.0)
