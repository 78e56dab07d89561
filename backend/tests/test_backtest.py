import pytest
from tradedesk.services.backtest import BacktestTrade, run_ma_cross, summarize

CLOSES = [10, 10, 10, 9, 8, 12, 14, 16, 10, 6, 4]


def _candles(closes):
    return [{"timestamp": i, "close": c} for i, c in enumerate(closes)]


def test_ma_cross_trades_each_crossover():
    trades = run_ma_cross(_candles(CLOSES), fast_period=2, slow_period=3)

    assert [t.type for t in trades] == ["sell", "buy", "sell"]
    assert [(t.entry_timestamp, t.exit_timestamp) for t in trades] == [(3, 5), (5, 8), (8, 10)]
    assert [t.profit for t in trades] == [-3.0, -2.0, 6.0]
    assert trades[0].reason == "Exit Short (Golden Cross)"
    assert trades[1].reason == "Exit Long (Death Cross)"
    assert trades[2].reason == "Entry Short (Death Cross) (End of Data)"


def test_ma_cross_needs_enough_data_and_ordered_periods():
    assert run_ma_cross(_candles([1, 2, 3]), fast_period=2, slow_period=5) == []
    assert run_ma_cross(_candles(CLOSES), fast_period=3, slow_period=3) == []


def test_summarize():
    trades = run_ma_cross(_candles(CLOSES), fast_period=2, slow_period=3)
    summary = summarize(trades, initial_capital=1000.0)
    assert summary["net_profit"] == pytest.approx(1.0)
    assert summary["final_capital"] == pytest.approx(1001.0)
    assert summary["net_profit_percentage"] == pytest.approx(0.1)
    assert summary["total_trades"] == 3
    assert summary["winning_trades"] == 1
    assert summary["losing_trades"] == 2
    assert summary["win_rate"] == pytest.approx(33.3333, rel=1e-4)


def test_summarize_no_trades():
    summary = summarize([])
    assert summary["final_capital"] == 10000.0
    assert summary["win_rate"] == 0.0


def test_open_trade_has_no_profit():
    trade = BacktestTrade("buy", 0, 100.0)
    assert trade.profit == 0.0
    assert trade.to_dict()["profit"] == 0.0
