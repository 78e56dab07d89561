import math
import statistics
from datetime import date, datetime, timezone
from typing import Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tradedesk.models.user import User
from tradedesk.models.trading import TradingPosition, PositionStatus

TRADING_DAYS = 252

DailyPnL = List[Tuple[date, float]]


def _closed(positions: Iterable) -> list:
    return [p for p in positions if p.profit_loss is not None and p.exit_time is not None]


def _naive(dt: datetime) -> datetime:
    return dt.replace(tzinfo=None) if dt.tzinfo is not None else dt


def _epoch_ms(dt: datetime) -> int:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp() * 1000)


def daily_pnl(positions: Iterable) -> DailyPnL:
    """Sum realized P&L per exit date, ascending by date."""
    totals: dict = {}
    for p in _closed(positions):
        day = p.exit_time.date()
        totals[day] = totals.get(day, 0.0) + float(p.profit_loss)
    return sorted(totals.items())


def cumulative_pnl(daily: DailyPnL) -> DailyPnL:
    running = 0.0
    result = []
    for day, pnl in daily:
        running += pnl
        result.append((day, running))
    return result


def sharpe_ratio(returns: Sequence[float]) -> float:
    """Annualized mean/stdev of daily returns; population stdev, 0 when flat."""
    if not returns:
        return 0.0
    std = statistics.pstdev(returns)
    if std == 0:
        return 0.0
    return statistics.fmean(returns) / std * math.sqrt(TRADING_DAYS)


def sortino_ratio(returns: Sequence[float]) -> float:
    """Like Sharpe, but divides by the root mean square of the negative returns only."""
    negatives = [r for r in returns if r < 0]
    if not negatives:
        return 0.0
    downside = math.sqrt(sum(r * r for r in negatives) / len(negatives))
    if downside == 0:
        return 0.0
    return statistics.fmean(returns) / downside * math.sqrt(TRADING_DAYS)


def max_drawdown(cumulative: DailyPnL) -> dict:
    """Largest decline from a running peak (starting at 0) of the cumulative P&L.

    Ties keep the first occurrence. ``recovery_date`` is the first later date
    where the curve is back at the drawdown's peak, ``None`` if it never is.
    """
    result = {
        "value": 0.0,
        "percentage": 0.0,
        "start_date": None,
        "end_date": None,
        "recovery_date": None,
        "duration_days": 0,
    }
    if not cumulative:
        return result

    peak = 0.0
    peak_date = cumulative[0][0]
    dd_peak = None
    for day, value in cumulative:
        if value > peak:
            peak, peak_date = value, day
        else:
            drawdown = peak - value
            if drawdown > result["value"]:
                result.update(
                    value=drawdown,
                    percentage=(drawdown / peak * 100) if peak > 0 else 0.0,
                    start_date=peak_date,
                    end_date=day,
                    recovery_date=None,
                    duration_days=(day - peak_date).days,
                )
                dd_peak = peak
                continue
        if dd_peak is not None and result["recovery_date"] is None and value >= dd_peak:
            result["recovery_date"] = day
    return result


def value_at_risk(returns: Sequence[float]) -> dict:
    """Historical VaR from daily returns at 95% and 99%, plus a sqrt(5) weekly scaling."""
    if not returns:
        return {"daily_95": 0.0, "daily_99": 0.0, "weekly_95": 0.0}
    ordered = sorted(returns)
    n = len(ordered)
    daily_95 = abs(ordered[int(n * 0.05)])
    daily_99 = abs(ordered[int(n * 0.01)])
    return {
        "daily_95": daily_95,
        "daily_99": daily_99,
        "weekly_95": daily_95 * math.sqrt(5),
    }


def trade_statistics(positions: Iterable) -> dict:
    closed = _closed(positions)
    stats = {
        "total_trades": len(closed),
        "total_profit_loss": 0.0,
        "winning_trades": 0,
        "losing_trades": 0,
        "win_rate": 0.0,
        "profit_factor": None,
        "expectancy": 0.0,
        "average_win": 0.0,
        "average_loss": 0.0,
        "avg_profit_per_trade": 0.0,
        "avg_trade_duration_hours": 0.0,
    }
    if not closed:
        return stats

    pnls = [float(p.profit_loss) for p in closed]
    wins = [x for x in pnls if x > 0]
    losses = [x for x in pnls if x < 0]
    gross_profit = sum(wins)
    gross_loss = abs(sum(losses))
    total = len(pnls)

    stats["total_profit_loss"] = sum(pnls)
    stats["winning_trades"] = len(wins)
    stats["losing_trades"] = len(losses)
    stats["win_rate"] = len(wins) / total * 100
    if gross_loss > 0:
        stats["profit_factor"] = gross_profit / gross_loss
    elif gross_profit > 0:
        stats["profit_factor"] = math.inf
    stats["average_win"] = gross_profit / len(wins) if wins else 0.0
    stats["average_loss"] = gross_loss / len(losses) if losses else 0.0
    win_prob = len(wins) / total
    stats["expectancy"] = win_prob * stats["average_win"] - (1 - win_prob) * stats["average_loss"]
    stats["avg_profit_per_trade"] = stats["total_profit_loss"] / total

    durations = [
        (_naive(p.exit_time) - _naive(p.entry_time)).total_seconds()
        for p in closed if p.entry_time is not None
    ]
    if durations:
        stats["avg_trade_duration_hours"] = sum(durations) / len(durations) / 3600
    return stats


def equity_curve(positions: Iterable) -> List[list]:
    """``[exit timestamp in ms, cumulative P&L]`` pairs in exit order."""
    running = 0.0
    curve = []
    for p in sorted(_closed(positions), key=lambda p: _naive(p.exit_time)):
        running += float(p.profit_loss)
        curve.append([_epoch_ms(p.exit_time), running])
    return curve


async def closed_positions(db: AsyncSession, user: User) -> list:
    rows = await db.scalars(
        select(TradingPosition)
        .where(
            TradingPosition.user_id == user.id,
            TradingPosition.status == PositionStatus.CLOSED,
            TradingPosition.profit_loss.is_not(None),
            TradingPosition.exit_time.is_not(None),
        )
        .order_by(TradingPosition.exit_time.asc(), TradingPosition.id.asc())
    )
    return list(rows)


def _json_safe(value: Optional[float]):
    if value is not None and math.isinf(value):
        return "inf"
    return value


async def performance_report(db: AsyncSession, user: User) -> dict:
    positions = await closed_positions(db, user)
    daily = daily_pnl(positions)
    cumulative = cumulative_pnl(daily)
    stats = trade_statistics(positions)
    stats["profit_factor"] = _json_safe(stats["profit_factor"])
    return {
        "statistics": stats,
        "daily_pnl": [{"date": d.isoformat(), "pnl": v} for d, v in daily],
        "cumulative_pnl": [{"date": d.isoformat(), "pnl": v} for d, v in cumulative],
        "equity_curve": equity_curve(positions),
    }


async def risk_metrics(db: AsyncSession, user: User) -> dict:
    positions = await closed_positions(db, user)
    daily = daily_pnl(positions)
    returns = [v for _, v in daily]
    drawdown = max_drawdown(cumulative_pnl(daily))
    for key in ("start_date", "end_date", "recovery_date"):
        if drawdown[key] is not None:
            drawdown[key] = drawdown[key].isoformat()
    return {
        "sharpe_ratio": sharpe_ratio(returns),
        "sortino_ratio": sortino_ratio(returns),
        "max_drawdown": drawdown,
        "value_at_risk": value_at_risk(returns),
    }
