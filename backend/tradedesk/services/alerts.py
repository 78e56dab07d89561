import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tradedesk.database import atomic
from tradedesk.models.alert import PriceAlert, AlertCondition
from tradedesk.services.analytics import cumulative_pnl, daily_pnl
from tradedesk.services.wallets import to_decimal

logger = logging.getLogger(__name__)

PROFIT_MILESTONES = [100, 500, 1000, 5000, 10000]
WIN_RATE_MILESTONES = [60, 70, 80, 90]
WIN_RATE_MIN_TRADES = 10
STREAK_MILESTONES = (5, 10)
DRAWDOWN_THRESHOLDS = [10, 20, 30]


@dataclass
class Milestone:
    kind: str
    value: float
    title: str
    details: str
    data: dict = field(default_factory=dict)


def evaluate_price_alert(alert: PriceAlert, current_price) -> bool:
    if alert.is_triggered:
        return False
    price = to_decimal(current_price)
    target = to_decimal(alert.price)
    if alert.condition == AlertCondition.above:
        return price >= target
    if alert.condition == AlertCondition.below:
        return price <= target
    if alert.condition == AlertCondition.percent_change:
        if target == 0 or alert.percent_change is None:
            return False
        change = abs((price - target) / target * Decimal(100))
        return change >= to_decimal(alert.percent_change)
    return False


async def check_price_alerts(db: AsyncSession, symbol: str, current_price) -> List[PriceAlert]:
    """Mark every armed alert on ``symbol`` that ``current_price`` satisfies.

    Recurring alerts are re-armed as a new alert referencing the current
    price. Returns the alerts that fired.
    """
    price = to_decimal(current_price)
    async with atomic(db):
        alerts = (await db.scalars(
            select(PriceAlert)
            .where(PriceAlert.symbol == symbol, PriceAlert.is_triggered.is_(False))
            .with_for_update()
        )).all()
        fired = []
        now = datetime.now(timezone.utc)
        for alert in alerts:
            if not evaluate_price_alert(alert, price):
                continue
            alert.is_triggered = True
            alert.triggered_at = now
            fired.append(alert)
            if alert.is_recurring:
                db.add(PriceAlert(
                    user_id=alert.user_id,
                    symbol=alert.symbol,
                    condition=alert.condition,
                    price=price,
                    percent_change=alert.percent_change,
                    is_recurring=True,
                    is_triggered=False,
                ))
        await db.flush()
    if fired:
        logger.info("%d price alerts fired for %s at %s", len(fired), symbol, price)
    return fired


def _consecutive_wins(positions: Sequence) -> int:
    recent = sorted(positions, key=lambda p: p.exit_time.replace(tzinfo=None), reverse=True)[:10]
    streak = 0
    for p in recent:
        if float(p.profit_loss) > 0:
            streak += 1
        else:
            break
    return streak


def detect_milestones(positions: Sequence) -> List[Milestone]:
    """Performance milestones reached by a user's closed positions."""
    closed = [p for p in positions if p.profit_loss is not None and p.exit_time is not None]
    if not closed:
        return []

    found: List[Milestone] = []
    total_profit = sum(float(p.profit_loss) for p in closed)
    total = len(closed)
    wins = sum(1 for p in closed if float(p.profit_loss) > 0)
    win_rate = wins / total * 100

    for milestone in PROFIT_MILESTONES:
        if milestone <= total_profit < milestone * 1.1:
            found.append(Milestone(
                "profit_milestone", total_profit,
                f"Profit milestone: ${milestone:,.2f}",
                f"You've reached a profit milestone of ${milestone:,.2f}",
                {"milestone": milestone, "period": "all-time"},
            ))
            break

    if total >= WIN_RATE_MIN_TRADES:
        for milestone in WIN_RATE_MILESTONES:
            if milestone <= win_rate < milestone + 5:
                found.append(Milestone(
                    "win_rate", win_rate,
                    f"Win rate reached {milestone}%",
                    f"Your win rate has reached {milestone}% with {wins} winning trades "
                    f"out of {total} total trades",
                    {"milestone": milestone, "total_trades": total, "winning_trades": wins},
                ))
                break

    streak = _consecutive_wins(closed)
    if streak in STREAK_MILESTONES:
        found.append(Milestone(
            "win_streak", streak,
            f"{streak} winning trades in a row",
            f"You've achieved {streak} consecutive winning trades!",
        ))

    cumulative = [v for _, v in cumulative_pnl(daily_pnl(closed))]
    peak = max([0.0] + cumulative)
    if peak > 0:
        drawdown = (peak - cumulative[-1]) / peak * 100
        for threshold in DRAWDOWN_THRESHOLDS:
            if threshold <= drawdown < threshold + 5:
                found.append(Milestone(
                    "drawdown_alert", drawdown,
                    f"Drawdown alert: {threshold}%",
                    f"Your account is {drawdown:.1f}% below its peak cumulative profit",
                    {"threshold": threshold, "peak": peak, "current": cumulative[-1]},
                ))
                break

    return found
