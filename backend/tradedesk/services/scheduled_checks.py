"""
Periodic jobs run by the scheduler and the CLI.

Each job walks its batch serially. A failure on one symbol, user or
position is logged and the batch continues; already committed work is kept.
"""

import logging

from sqlalchemy import select

from tradedesk.database import AsyncSessionLocal
from tradedesk.models.alert import PriceAlert
from tradedesk.models.trading import TradingPosition, PositionStatus
from tradedesk.services import alerts, margin, notifications
from tradedesk.services.analytics import closed_positions
from tradedesk.services.market_data import get_current_price
from tradedesk.models.user import User

logger = logging.getLogger(__name__)


async def run_price_alert_check(session_factory=None) -> int:
    factory = session_factory or AsyncSessionLocal
    async with factory() as db:
        symbols = (await db.scalars(
            select(PriceAlert.symbol).where(PriceAlert.is_triggered.is_(False)).distinct()
        )).all()

    fired_total = 0
    for symbol in symbols:
        try:
            price = await get_current_price(symbol)
            if price is None:
                logger.debug("No price for %s, skipping alerts", symbol)
                continue
            async with factory() as db:
                fired = await alerts.check_price_alerts(db, symbol, price)
                await db.commit()
            for alert in fired:
                await notifications.price_alert(alert, price, session_factory=factory)
            fired_total += len(fired)
        except Exception:
            logger.exception("Price alert check failed for %s", symbol)
    logger.info("Price alert check done: %d alerts fired", fired_total)
    return fired_total


async def run_milestone_check(session_factory=None) -> int:
    factory = session_factory or AsyncSessionLocal
    async with factory() as db:
        users = (await db.scalars(select(User).order_by(User.id))).all()

    sent = 0
    for user in users:
        try:
            async with factory() as db:
                positions = await closed_positions(db, user)
            for milestone in alerts.detect_milestones(positions):
                await notifications.performance_milestone(user.id, milestone, session_factory=factory)
                sent += 1
        except Exception:
            logger.exception("Milestone check failed for user %s", user.id)
    logger.info("Milestone check done: %d notifications", sent)
    return sent


async def run_position_check(session_factory=None) -> int:
    """Close OPEN positions whose stop-loss or take-profit is hit at the cached price."""
    factory = session_factory or AsyncSessionLocal
    async with factory() as db:
        rows = (await db.execute(
            select(TradingPosition.id, TradingPosition.currency_pair).where(
                TradingPosition.status == PositionStatus.OPEN,
                (TradingPosition.stop_loss.is_not(None)) | (TradingPosition.take_profit.is_not(None)),
            ).order_by(TradingPosition.id)
        )).all()

    prices = {}
    closed = 0
    for position_id, pair in rows:
        try:
            if pair not in prices:
                prices[pair] = await get_current_price(pair)
            price = prices[pair]
            if price is None:
                continue
            async with factory() as db:
                position = await db.get(TradingPosition, position_id)
                reason = margin.check_stop_loss_take_profit(position, price)
                if reason is None:
                    continue
                tw = await margin.lock_trading_wallet(db, position.trading_wallet_id)
                result = await margin.close_position(db, tw, position, price, reason=reason)
                await db.commit()
            await notifications.trade_closed(result.position, session_factory=factory)
            closed += 1
        except Exception:
            logger.exception("Position check failed for position %s", position_id)
    logger.info("Position check done: %d positions closed", closed)
    return closed
