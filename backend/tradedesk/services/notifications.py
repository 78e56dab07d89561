"""
Best-effort user notifications.

Notifications are written in their own session after the ledger change they
describe has committed. A failure here is logged and dropped; it never
touches the ledger and is not retried.
"""

import logging
from typing import Optional

from tradedesk.database import AsyncSessionLocal
from tradedesk.models.notification import Notification

logger = logging.getLogger(__name__)


async def notify(
    user_id: int,
    type: str,
    title: str,
    body: Optional[str] = None,
    data: Optional[dict] = None,
    session_factory=None,
) -> Optional[Notification]:
    factory = session_factory or AsyncSessionLocal
    try:
        async with factory() as db:
            notification = Notification(user_id=user_id, type=type, title=title, body=body, data=data)
            db.add(notification)
            await db.commit()
            return notification
    except Exception:
        logger.exception("Failed to store %s notification for user %s", type, user_id)
        return None


async def trade_executed(position, session_factory=None):
    side = position.trade_type.value
    return await notify(
        position.user_id,
        "trade_executed",
        f"{side} {position.currency_pair} executed",
        f"{side} {position.quantity} {position.currency_pair} at {position.entry_price}",
        {"position_id": position.id, "currency_pair": position.currency_pair},
        session_factory=session_factory,
    )


async def trade_closed(position, session_factory=None):
    return await notify(
        position.user_id,
        "trade_closed",
        f"{position.currency_pair} position closed",
        f"Closed at {position.exit_price} ({position.close_reason}), P&L {position.profit_loss}",
        {
            "position_id": position.id,
            "profit_loss": str(position.profit_loss),
            "reason": position.close_reason,
        },
        session_factory=session_factory,
    )


async def price_alert(alert, current_price, session_factory=None):
    return await notify(
        alert.user_id,
        "price_alert",
        f"{alert.symbol} price alert",
        f"{alert.symbol} is at {current_price} ({alert.condition} {alert.price})",
        {"alert_id": alert.id, "symbol": alert.symbol, "price": str(current_price)},
        session_factory=session_factory,
    )


async def performance_milestone(user_id: int, milestone, session_factory=None):
    return await notify(
        user_id,
        "performance_milestone",
        milestone.title,
        milestone.details,
        {"kind": milestone.kind, "value": milestone.value, **milestone.data},
        session_factory=session_factory,
    )
