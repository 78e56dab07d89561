import json
import logging
from decimal import Decimal, InvalidOperation
from typing import Optional

from tradedesk.core.redis import get_redis

logger = logging.getLogger(__name__)


def ticker_key(pair: str) -> str:
    return f"market:{pair}:ticker"


async def get_current_price(pair: str) -> Optional[Decimal]:
    """Last traded price from the cached ticker, ``None`` if there is no usable quote."""
    redis = await get_redis()
    data = await redis.get(ticker_key(pair))
    if not data:
        return None
    try:
        ticker = json.loads(data)
        if not isinstance(ticker, dict):
            raise ValueError("ticker is not an object")
        price = Decimal(str(ticker.get("last_price")))
    except (ValueError, TypeError, InvalidOperation):
        logger.warning("Malformed ticker for %s: %r", pair, data)
        return None
    if not price.is_finite() or price <= 0:
        return None
    return price
