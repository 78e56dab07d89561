from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from tradedesk.database import get_db
from tradedesk.core.deps import get_current_user
from tradedesk.models.user import User
from tradedesk.models.trading import TradingOrder, OrderStatus, OrderType
from tradedesk.schemas.trading import PlaceOrderRequest
from tradedesk.services import margin, notifications
from tradedesk.services.exceptions import InvalidStateError
from tradedesk.services.market_data import get_current_price
from tradedesk.services.margin import serialize_trading_wallet, serialize_position, serialize_order

router = APIRouter(prefix="/api/trading", tags=["trading"])

@router.get("/wallet")
async def get_trading_wallet(user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    tw = await margin.get_or_create_trading_wallet(db, user)
    await db.commit()
    return serialize_trading_wallet(tw)

@router.post("/mode/toggle")
async def toggle_mode(user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    tw = await margin.toggle_trading_mode(db, user)
    await db.commit()
    return {"demo_mode_enabled": user.demo_mode_enabled, "wallet": serialize_trading_wallet(tw)}

@router.post("/orders", status_code=201)
async def place_order(
    body: PlaceOrderRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    tw = await margin.get_or_create_trading_wallet(db, user, body.wallet_type)
    current_price = None
    if body.order_type == OrderType.MARKET:
        current_price = await get_current_price(body.currency_pair)
    result = await margin.place_order(db, tw, body, current_price)
    await db.commit()
    if result.position is not None:
        await notifications.trade_executed(result.position)
    return {
        "order": serialize_order(result.order),
        "position": serialize_position(result.position) if result.position else None,
        "wallet": serialize_trading_wallet(tw),
    }

@router.get("/orders")
async def list_orders(user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    orders = await db.scalars(
        select(TradingOrder).where(TradingOrder.user_id == user.id)
        .order_by(TradingOrder.id.desc()).limit(100)
    )
    return [serialize_order(o) for o in orders]

@router.get("/orders/pending")
async def list_pending_orders(user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    orders = await db.scalars(
        select(TradingOrder).where(TradingOrder.user_id == user.id, TradingOrder.status == OrderStatus.PENDING)
    )
    return [serialize_order(o) for o in orders]

@router.post("/orders/{order_id}/cancel")
async def cancel_order(order_id: int, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    order = await margin.get_user_order(db, user, order_id)
    order = await margin.cancel_order(db, order)
    await db.commit()
    return serialize_order(order)

@router.get("/positions")
async def list_positions(user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    return [serialize_position(p) for p in await margin.open_positions(db, user)]

@router.post("/positions/{position_id}/close")
async def close_position(
    position_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    position = await margin.get_user_position(db, user, position_id)
    exit_price = await get_current_price(position.currency_pair)
    if exit_price is None:
        raise InvalidStateError("No market price available", details={"currency_pair": position.currency_pair})
    tw = await margin.lock_trading_wallet(db, position.trading_wallet_id)
    result = await margin.close_position(db, tw, position, exit_price, reason="manual")
    await db.commit()
    await notifications.trade_closed(result.position)
    return {
        "position": serialize_position(result.position),
        "profit_loss": str(result.profit_loss),
        "shortfall": str(result.shortfall),
        "wallet": serialize_trading_wallet(tw),
    }
