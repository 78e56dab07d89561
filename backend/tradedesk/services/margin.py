"""
Margin accounting for leveraged positions.

A trading wallet tracks ``balance``, ``used_margin`` and
``available_margin = balance - used_margin``. Opening a position reserves
``quantity * price / leverage``; closing it releases exactly what was
reserved and settles the realized P&L both on the trading wallet and,
through the ledger, on the user's default wallet.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from tradedesk.config import settings
from tradedesk.database import atomic
from tradedesk.models.user import User
from tradedesk.models.wallet import WalletTransaction
from tradedesk.models.trading import (
    TradingWallet, TradingPosition, TradingOrder,
    TradingWalletType, TradeSide, PositionStatus, OrderType, OrderStatus,
)
from tradedesk.services import wallets
from tradedesk.services.exceptions import (
    InsufficientMarginError,
    InvalidAmountError,
    InvalidLeverageError,
    InvalidStateError,
    NotFoundError,
    PositionAlreadyClosedError,
)
from tradedesk.services.wallets import ZERO, quantize, to_decimal

logger = logging.getLogger(__name__)


@dataclass
class OrderResult:
    order: TradingOrder
    position: Optional[TradingPosition] = None


@dataclass
class CloseResult:
    position: TradingPosition
    profit_loss: Decimal
    ledger_entry: Optional[WalletTransaction] = None
    shortfall: Decimal = ZERO


def required_margin(quantity, price, leverage) -> Decimal:
    if leverage is None or leverage <= 0:
        raise InvalidLeverageError("Leverage must be positive", details={"leverage": leverage})
    return quantize(to_decimal(quantity) * to_decimal(price) / Decimal(leverage))


def calculate_profit_loss(side: TradeSide, entry_price, exit_price, quantity) -> Decimal:
    entry, exit_, qty = to_decimal(entry_price), to_decimal(exit_price), to_decimal(quantity)
    if TradeSide(side) == TradeSide.BUY:
        return quantize((exit_ - entry) * qty)
    return quantize((entry - exit_) * qty)


def check_stop_loss_take_profit(position: TradingPosition, current_price) -> Optional[str]:
    """Return ``"stop_loss"``, ``"take_profit"`` or ``None`` for the given price."""
    if position.status != PositionStatus.OPEN or current_price is None:
        return None
    price = to_decimal(current_price)
    sl = to_decimal(position.stop_loss) if position.stop_loss is not None else None
    tp = to_decimal(position.take_profit) if position.take_profit is not None else None

    if position.trade_type == TradeSide.BUY:
        if sl is not None and price <= sl:
            return "stop_loss"
        if tp is not None and price >= tp:
            return "take_profit"
    else:
        if sl is not None and price >= sl:
            return "stop_loss"
        if tp is not None and price <= tp:
            return "take_profit"
    return None


def _recompute(tw: TradingWallet) -> None:
    tw.available_margin = to_decimal(tw.balance) - to_decimal(tw.used_margin)


async def lock_trading_wallet(db: AsyncSession, trading_wallet_id: int) -> TradingWallet:
    tw = await db.scalar(
        select(TradingWallet)
        .where(TradingWallet.id == trading_wallet_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    if tw is None:
        raise NotFoundError("Trading wallet not found", details={"trading_wallet_id": trading_wallet_id})
    return tw


async def _lock_position(db: AsyncSession, position_id: int) -> TradingPosition:
    position = await db.scalar(
        select(TradingPosition)
        .where(TradingPosition.id == position_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    if position is None:
        raise NotFoundError("Position not found", details={"position_id": position_id})
    return position


def _new_trading_wallet(user_id: int, wallet_type: TradingWalletType) -> TradingWallet:
    demo = wallet_type == TradingWalletType.DEMO
    balance = settings.DEMO_STARTING_BALANCE if demo else ZERO
    return TradingWallet(
        user_id=user_id,
        wallet_type=wallet_type,
        balance=balance,
        available_margin=balance,
        used_margin=ZERO,
        equity=balance,
        leverage=settings.DEFAULT_LEVERAGE,
        margin_call_level=settings.MARGIN_CALL_LEVEL,
        margin_stop_out_level=settings.MARGIN_STOP_OUT_LEVEL,
        risk_percentage=settings.DEFAULT_RISK_PERCENTAGE,
        is_active=demo,
    )


async def get_or_create_trading_wallet(
    db: AsyncSession, user: User, wallet_type: Optional[TradingWalletType] = None
) -> TradingWallet:
    if wallet_type is None:
        wallet_type = TradingWalletType.DEMO if user.demo_mode_enabled else TradingWalletType.LIVE
    wallet_type = TradingWalletType(wallet_type)

    stmt = select(TradingWallet).where(
        TradingWallet.user_id == user.id, TradingWallet.wallet_type == wallet_type
    )
    tw = await db.scalar(stmt)
    if tw is not None:
        return tw

    try:
        async with atomic(db):
            tw = _new_trading_wallet(user.id, wallet_type)
            db.add(tw)
            await db.flush()
    except IntegrityError:
        # created concurrently; the unique (user, type) constraint kept one row
        tw = await db.scalar(stmt)
        if tw is None:
            raise
    else:
        logger.info("Created %s trading wallet %s for user %s", wallet_type.value, tw.id, user.id)
    return tw


async def toggle_trading_mode(db: AsyncSession, user: User) -> TradingWallet:
    """Flip the user between DEMO and LIVE and activate the matching trading wallet."""
    demo = await get_or_create_trading_wallet(db, user, TradingWalletType.DEMO)
    live = await get_or_create_trading_wallet(db, user, TradingWalletType.LIVE)
    async with atomic(db):
        user.demo_mode_enabled = not user.demo_mode_enabled
        demo = await lock_trading_wallet(db, demo.id)
        live = await lock_trading_wallet(db, live.id)
        demo.is_active = bool(user.demo_mode_enabled)
        live.is_active = not user.demo_mode_enabled
        await db.flush()
    active = demo if user.demo_mode_enabled else live
    logger.info("User %s switched to %s trading", user.id, active.wallet_type.value)
    return active


async def open_market_position(
    db: AsyncSession,
    trading_wallet: TradingWallet,
    currency_pair: str,
    side: TradeSide,
    quantity,
    price,
    stop_loss=None,
    take_profit=None,
) -> TradingPosition:
    quantity, price = to_decimal(quantity), to_decimal(price)
    if quantity <= 0 or price <= 0:
        raise InvalidAmountError(
            "Quantity and price must be positive",
            details={"quantity": str(quantity), "price": str(price)},
        )

    async with atomic(db):
        tw = await lock_trading_wallet(db, trading_wallet.id)
        margin = required_margin(quantity, price, tw.leverage)
        available = to_decimal(tw.available_margin)
        if available < margin:
            raise InsufficientMarginError(required_margin=margin, available_margin=available)

        position = TradingPosition(
            user_id=tw.user_id,
            trading_wallet_id=tw.id,
            currency_pair=currency_pair,
            trade_type=TradeSide(side),
            entry_price=price,
            quantity=quantity,
            margin=margin,
            stop_loss=to_decimal(stop_loss) if stop_loss is not None else None,
            take_profit=to_decimal(take_profit) if take_profit is not None else None,
            status=PositionStatus.OPEN,
            entry_time=datetime.now(timezone.utc),
        )
        db.add(position)
        tw.used_margin = to_decimal(tw.used_margin) + margin
        _recompute(tw)
        await db.flush()

    logger.info("Opened %s %s %s @ %s on trading wallet %s (margin %s)",
                position.trade_type.value, quantity, currency_pair, price, tw.id, margin)
    return position


async def place_order(
    db: AsyncSession,
    trading_wallet: TradingWallet,
    request,
    current_price=None,
) -> OrderResult:
    """Store an order; MARKET orders fill immediately and open a position.

    ``request`` carries ``currency_pair``, ``side``, ``order_type``,
    ``quantity`` and optional ``price``, ``stop_loss``, ``take_profit``
    and ``time_in_force``.
    """
    order_type = OrderType(request.order_type)
    side = TradeSide(request.side)

    if order_type == OrderType.MARKET:
        if current_price is None:
            raise InvalidStateError(
                "No market price available", details={"currency_pair": request.currency_pair}
            )
        fill_price = to_decimal(current_price)
    elif request.price is None:
        raise InvalidAmountError(
            f"{order_type.value} orders require a price", details={"order_type": order_type.value}
        )

    async with atomic(db):
        order = TradingOrder(
            user_id=trading_wallet.user_id,
            trading_wallet_id=trading_wallet.id,
            currency_pair=request.currency_pair,
            order_type=order_type,
            side=side,
            quantity=to_decimal(request.quantity),
            price=fill_price if order_type == OrderType.MARKET else to_decimal(request.price),
            stop_loss=to_decimal(request.stop_loss) if request.stop_loss is not None else None,
            take_profit=to_decimal(request.take_profit) if request.take_profit is not None else None,
            time_in_force=getattr(request, "time_in_force", None) or "GTC",
            status=OrderStatus.PENDING,
        )
        position = None
        if order_type == OrderType.MARKET:
            position = await open_market_position(
                db, trading_wallet, request.currency_pair, side, request.quantity, fill_price,
                stop_loss=request.stop_loss, take_profit=request.take_profit,
            )
            order.position_id = position.id
            order.status = OrderStatus.FILLED
        db.add(order)
        await db.flush()

    logger.info("Order %s %s %s %s", order.id, order_type.value, side.value, order.status.value)
    return OrderResult(order=order, position=position)


async def cancel_order(db: AsyncSession, order: TradingOrder) -> TradingOrder:
    async with atomic(db):
        order = await db.scalar(
            select(TradingOrder)
            .where(TradingOrder.id == order.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        if order.status != OrderStatus.PENDING:
            raise InvalidStateError(
                "Only pending orders can be canceled",
                details={"order_id": order.id, "status": order.status.value},
            )
        order.status = OrderStatus.CANCELED
        await db.flush()
    logger.info("Canceled order %s", order.id)
    return order


async def close_position(
    db: AsyncSession,
    trading_wallet: TradingWallet,
    position: TradingPosition,
    exit_price,
    reason: str = "manual",
) -> CloseResult:
    exit_price = to_decimal(exit_price)
    if exit_price <= 0:
        raise InvalidAmountError("Exit price must be positive", details={"exit_price": str(exit_price)})

    async with atomic(db):
        position = await _lock_position(db, position.id)
        if position.status != PositionStatus.OPEN:
            raise PositionAlreadyClosedError(
                "Position is already closed", details={"position_id": position.id}
            )
        tw = await lock_trading_wallet(db, position.trading_wallet_id)

        pnl = calculate_profit_loss(position.trade_type, position.entry_price, exit_price, position.quantity)
        margin = to_decimal(position.margin)

        position.exit_price = exit_price
        position.exit_time = datetime.now(timezone.utc)
        position.profit_loss = pnl
        position.status = PositionStatus.CLOSED
        position.close_reason = reason

        tw.used_margin = max(to_decimal(tw.used_margin) - margin, ZERO)
        tw.balance = to_decimal(tw.balance) + pnl
        tw.equity = to_decimal(tw.equity) + pnl
        _recompute(tw)
        await db.flush()

        ledger_entry, shortfall = await _settle_to_wallet(db, position, pnl)

    logger.info("Closed position %s @ %s (%s), P&L %s", position.id, exit_price, reason, pnl)
    return CloseResult(position=position, profit_loss=pnl, ledger_entry=ledger_entry, shortfall=shortfall)


async def _settle_to_wallet(
    db: AsyncSession, position: TradingPosition, pnl: Decimal
) -> tuple[Optional[WalletTransaction], Decimal]:
    if pnl == 0:
        return None, ZERO
    wallet = await wallets.get_default_wallet(db, position.user_id)
    if wallet is None:
        logger.warning("User %s has no wallet; P&L of position %s not settled", position.user_id, position.id)
        return None, ZERO

    reference = f"POS-{position.id}"
    meta = {"position_id": position.id, "currency_pair": position.currency_pair}
    if pnl > 0:
        entry = await wallets.deposit(
            db, wallet, pnl, description=f"Profit from position #{position.id}",
            metadata=meta, reference_id=reference,
        )
        return entry, ZERO

    loss = -pnl
    wallet = await wallets.lock_wallet(db, wallet.id)
    available = to_decimal(wallet.available_balance)
    debit = min(loss, available)
    shortfall = loss - debit
    if shortfall > 0:
        meta["shortfall"] = str(shortfall)
        logger.warning("Loss on position %s exceeds wallet %s balance by %s", position.id, wallet.id, shortfall)
    if debit <= 0:
        return None, shortfall
    entry = await wallets.withdraw(
        db, wallet, debit, description=f"Loss from position #{position.id}",
        metadata=meta, reference_id=reference,
    )
    return entry, shortfall


async def get_user_position(db: AsyncSession, user: User, position_id: int) -> TradingPosition:
    position = await db.get(TradingPosition, position_id)
    if position is None or position.user_id != user.id:
        raise NotFoundError("Position not found", details={"position_id": position_id})
    return position


async def get_user_order(db: AsyncSession, user: User, order_id: int) -> TradingOrder:
    order = await db.get(TradingOrder, order_id)
    if order is None or order.user_id != user.id:
        raise NotFoundError("Order not found", details={"order_id": order_id})
    return order


async def open_positions(db: AsyncSession, user: User) -> list[TradingPosition]:
    rows = await db.scalars(
        select(TradingPosition)
        .where(TradingPosition.user_id == user.id, TradingPosition.status == PositionStatus.OPEN)
        .order_by(TradingPosition.entry_time.desc())
    )
    return list(rows)


def serialize_trading_wallet(tw: TradingWallet) -> dict:
    return {
        "id": tw.id,
        "wallet_type": tw.wallet_type.value,
        "balance": str(to_decimal(tw.balance)),
        "available_margin": str(to_decimal(tw.available_margin)),
        "used_margin": str(to_decimal(tw.used_margin)),
        "equity": str(to_decimal(tw.equity)),
        "leverage": tw.leverage,
        "margin_call_level": str(tw.margin_call_level),
        "margin_stop_out_level": str(tw.margin_stop_out_level),
        "risk_percentage": str(tw.risk_percentage),
        "is_active": bool(tw.is_active),
    }


def serialize_position(p: TradingPosition) -> dict:
    return {
        "id": p.id,
        "currency_pair": p.currency_pair,
        "trade_type": p.trade_type.value,
        "entry_price": str(to_decimal(p.entry_price)),
        "quantity": str(to_decimal(p.quantity)),
        "margin": str(to_decimal(p.margin)),
        "stop_loss": str(p.stop_loss) if p.stop_loss is not None else None,
        "take_profit": str(p.take_profit) if p.take_profit is not None else None,
        "status": p.status.value,
        "entry_time": p.entry_time.isoformat() if p.entry_time else None,
        "exit_price": str(p.exit_price) if p.exit_price is not None else None,
        "exit_time": p.exit_time.isoformat() if p.exit_time else None,
        "profit_loss": str(p.profit_loss) if p.profit_loss is not None else None,
        "close_reason": p.close_reason,
    }


def serialize_order(o: TradingOrder) -> dict:
    return {
        "id": o.id,
        "currency_pair": o.currency_pair,
        "order_type": o.order_type.value,
        "side": o.side.value,
        "quantity": str(to_decimal(o.quantity)),
        "price": str(o.price) if o.price is not None else None,
        "status": o.status.value,
        "position_id": o.position_id,
        "time_in_force": o.time_in_force,
    }
