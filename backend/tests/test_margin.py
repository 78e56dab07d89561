import pytest
from decimal import Decimal
from sqlalchemy import select
from tradedesk.models.trading import (
    TradingPosition, TradingWalletType, TradeSide, PositionStatus, OrderType, OrderStatus,
)
from tradedesk.models.wallet import WalletTransaction
from tradedesk.schemas.trading import PlaceOrderRequest
from tradedesk.services import margin, wallets
from tradedesk.services.exceptions import (
    InsufficientMarginError,
    InvalidAmountError,
    InvalidLeverageError,
    InvalidStateError,
    PositionAlreadyClosedError,
)
from conftest import assert_wallet_invariant


def assert_margin_invariant(tw):
    assert tw.available_margin == tw.balance - tw.used_margin


class TestPureCalculations:
    def test_required_margin(self):
        assert margin.required_margin(Decimal("2"), Decimal("1.1"), 50) == Decimal("0.044")
        assert margin.required_margin(1, 50000, 1) == Decimal("50000")

    def test_invalid_leverage(self):
        with pytest.raises(InvalidLeverageError):
            margin.required_margin(1, 100, 0)
        with pytest.raises(InvalidLeverageError):
            margin.required_margin(1, 100, -5)

    def test_profit_loss_by_side(self):
        assert margin.calculate_profit_loss(TradeSide.BUY, 100, 110, 2) == Decimal("20")
        assert margin.calculate_profit_loss(TradeSide.BUY, 100, 90, 2) == Decimal("-20")
        assert margin.calculate_profit_loss(TradeSide.SELL, 100, 90, 2) == Decimal("20")
        assert margin.calculate_profit_loss(TradeSide.SELL, 100, 110, 2) == Decimal("-20")

    def test_results_are_rounded_to_storage_precision(self):
        required = margin.required_margin(Decimal("3"), Decimal("1.00000001"), 7)
        assert required == Decimal("0.42857143")
        assert required.as_tuple().exponent == -8
        pnl = margin.calculate_profit_loss(TradeSide.BUY, 100, Decimal("100.123456789"), 3)
        assert pnl == Decimal("0.37037037")
        assert pnl.as_tuple().exponent == -8

    def test_zero_level_is_still_a_level(self):
        position = TradingPosition(
            trade_type=TradeSide.BUY, status=PositionStatus.OPEN, stop_loss=Decimal("0"),
        )
        assert margin.check_stop_loss_take_profit(position, 0) == "stop_loss"

    def test_stop_loss_and_take_profit_for_buy(self):
        position = TradingPosition(
            trade_type=TradeSide.BUY, status=PositionStatus.OPEN,
            stop_loss=Decimal("95"), take_profit=Decimal("110"),
        )
        assert margin.check_stop_loss_take_profit(position, 100) is None
        assert margin.check_stop_loss_take_profit(position, 95) == "stop_loss"
        assert margin.check_stop_loss_take_profit(position, 111) == "take_profit"
        assert margin.check_stop_loss_take_profit(position, None) is None

    def test_stop_loss_and_take_profit_for_sell(self):
        position = TradingPosition(
            trade_type=TradeSide.SELL, status=PositionStatus.OPEN,
            stop_loss=Decimal("105"), take_profit=Decimal("90"),
        )
        assert margin.check_stop_loss_take_profit(position, 100) is None
        assert margin.check_stop_loss_take_profit(position, 106) == "stop_loss"
        assert margin.check_stop_loss_take_profit(position, 90) == "take_profit"

    def test_closed_position_never_triggers(self):
        position = TradingPosition(
            trade_type=TradeSide.BUY, status=PositionStatus.CLOSED, stop_loss=Decimal("95"),
        )
        assert margin.check_stop_loss_take_profit(position, 1) is None


@pytest.mark.asyncio
async def test_demo_trading_wallet_is_created_once(db, user):
    tw = await margin.get_or_create_trading_wallet(db, user)
    again = await margin.get_or_create_trading_wallet(db, user)
    assert tw.id == again.id
    assert tw.wallet_type == TradingWalletType.DEMO
    assert tw.balance == Decimal("50000")
    assert tw.available_margin == Decimal("50000")
    assert tw.is_active is True


@pytest.mark.asyncio
async def test_open_and_close_at_entry_restores_margin(db, user, wallet):
    tw = await margin.get_or_create_trading_wallet(db, user)
    position = await margin.open_market_position(db, tw, "BTC-USD", TradeSide.BUY, 1, 50000)

    assert position.margin == Decimal("1000")
    assert tw.used_margin == Decimal("1000")
    assert tw.available_margin == Decimal("49000")
    assert_margin_invariant(tw)

    result = await margin.close_position(db, tw, position, 50000)
    assert result.profit_loss == 0
    assert result.ledger_entry is None
    assert tw.used_margin == Decimal("0")
    assert tw.available_margin == Decimal("50000")
    assert position.status == PositionStatus.CLOSED
    assert_margin_invariant(tw)


@pytest.mark.asyncio
async def test_fractional_margins_release_to_zero(db, user, wallet):
    tw = await margin.get_or_create_trading_wallet(db, user)
    positions = [
        await margin.open_market_position(db, tw, "XRP-USD", TradeSide.BUY, 1, Decimal("1.00000001"))
        for _ in range(3)
    ]
    assert [p.margin for p in positions] == [Decimal("0.02")] * 3
    assert tw.used_margin == Decimal("0.06")

    for position in positions:
        await margin.close_position(db, tw, position, Decimal("1.00000001"))
    await db.refresh(tw)
    assert tw.used_margin == Decimal("0")
    assert tw.available_margin == tw.balance
    assert_margin_invariant(tw)


@pytest.mark.asyncio
async def test_profitable_buy_settles_to_default_wallet(db, user, wallet):
    tw = await margin.get_or_create_trading_wallet(db, user)
    position = await margin.open_market_position(db, tw, "BTC-USD", TradeSide.BUY, 1, 50000)

    result = await margin.close_position(db, tw, position, 51000)

    assert result.profit_loss == Decimal("1000")
    assert tw.balance == Decimal("51000")
    assert tw.available_margin == Decimal("51000")
    assert position.exit_price == Decimal("51000")
    assert position.close_reason == "manual"
    assert result.ledger_entry.reference_id == f"POS-{position.id}"
    assert result.ledger_entry.amount == Decimal("1000")
    assert wallet.balance == Decimal("2000")
    assert_wallet_invariant(wallet)


@pytest.mark.asyncio
async def test_losing_sell_debits_default_wallet(db, user, wallet):
    tw = await margin.get_or_create_trading_wallet(db, user)
    position = await margin.open_market_position(db, tw, "ETH-USD", TradeSide.SELL, 2, 100)
    assert position.margin == Decimal("4")

    result = await margin.close_position(db, tw, position, 110, reason="stop_loss")

    assert result.profit_loss == Decimal("-20")
    assert result.shortfall == 0
    assert tw.balance == Decimal("49980")
    assert_margin_invariant(tw)
    assert result.ledger_entry.amount == Decimal("-20")
    assert wallet.balance == Decimal("980")
    assert position.close_reason == "stop_loss"


@pytest.mark.asyncio
async def test_loss_beyond_wallet_balance_records_shortfall(db, user):
    small = await wallets.create_wallet(db, user, "USD", initial_balance=Decimal("10"))
    tw = await margin.get_or_create_trading_wallet(db, user)
    position = await margin.open_market_position(db, tw, "ETH-USD", TradeSide.BUY, 2, 100)

    result = await margin.close_position(db, tw, position, 90)

    assert result.profit_loss == Decimal("-20")
    assert result.shortfall == Decimal("10")
    assert result.ledger_entry.amount == Decimal("-10")
    assert Decimal(result.ledger_entry.meta["shortfall"]) == Decimal("10")
    assert small.balance == Decimal("0")
    assert_wallet_invariant(small)


@pytest.mark.asyncio
async def test_closing_twice_is_rejected(db, user, wallet):
    tw = await margin.get_or_create_trading_wallet(db, user)
    position = await margin.open_market_position(db, tw, "BTC-USD", TradeSide.BUY, 1, 50000)
    await margin.close_position(db, tw, position, 50500)

    with pytest.raises(PositionAlreadyClosedError):
        await margin.close_position(db, tw, position, 50500)

    await db.refresh(wallet)
    assert wallet.balance == Decimal("1500")
    lines = (await db.scalars(
        select(WalletTransaction).where(WalletTransaction.reference_id == f"POS-{position.id}")
    )).all()
    assert len(lines) == 1


@pytest.mark.asyncio
async def test_insufficient_margin_leaves_wallet_untouched(db, user):
    tw = await margin.get_or_create_trading_wallet(db, user)
    with pytest.raises(InsufficientMarginError) as exc:
        await margin.open_market_position(db, tw, "BTC-USD", TradeSide.BUY, 100, 50000)
    assert Decimal(exc.value.details["required_margin"]) == Decimal("100000")

    await db.refresh(tw)
    assert tw.used_margin == Decimal("0")
    assert tw.available_margin == Decimal("50000")
    positions = (await db.scalars(select(TradingPosition))).all()
    assert positions == []


@pytest.mark.asyncio
async def test_invalid_quantity_and_exit_price(db, user):
    tw = await margin.get_or_create_trading_wallet(db, user)
    with pytest.raises(InvalidAmountError):
        await margin.open_market_position(db, tw, "BTC-USD", TradeSide.BUY, 0, 50000)
    position = await margin.open_market_position(db, tw, "BTC-USD", TradeSide.BUY, 1, 50000)
    with pytest.raises(InvalidAmountError):
        await margin.close_position(db, tw, position, 0)


@pytest.mark.asyncio
async def test_market_order_fills_and_opens_position(db, user, wallet):
    tw = await margin.get_or_create_trading_wallet(db, user)
    request = PlaceOrderRequest(currency_pair="BTC-USD", side="BUY", quantity=Decimal("0.5"))

    result = await margin.place_order(db, tw, request, current_price=Decimal("40000"))

    assert result.order.status == OrderStatus.FILLED
    assert result.order.position_id == result.position.id
    assert result.position.entry_price == Decimal("40000")
    assert tw.used_margin == Decimal("400")


@pytest.mark.asyncio
async def test_market_order_without_price_is_rejected(db, user):
    tw = await margin.get_or_create_trading_wallet(db, user)
    request = PlaceOrderRequest(currency_pair="BTC-USD", side="SELL", quantity=Decimal("1"))
    with pytest.raises(InvalidStateError):
        await margin.place_order(db, tw, request, current_price=None)


@pytest.mark.asyncio
async def test_limit_order_stays_pending_and_can_be_canceled(db, user):
    tw = await margin.get_or_create_trading_wallet(db, user)
    request = PlaceOrderRequest(
        currency_pair="BTC-USD", side="BUY", order_type=OrderType.LIMIT,
        quantity=Decimal("1"), price=Decimal("45000"),
    )
    result = await margin.place_order(db, tw, request)

    assert result.position is None
    assert result.order.status == OrderStatus.PENDING
    assert tw.used_margin == Decimal("0")

    order = await margin.cancel_order(db, result.order)
    assert order.status == OrderStatus.CANCELED
    with pytest.raises(InvalidStateError):
        await margin.cancel_order(db, order)


@pytest.mark.asyncio
async def test_toggle_trading_mode(db, user):
    live = await margin.toggle_trading_mode(db, user)
    assert user.demo_mode_enabled is False
    assert live.wallet_type == TradingWalletType.LIVE
    assert live.is_active is True
    assert live.balance == Decimal("0")

    demo = await margin.toggle_trading_mode(db, user)
    assert user.demo_mode_enabled is True
    assert demo.wallet_type == TradingWalletType.DEMO
    assert demo.is_active is True
    await db.refresh(live)
    assert live.is_active is False
