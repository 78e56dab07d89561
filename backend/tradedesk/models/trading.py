from sqlalchemy import (
    Column, Integer, String, Numeric, Boolean, DateTime, Enum, ForeignKey, UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import enum
from tradedesk.database import Base, utcnow

class TradingWalletType(str, enum.Enum):
    DEMO = "DEMO"
    LIVE = "LIVE"

class TradeSide(str, enum.Enum):
    BUY = "BUY"
    SELL = "SELL"

class PositionStatus(str, enum.Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"

class OrderType(str, enum.Enum):
    MARKET = "MARKET"
    LIMIT = "LIMIT"
    STOP = "STOP"
    STOP_LIMIT = "STOP_LIMIT"

class OrderStatus(str, enum.Enum):
    PENDING = "PENDING"
    FILLED = "FILLED"
    CANCELED = "CANCELED"

class TradingWallet(Base):
    __tablename__ = "trading_wallets"
    __table_args__ = (
        UniqueConstraint("user_id", "wallet_type", name="uq_trading_wallet_user_type"),
    )

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    wallet_type = Column(Enum(TradingWalletType), nullable=False)
    balance = Column(Numeric(precision=20, scale=8), nullable=False, default=0)
    available_margin = Column(Numeric(precision=20, scale=8), nullable=False, default=0)
    used_margin = Column(Numeric(precision=20, scale=8), nullable=False, default=0)
    equity = Column(Numeric(precision=20, scale=8), nullable=False, default=0)
    leverage = Column(Integer, nullable=False, default=50)
    margin_call_level = Column(Numeric(5, 2), nullable=False, default=80)
    margin_stop_out_level = Column(Numeric(5, 2), nullable=False, default=50)
    risk_percentage = Column(Numeric(5, 2), nullable=False, default=2)
    is_active = Column(Boolean, nullable=False, default=False)
    version = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())

    user = relationship("User", back_populates="trading_wallets")
    positions = relationship("TradingPosition", back_populates="trading_wallet")
    orders = relationship("TradingOrder", back_populates="trading_wallet")

    __mapper_args__ = {"version_id_col": version}

class TradingPosition(Base):
    __tablename__ = "trading_positions"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    trading_wallet_id = Column(Integer, ForeignKey("trading_wallets.id"), nullable=False)
    currency_pair = Column(String(20), nullable=False)
    trade_type = Column(Enum(TradeSide), nullable=False)
    entry_price = Column(Numeric(precision=20, scale=8), nullable=False)
    quantity = Column(Numeric(precision=20, scale=8), nullable=False)
    margin = Column(Numeric(precision=20, scale=8), nullable=False, default=0)
    stop_loss = Column(Numeric(precision=20, scale=8), nullable=True)
    take_profit = Column(Numeric(precision=20, scale=8), nullable=True)
    status = Column(Enum(PositionStatus), nullable=False, default=PositionStatus.OPEN)
    entry_time = Column(DateTime(timezone=True), nullable=False)
    exit_price = Column(Numeric(precision=20, scale=8), nullable=True)
    exit_time = Column(DateTime(timezone=True), nullable=True)
    profit_loss = Column(Numeric(precision=20, scale=8), nullable=True)
    close_reason = Column(String(30), nullable=True)

    trading_wallet = relationship("TradingWallet", back_populates="positions")

class TradingOrder(Base):
    __tablename__ = "trading_orders"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    trading_wallet_id = Column(Integer, ForeignKey("trading_wallets.id"), nullable=False)
    position_id = Column(Integer, ForeignKey("trading_positions.id"), nullable=True)
    currency_pair = Column(String(20), nullable=False)
    order_type = Column(Enum(OrderType), nullable=False)
    side = Column(Enum(TradeSide), nullable=False)
    quantity = Column(Numeric(precision=20, scale=8), nullable=False)
    price = Column(Numeric(precision=20, scale=8), nullable=True)
    stop_loss = Column(Numeric(precision=20, scale=8), nullable=True)
    take_profit = Column(Numeric(precision=20, scale=8), nullable=True)
    time_in_force = Column(String(10), nullable=False, default="GTC")
    status = Column(Enum(OrderStatus), nullable=False, default=OrderStatus.PENDING)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())

    trading_wallet = relationship("TradingWallet", back_populates="orders")
