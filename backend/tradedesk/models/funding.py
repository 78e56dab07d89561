from sqlalchemy import Column, Integer, String, Numeric, Boolean, DateTime, Enum, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import enum
from tradedesk.database import Base, utcnow


class FundingType(str, enum.Enum):
    DEPOSIT = "DEPOSIT"
    WITHDRAWAL = "WITHDRAWAL"


class FundingStatus(str, enum.Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    CANCELED = "CANCELED"


class ConnectedAccount(Base):
    """Simulated external bank account; balances are mirrored locally."""

    __tablename__ = "connected_accounts"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    institution_name = Column(String(100), nullable=False)
    account_name = Column(String(100), nullable=False)
    account_type = Column(String(30), default="checking")
    account_mask = Column(String(4), nullable=True)
    currency = Column(String(10), nullable=False, default="USD")
    available_balance = Column(Numeric(precision=20, scale=8), nullable=False, default=0)
    current_balance = Column(Numeric(precision=20, scale=8), nullable=False, default=0)
    is_verified = Column(Boolean, default=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())

    user = relationship("User", back_populates="connected_accounts")


class FundingTransaction(Base):
    __tablename__ = "funding_transactions"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    connected_account_id = Column(Integer, ForeignKey("connected_accounts.id"), nullable=False)
    wallet_id = Column(Integer, ForeignKey("wallets.id", ondelete="SET NULL"), nullable=True)
    transaction_type = Column(Enum(FundingType), nullable=False)
    amount = Column(Numeric(precision=20, scale=8), nullable=False)
    status = Column(Enum(FundingStatus), nullable=False, default=FundingStatus.PENDING)
    reference_id = Column(String(64), unique=True, nullable=False)
    description = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())
    processed_at = Column(DateTime(timezone=True), nullable=True)

    connected_account = relationship("ConnectedAccount")
