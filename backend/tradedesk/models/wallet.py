from sqlalchemy import (
    Column, Integer, String, Numeric, Boolean, DateTime, Enum, JSON, ForeignKey, CheckConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import enum
from tradedesk.database import Base, utcnow

class CurrencyType(str, enum.Enum):
    FIAT = "FIAT"
    CRYPTO = "CRYPTO"

class TransactionType(str, enum.Enum):
    DEPOSIT = "DEPOSIT"
    WITHDRAWAL = "WITHDRAWAL"
    TRANSFER_IN = "TRANSFER_IN"
    TRANSFER_OUT = "TRANSFER_OUT"
    LOCK = "LOCK"
    UNLOCK = "UNLOCK"

class Wallet(Base):
    __tablename__ = "wallets"
    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_wallet_balance_non_negative"),
        CheckConstraint("available_balance >= 0", name="ck_wallet_available_non_negative"),
        CheckConstraint("locked_balance >= 0", name="ck_wallet_locked_non_negative"),
    )

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    currency = Column(String(10), nullable=False)
    currency_type = Column(Enum(CurrencyType), nullable=False, default=CurrencyType.FIAT)
    balance = Column(Numeric(precision=20, scale=8), nullable=False, default=0)
    available_balance = Column(Numeric(precision=20, scale=8), nullable=False, default=0)
    locked_balance = Column(Numeric(precision=20, scale=8), nullable=False, default=0)
    is_default = Column(Boolean, nullable=False, default=False)
    version = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow)

    user = relationship("User", back_populates="wallets")
    transactions = relationship("WalletTransaction", back_populates="wallet", passive_deletes="all")

    __mapper_args__ = {"version_id_col": version}

class WalletTransaction(Base):
    """Immutable ledger line. Rows are inserted, never updated."""

    __tablename__ = "wallet_transactions"

    id = Column(Integer, primary_key=True)
    wallet_id = Column(Integer, ForeignKey("wallets.id", ondelete="RESTRICT"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    transaction_type = Column(Enum(TransactionType), nullable=False)
    amount = Column(Numeric(precision=20, scale=8), nullable=False)
    fee = Column(Numeric(precision=20, scale=8), nullable=False, default=0)
    status = Column(String(20), nullable=False, default="COMPLETED")
    description = Column(String(255), nullable=True)
    reference_id = Column(String(64), nullable=True, index=True)
    meta = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())

    wallet = relationship("Wallet", back_populates="transactions")
