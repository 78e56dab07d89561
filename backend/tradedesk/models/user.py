from sqlalchemy import Column, Integer, String, Boolean, DateTime
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from tradedesk.database import Base, utcnow

class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    name = Column(String(100), nullable=True)
    demo_mode_enabled = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())

    wallets = relationship("Wallet", back_populates="user")
    trading_wallets = relationship("TradingWallet", back_populates="user")
    connected_accounts = relationship("ConnectedAccount", back_populates="user")
    notifications = relationship("Notification", back_populates="user")
