from sqlalchemy import Column, Integer, String, Numeric, Boolean, DateTime, ForeignKey
from sqlalchemy.sql import func
from tradedesk.database import Base, utcnow


class AlertCondition:
    above = "above"
    below = "below"
    percent_change = "percent_change"


class PriceAlert(Base):
    __tablename__ = "price_alerts"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    symbol = Column(String(20), nullable=False, index=True)
    condition = Column(String(20), nullable=False, default=AlertCondition.above)
    price = Column(Numeric(precision=20, scale=8), nullable=False)
    percent_change = Column(Numeric(8, 4), nullable=True)
    is_recurring = Column(Boolean, default=False)
    is_triggered = Column(Boolean, default=False)
    triggered_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())
