from pydantic import BaseModel, Field, model_validator
from decimal import Decimal
from typing import Optional
from tradedesk.models.trading import OrderType, TradeSide, TradingWalletType

class PlaceOrderRequest(BaseModel):
    currency_pair: str
    side: TradeSide
    order_type: OrderType = OrderType.MARKET
    quantity: Decimal = Field(gt=0)
    price: Optional[Decimal] = Field(default=None, gt=0)
    stop_loss: Optional[Decimal] = Field(default=None, gt=0)
    take_profit: Optional[Decimal] = Field(default=None, gt=0)
    time_in_force: str = "GTC"
    wallet_type: Optional[TradingWalletType] = None

    @model_validator(mode="after")
    def price_required_for_pending(self):
        if self.order_type != OrderType.MARKET and self.price is None:
            raise ValueError(f"price is required for {self.order_type.value} orders")
        return self
