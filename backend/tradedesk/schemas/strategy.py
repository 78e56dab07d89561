from pydantic import BaseModel, Field, model_validator
from typing import List, Union

class Candle(BaseModel):
    timestamp: Union[int, str]
    open: float | None = None
    high: float | None = None
    low: float | None = None
    close: float

class BacktestRequest(BaseModel):
    strategy: str = "ma_cross"
    candles: List[Candle]
    fast_period: int = Field(default=10, gt=0)
    slow_period: int = Field(default=30, gt=1)
    initial_capital: float = Field(default=10000.0, gt=0)

    @model_validator(mode="after")
    def periods_ordered(self):
        if self.fast_period >= self.slow_period:
            raise ValueError("fast_period must be smaller than slow_period")
        return self
