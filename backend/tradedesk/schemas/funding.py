from pydantic import BaseModel, Field
from decimal import Decimal
from typing import Optional

class ConnectedAccountRequest(BaseModel):
    institution_name: str = Field(min_length=1, max_length=100)
    account_name: str = Field(min_length=1, max_length=100)
    account_type: str = "checking"
    account_mask: Optional[str] = Field(default=None, max_length=4)
    currency: str = "USD"
    balance: Decimal = Field(default=Decimal("0"), ge=0)

class FundingRequest(BaseModel):
    connected_account_id: int
    wallet_id: Optional[int] = None
    amount: Decimal = Field(gt=0)
    description: Optional[str] = Field(default=None, max_length=255)
