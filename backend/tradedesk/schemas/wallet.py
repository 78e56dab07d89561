from pydantic import BaseModel, Field
from decimal import Decimal
from typing import Optional
from tradedesk.models.wallet import CurrencyType

class CreateWalletRequest(BaseModel):
    currency: str = Field(min_length=2, max_length=10)
    currency_type: CurrencyType = CurrencyType.FIAT
    is_default: bool = False
    initial_balance: Decimal = Field(default=Decimal("0"), ge=0)

class DepositRequest(BaseModel):
    amount: Decimal = Field(gt=0)
    description: Optional[str] = Field(default=None, max_length=255)

class WithdrawRequest(BaseModel):
    amount: Decimal = Field(gt=0)
    fee: Decimal = Field(default=Decimal("0"), ge=0)
    description: Optional[str] = Field(default=None, max_length=255)

class TransferRequest(BaseModel):
    to_wallet_id: int
    amount: Decimal = Field(gt=0)
    fee: Decimal = Field(default=Decimal("0"), ge=0)
    description: Optional[str] = Field(default=None, max_length=255)

class LockRequest(BaseModel):
    amount: Decimal = Field(gt=0)
    reason: str = "Trading margin"
