from tradedesk.models.user import User
from tradedesk.models.wallet import Wallet, WalletTransaction, CurrencyType, TransactionType
from tradedesk.models.trading import (
    TradingWallet, TradingPosition, TradingOrder,
    TradingWalletType, TradeSide, PositionStatus, OrderType, OrderStatus,
)
from tradedesk.models.funding import ConnectedAccount, FundingTransaction, FundingType, FundingStatus
from tradedesk.models.alert import PriceAlert, AlertCondition
from tradedesk.models.notification import Notification
