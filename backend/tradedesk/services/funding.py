"""
Two-phase funding between a connected external account and a wallet.

``initiate_*`` reserves the funds on the paying side right away and leaves a
PENDING transaction; ``complete_*`` credits the receiving side;
``cancel_transaction`` returns the reserved funds. COMPLETED and CANCELED
are terminal.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from tradedesk.database import atomic
from tradedesk.models.user import User
from tradedesk.models.wallet import Wallet
from tradedesk.models.funding import ConnectedAccount, FundingTransaction, FundingType, FundingStatus
from tradedesk.services import wallets
from tradedesk.services.exceptions import (
    CurrencyMismatchError,
    InsufficientFundsError,
    InvalidAmountError,
    InvalidStateError,
    NotFoundError,
    UnauthorizedError,
)
from tradedesk.services.wallets import to_decimal, generate_reference

logger = logging.getLogger(__name__)


async def _lock_account(db: AsyncSession, account_id: int) -> ConnectedAccount:
    account = await db.scalar(
        select(ConnectedAccount)
        .where(ConnectedAccount.id == account_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    if account is None:
        raise NotFoundError("Connected account not found", details={"connected_account_id": account_id})
    return account


async def _lock_pending(db: AsyncSession, txn: FundingTransaction) -> FundingTransaction:
    txn = await db.scalar(
        select(FundingTransaction)
        .where(FundingTransaction.id == txn.id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    if txn.status != FundingStatus.PENDING:
        raise InvalidStateError(
            f"Transaction is already {txn.status.value.lower()}",
            details={"transaction_id": txn.id, "status": txn.status.value},
        )
    return txn


def _check_owner(user: User, *entities) -> None:
    for entity in entities:
        if entity.user_id != user.id:
            raise UnauthorizedError(
                "Entity does not belong to the user",
                details={"entity": type(entity).__name__, "id": entity.id},
            )


def _check_currency(account: ConnectedAccount, wallet: Wallet) -> None:
    if account.currency != wallet.currency:
        raise CurrencyMismatchError(
            "Connected account and wallet currencies differ",
            details={"account_currency": account.currency, "wallet_currency": wallet.currency},
        )


def _positive(amount) -> Decimal:
    amount = to_decimal(amount)
    if amount <= 0:
        raise InvalidAmountError("Amount must be positive", details={"amount": str(amount)})
    return amount


async def create_connected_account(
    db: AsyncSession,
    user: User,
    institution_name: str,
    account_name: str,
    account_type: str = "checking",
    account_mask: Optional[str] = None,
    currency: str = "USD",
    balance=0,
    is_verified: bool = True,
) -> ConnectedAccount:
    balance = to_decimal(balance)
    if balance < 0:
        raise InvalidAmountError("Balance cannot be negative", details={"balance": str(balance)})
    async with atomic(db):
        account = ConnectedAccount(
            user_id=user.id,
            institution_name=institution_name,
            account_name=account_name,
            account_type=account_type,
            account_mask=account_mask,
            currency=currency.upper(),
            available_balance=balance,
            current_balance=balance,
            is_verified=is_verified,
        )
        db.add(account)
        await db.flush()
    logger.info("Connected account %s (%s) for user %s", account.id, institution_name, user.id)
    return account


async def initiate_deposit(
    db: AsyncSession,
    user: User,
    account: ConnectedAccount,
    wallet: Optional[Wallet],
    amount,
) -> FundingTransaction:
    amount = _positive(amount)
    _check_owner(user, account, *([wallet] if wallet is not None else []))
    if wallet is not None:
        _check_currency(account, wallet)

    async with atomic(db):
        account = await _lock_account(db, account.id)
        available = to_decimal(account.available_balance)
        if available < amount:
            raise InsufficientFundsError(
                "Insufficient funds in connected account",
                required_amount=amount, available_amount=available, currency=account.currency,
            )
        account.available_balance = available - amount

        txn = FundingTransaction(
            user_id=user.id,
            connected_account_id=account.id,
            wallet_id=wallet.id if wallet is not None else None,
            transaction_type=FundingType.DEPOSIT,
            amount=amount,
            status=FundingStatus.PENDING,
            reference_id=generate_reference("DEP"),
            description=f"Deposit from {account.institution_name}",
        )
        db.add(txn)
        await db.flush()

    logger.info("Initiated deposit %s of %s from account %s", txn.reference_id, amount, account.id)
    return txn


async def complete_deposit(db: AsyncSession, txn: FundingTransaction) -> FundingTransaction:
    if txn.transaction_type != FundingType.DEPOSIT:
        raise InvalidStateError("Not a deposit", details={"transaction_id": txn.id})

    async with atomic(db):
        txn = await _lock_pending(db, txn)
        wallet = await db.get(Wallet, txn.wallet_id) if txn.wallet_id else None
        if wallet is None:
            wallet = await wallets.get_default_wallet(db, txn.user_id)
        if wallet is None:
            raise NotFoundError("No wallet to credit", details={"transaction_id": txn.id})

        account = await _lock_account(db, txn.connected_account_id)
        _check_currency(account, wallet)

        await wallets.deposit(
            db, wallet, txn.amount,
            description=txn.description or "Deposit from connected account",
            metadata={"funding_transaction_id": txn.id},
            reference_id=txn.reference_id,
        )

        account.current_balance = to_decimal(account.current_balance) - to_decimal(txn.amount)

        txn.wallet_id = wallet.id
        txn.status = FundingStatus.COMPLETED
        txn.processed_at = datetime.now(timezone.utc)
        await db.flush()

    logger.info("Completed deposit %s into wallet %s", txn.reference_id, txn.wallet_id)
    return txn


async def initiate_withdrawal(
    db: AsyncSession,
    user: User,
    wallet: Wallet,
    account: ConnectedAccount,
    amount,
    description: Optional[str] = None,
) -> FundingTransaction:
    amount = _positive(amount)
    _check_owner(user, wallet, account)
    _check_currency(account, wallet)

    async with atomic(db):
        reference_id = generate_reference("WDR")
        txn = FundingTransaction(
            user_id=user.id,
            connected_account_id=account.id,
            wallet_id=wallet.id,
            transaction_type=FundingType.WITHDRAWAL,
            amount=amount,
            status=FundingStatus.PENDING,
            reference_id=reference_id,
            description=description or f"Withdrawal to {account.institution_name}",
        )
        await wallets.withdraw(
            db, wallet, amount,
            description=txn.description,
            metadata={"connected_account_id": account.id},
            reference_id=reference_id,
        )
        db.add(txn)
        await db.flush()

    logger.info("Initiated withdrawal %s of %s from wallet %s", txn.reference_id, amount, wallet.id)
    return txn


async def complete_withdrawal(db: AsyncSession, txn: FundingTransaction) -> FundingTransaction:
    if txn.transaction_type != FundingType.WITHDRAWAL:
        raise InvalidStateError("Not a withdrawal", details={"transaction_id": txn.id})

    async with atomic(db):
        txn = await _lock_pending(db, txn)
        account = await _lock_account(db, txn.connected_account_id)
        amount = to_decimal(txn.amount)
        account.available_balance = to_decimal(account.available_balance) + amount
        account.current_balance = to_decimal(account.current_balance) + amount
        txn.status = FundingStatus.COMPLETED
        txn.processed_at = datetime.now(timezone.utc)
        await db.flush()

    logger.info("Completed withdrawal %s to account %s", txn.reference_id, account.id)
    return txn


async def complete_transaction(db: AsyncSession, txn: FundingTransaction) -> FundingTransaction:
    if txn.transaction_type == FundingType.DEPOSIT:
        return await complete_deposit(db, txn)
    return await complete_withdrawal(db, txn)


async def cancel_transaction(db: AsyncSession, txn: FundingTransaction) -> FundingTransaction:
    async with atomic(db):
        txn = await _lock_pending(db, txn)
        if txn.transaction_type == FundingType.WITHDRAWAL:
            wallet = await db.get(Wallet, txn.wallet_id) if txn.wallet_id else None
            if wallet is None:
                raise NotFoundError("Wallet for refund not found", details={"transaction_id": txn.id})
            await wallets.deposit(
                db, wallet, txn.amount,
                description="Refund for canceled withdrawal",
                metadata={"funding_transaction_id": txn.id},
                reference_id=f"REFUND-{txn.reference_id}",
            )
        else:
            account = await _lock_account(db, txn.connected_account_id)
            account.available_balance = to_decimal(account.available_balance) + to_decimal(txn.amount)

        txn.status = FundingStatus.CANCELED
        txn.processed_at = datetime.now(timezone.utc)
        await db.flush()

    logger.info("Canceled %s %s", txn.transaction_type.value.lower(), txn.reference_id)
    return txn


async def get_user_transaction(db: AsyncSession, user: User, transaction_id: int) -> FundingTransaction:
    txn = await db.get(FundingTransaction, transaction_id)
    if txn is None or txn.user_id != user.id:
        raise NotFoundError("Funding transaction not found", details={"transaction_id": transaction_id})
    return txn


async def get_user_account(db: AsyncSession, user: User, account_id: int) -> ConnectedAccount:
    account = await db.get(ConnectedAccount, account_id)
    if account is None or account.user_id != user.id:
        raise NotFoundError("Connected account not found", details={"connected_account_id": account_id})
    return account


async def transaction_history(db: AsyncSession, user: User, limit: int = 10, offset: int = 0) -> dict:
    total = await db.scalar(
        select(func.count(FundingTransaction.id)).where(FundingTransaction.user_id == user.id)
    )
    rows = await db.scalars(
        select(FundingTransaction)
        .where(FundingTransaction.user_id == user.id)
        .order_by(FundingTransaction.created_at.desc(), FundingTransaction.id.desc())
        .limit(limit)
        .offset(offset)
    )
    return {"transactions": list(rows), "total": total or 0}


def serialize_account(account: ConnectedAccount) -> dict:
    return {
        "id": account.id,
        "institution_name": account.institution_name,
        "account_name": account.account_name,
        "account_type": account.account_type,
        "account_mask": account.account_mask,
        "currency": account.currency,
        "available_balance": str(to_decimal(account.available_balance)),
        "current_balance": str(to_decimal(account.current_balance)),
        "is_verified": bool(account.is_verified),
    }


def serialize_funding(txn: FundingTransaction) -> dict:
    return {
        "id": txn.id,
        "transaction_type": txn.transaction_type.value,
        "amount": str(to_decimal(txn.amount)),
        "status": txn.status.value,
        "reference_id": txn.reference_id,
        "wallet_id": txn.wallet_id,
        "connected_account_id": txn.connected_account_id,
        "description": txn.description,
        "created_at": txn.created_at.isoformat() if txn.created_at else None,
        "processed_at": txn.processed_at.isoformat() if txn.processed_at else None,
    }
