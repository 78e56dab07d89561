"""
Wallet balance mutations and the append-only ledger behind them.

Every balance change goes through one of the functions here. Each runs in a
single ``atomic`` block, re-reads the wallet row ``FOR UPDATE`` and writes
exactly the ledger lines that describe the change, so a wallet always
satisfies ``balance == available_balance + locked_balance``.
"""

import logging
import uuid
from decimal import Decimal, ROUND_HALF_EVEN
from typing import Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from tradedesk.database import atomic
from tradedesk.models.funding import FundingTransaction, FundingStatus
from tradedesk.models.user import User
from tradedesk.models.wallet import Wallet, WalletTransaction, CurrencyType, TransactionType
from tradedesk.services.exceptions import (
    CurrencyMismatchError,
    InsufficientFundsError,
    InsufficientLockedFundsError,
    InvalidAmountError,
    InvalidStateError,
    NotFoundError,
)

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
# matches the Numeric(20, 8) amount columns
QUANTUM = Decimal("0.00000001")


def to_decimal(value) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def quantize(value) -> Decimal:
    return to_decimal(value).quantize(QUANTUM, rounding=ROUND_HALF_EVEN)


def generate_reference(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:16].upper()}"


def _check_amount(amount: Decimal, fee: Decimal = ZERO) -> None:
    if amount <= 0:
        raise InvalidAmountError("Amount must be positive", details={"amount": str(amount)})
    if fee < 0:
        raise InvalidAmountError("Fee cannot be negative", details={"fee": str(fee)})


async def lock_wallet(db: AsyncSession, wallet_id: int) -> Wallet:
    """Re-read a wallet row with a row lock, refreshing the identity-map copy."""
    stmt = (
        select(Wallet)
        .where(Wallet.id == wallet_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    wallet = await db.scalar(stmt)
    if wallet is None:
        raise NotFoundError("Wallet not found", details={"wallet_id": wallet_id})
    return wallet


async def _find_replay(
    db: AsyncSession, wallet_id: int, transaction_type: TransactionType, reference_id: Optional[str]
) -> Optional[WalletTransaction]:
    if not reference_id:
        return None
    return await db.scalar(
        select(WalletTransaction).where(
            WalletTransaction.wallet_id == wallet_id,
            WalletTransaction.transaction_type == transaction_type,
            WalletTransaction.reference_id == reference_id,
        )
    )


def _record(
    db: AsyncSession,
    wallet: Wallet,
    transaction_type: TransactionType,
    amount: Decimal,
    fee: Decimal = ZERO,
    description: Optional[str] = None,
    reference_id: Optional[str] = None,
    metadata: Optional[dict] = None,
) -> WalletTransaction:
    line = WalletTransaction(
        wallet_id=wallet.id,
        user_id=wallet.user_id,
        transaction_type=transaction_type,
        amount=amount,
        fee=fee,
        status="COMPLETED",
        description=description,
        reference_id=reference_id,
        meta=metadata,
    )
    db.add(line)
    return line


async def _clear_default(db: AsyncSession, user_id: int, keep_id: Optional[int] = None) -> None:
    stmt = (
        select(Wallet)
        .where(Wallet.user_id == user_id, Wallet.is_default.is_(True))
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    if keep_id is not None:
        stmt = stmt.where(Wallet.id != keep_id)
    for other in (await db.scalars(stmt)).all():
        other.is_default = False


async def create_wallet(
    db: AsyncSession,
    user: User,
    currency: str,
    currency_type: CurrencyType = CurrencyType.FIAT,
    is_default: bool = False,
    initial_balance=0,
) -> Wallet:
    initial = to_decimal(initial_balance)
    if initial < 0:
        raise InvalidAmountError("Initial balance cannot be negative", details={"amount": str(initial)})

    async with atomic(db):
        existing = await db.scalar(select(func.count(Wallet.id)).where(Wallet.user_id == user.id))
        if not existing:
            is_default = True
        elif is_default:
            await _clear_default(db, user.id)

        wallet = Wallet(
            user_id=user.id,
            currency=currency.upper(),
            currency_type=currency_type,
            balance=ZERO,
            available_balance=ZERO,
            locked_balance=ZERO,
            is_default=is_default,
        )
        db.add(wallet)
        await db.flush()

        if initial > 0:
            await deposit(db, wallet, initial, description="Initial wallet funding")

    logger.info("Created %s wallet %s for user %s (default=%s)", wallet.currency, wallet.id, user.id, is_default)
    return wallet


async def deposit(
    db: AsyncSession,
    wallet: Wallet,
    amount,
    fee=0,
    description: Optional[str] = None,
    metadata: Optional[dict] = None,
    reference_id: Optional[str] = None,
) -> WalletTransaction:
    amount, fee = to_decimal(amount), to_decimal(fee)
    _check_amount(amount, fee)

    async with atomic(db):
        replay = await _find_replay(db, wallet.id, TransactionType.DEPOSIT, reference_id)
        if replay is not None:
            logger.info("Deposit %s already applied to wallet %s", reference_id, wallet.id)
            return replay

        wallet = await lock_wallet(db, wallet.id)
        wallet.balance = to_decimal(wallet.balance) + amount
        wallet.available_balance = to_decimal(wallet.available_balance) + amount
        line = _record(
            db, wallet, TransactionType.DEPOSIT, amount, fee,
            description or "Deposit", reference_id, metadata,
        )
        await db.flush()

    logger.info("Deposited %s %s into wallet %s", amount, wallet.currency, wallet.id)
    return line


async def withdraw(
    db: AsyncSession,
    wallet: Wallet,
    amount,
    fee=0,
    description: Optional[str] = None,
    metadata: Optional[dict] = None,
    reference_id: Optional[str] = None,
) -> WalletTransaction:
    amount, fee = to_decimal(amount), to_decimal(fee)
    _check_amount(amount, fee)
    total = amount + fee

    async with atomic(db):
        replay = await _find_replay(db, wallet.id, TransactionType.WITHDRAWAL, reference_id)
        if replay is not None:
            logger.info("Withdrawal %s already applied to wallet %s", reference_id, wallet.id)
            return replay

        wallet = await lock_wallet(db, wallet.id)
        available = to_decimal(wallet.available_balance)
        if available < total:
            raise InsufficientFundsError(
                required_amount=total, available_amount=available, currency=wallet.currency
            )
        wallet.balance = to_decimal(wallet.balance) - total
        wallet.available_balance = available - total
        line = _record(
            db, wallet, TransactionType.WITHDRAWAL, -amount, fee,
            description or "Withdrawal", reference_id, metadata,
        )
        await db.flush()

    logger.info("Withdrew %s (fee %s) %s from wallet %s", amount, fee, wallet.currency, wallet.id)
    return line


async def transfer(
    db: AsyncSession,
    from_wallet: Wallet,
    to_wallet: Wallet,
    amount,
    fee=0,
    description: Optional[str] = None,
) -> tuple[WalletTransaction, WalletTransaction]:
    """Move funds between two wallets of the same currency.

    The source pays ``amount + fee``, the destination receives ``amount``.
    Both ledger lines share one generated reference id.
    """
    amount, fee = to_decimal(amount), to_decimal(fee)
    _check_amount(amount, fee)
    if from_wallet.id == to_wallet.id:
        raise InvalidAmountError("Cannot transfer to the same wallet", details={"wallet_id": from_wallet.id})
    if from_wallet.currency != to_wallet.currency:
        raise CurrencyMismatchError(
            "Wallet currencies differ",
            details={"from_currency": from_wallet.currency, "to_currency": to_wallet.currency},
        )
    total = amount + fee
    reference_id = generate_reference("TRANSFER")

    async with atomic(db):
        # lock in id order
        first, second = sorted([from_wallet.id, to_wallet.id])
        locked = {first: await lock_wallet(db, first), second: await lock_wallet(db, second)}
        source, target = locked[from_wallet.id], locked[to_wallet.id]

        available = to_decimal(source.available_balance)
        if available < total:
            raise InsufficientFundsError(
                required_amount=total, available_amount=available, currency=source.currency
            )

        source.balance = to_decimal(source.balance) - total
        source.available_balance = available - total
        target.balance = to_decimal(target.balance) + amount
        target.available_balance = to_decimal(target.available_balance) + amount

        note = description or "Transfer"
        out_line = _record(
            db, source, TransactionType.TRANSFER_OUT, -amount, fee,
            f"{note} to wallet #{target.id}", reference_id, {"to_wallet_id": target.id},
        )
        in_line = _record(
            db, target, TransactionType.TRANSFER_IN, amount, ZERO,
            f"{note} from wallet #{source.id}", reference_id, {"from_wallet_id": source.id},
        )
        await db.flush()

    logger.info("Transferred %s %s from wallet %s to wallet %s (%s)",
                amount, source.currency, source.id, target.id, reference_id)
    return out_line, in_line


async def lock_funds(
    db: AsyncSession,
    wallet: Wallet,
    amount,
    reason: str = "Trading margin",
    reference_id: Optional[str] = None,
) -> WalletTransaction:
    amount = to_decimal(amount)
    _check_amount(amount)

    async with atomic(db):
        replay = await _find_replay(db, wallet.id, TransactionType.LOCK, reference_id)
        if replay is not None:
            return replay

        wallet = await lock_wallet(db, wallet.id)
        available = to_decimal(wallet.available_balance)
        if available < amount:
            raise InsufficientFundsError(
                "Insufficient funds available to lock",
                required_amount=amount, available_amount=available, currency=wallet.currency,
            )
        wallet.available_balance = available - amount
        wallet.locked_balance = to_decimal(wallet.locked_balance) + amount
        line = _record(
            db, wallet, TransactionType.LOCK, amount, ZERO,
            f"Funds locked: {reason}", reference_id, {"reason": reason},
        )
        await db.flush()

    logger.info("Locked %s %s on wallet %s", amount, wallet.currency, wallet.id)
    return line


async def unlock_funds(
    db: AsyncSession,
    wallet: Wallet,
    amount,
    reason: str = "Trading margin released",
    reference_id: Optional[str] = None,
) -> WalletTransaction:
    amount = to_decimal(amount)
    _check_amount(amount)

    async with atomic(db):
        replay = await _find_replay(db, wallet.id, TransactionType.UNLOCK, reference_id)
        if replay is not None:
            return replay

        wallet = await lock_wallet(db, wallet.id)
        locked = to_decimal(wallet.locked_balance)
        if locked < amount:
            raise InsufficientLockedFundsError(requested=amount, locked=locked)
        wallet.locked_balance = locked - amount
        wallet.available_balance = to_decimal(wallet.available_balance) + amount
        line = _record(
            db, wallet, TransactionType.UNLOCK, amount, ZERO,
            f"Funds unlocked: {reason}", reference_id, {"reason": reason},
        )
        await db.flush()

    logger.info("Unlocked %s %s on wallet %s", amount, wallet.currency, wallet.id)
    return line


# ------------------------------------------------------------------
# Read side
# ------------------------------------------------------------------

async def get_user_wallet(db: AsyncSession, user: User, wallet_id: int) -> Wallet:
    wallet = await db.get(Wallet, wallet_id)
    if wallet is None or wallet.user_id != user.id:
        raise NotFoundError("Wallet not found", details={"wallet_id": wallet_id})
    return wallet


async def get_default_wallet(db: AsyncSession, user_id: int) -> Optional[Wallet]:
    wallet = await db.scalar(
        select(Wallet).where(Wallet.user_id == user_id, Wallet.is_default.is_(True))
    )
    if wallet is None:
        wallet = await db.scalar(select(Wallet).where(Wallet.user_id == user_id).order_by(Wallet.id))
    return wallet


async def set_default_wallet(db: AsyncSession, wallet: Wallet) -> Wallet:
    async with atomic(db):
        await _clear_default(db, wallet.user_id, keep_id=wallet.id)
        wallet = await lock_wallet(db, wallet.id)
        wallet.is_default = True
        await db.flush()
    return wallet


async def delete_wallet(db: AsyncSession, wallet: Wallet) -> None:
    async with atomic(db):
        wallet = await lock_wallet(db, wallet.id)
        if to_decimal(wallet.balance) > 0:
            raise InvalidStateError(
                "Cannot delete a wallet with a positive balance",
                details={"wallet_id": wallet.id, "balance": str(wallet.balance)},
            )
        pending = await db.scalar(
            select(func.count(FundingTransaction.id)).where(
                FundingTransaction.wallet_id == wallet.id,
                FundingTransaction.status == FundingStatus.PENDING,
            )
        )
        if pending:
            raise InvalidStateError(
                "Cannot delete a wallet with pending funding transactions",
                details={"wallet_id": wallet.id, "pending": pending},
            )
        history = await db.scalar(
            select(func.count(WalletTransaction.id)).where(WalletTransaction.wallet_id == wallet.id)
        )
        if history:
            raise InvalidStateError(
                "Cannot delete a wallet with ledger history",
                details={"wallet_id": wallet.id, "transactions": history},
            )
        was_default = wallet.is_default
        user_id = wallet.user_id
        await db.delete(wallet)
        await db.flush()
        if was_default:
            replacement = await db.scalar(
                select(Wallet).where(Wallet.user_id == user_id).order_by(Wallet.id).with_for_update()
            )
            if replacement is not None:
                replacement.is_default = True
                await db.flush()
    logger.info("Deleted wallet for user %s", user_id)


async def list_transactions(
    db: AsyncSession, wallet: Wallet, limit: int = 50, offset: int = 0
) -> list[WalletTransaction]:
    rows = await db.scalars(
        select(WalletTransaction)
        .where(WalletTransaction.wallet_id == wallet.id)
        .order_by(WalletTransaction.id.desc())
        .limit(limit)
        .offset(offset)
    )
    return list(rows)


def serialize_wallet(wallet: Wallet) -> dict:
    return {
        "id": wallet.id,
        "currency": wallet.currency,
        "currency_type": wallet.currency_type.value if wallet.currency_type else None,
        "balance": str(to_decimal(wallet.balance)),
        "available_balance": str(to_decimal(wallet.available_balance)),
        "locked_balance": str(to_decimal(wallet.locked_balance)),
        "is_default": bool(wallet.is_default),
    }


def serialize_transaction(line: WalletTransaction) -> dict:
    return {
        "id": line.id,
        "wallet_id": line.wallet_id,
        "transaction_type": line.transaction_type.value,
        "amount": str(to_decimal(line.amount)),
        "fee": str(to_decimal(line.fee)),
        "status": line.status,
        "description": line.description,
        "reference_id": line.reference_id,
        "metadata": line.meta,
        "created_at": line.created_at.isoformat() if line.created_at else None,
    }


async def wallet_summary(db: AsyncSession, user: User) -> dict:
    wallets = (await db.scalars(
        select(Wallet).where(Wallet.user_id == user.id).order_by(Wallet.id)
    )).all()
    summary = {
        "total_balance": ZERO,
        "total_available_balance": ZERO,
        "total_locked_balance": ZERO,
        "wallets": [],
    }
    for wallet in wallets:
        summary["total_balance"] += to_decimal(wallet.balance)
        summary["total_available_balance"] += to_decimal(wallet.available_balance)
        summary["total_locked_balance"] += to_decimal(wallet.locked_balance)
        summary["wallets"].append(serialize_wallet(wallet))
    return summary
