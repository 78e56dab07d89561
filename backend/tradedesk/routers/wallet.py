from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from tradedesk.database import get_db
from tradedesk.core.deps import get_current_user
from tradedesk.models.user import User
from tradedesk.schemas.wallet import (
    CreateWalletRequest, DepositRequest, WithdrawRequest, TransferRequest, LockRequest,
)
from tradedesk.services import wallets
from tradedesk.services.wallets import serialize_wallet, serialize_transaction

router = APIRouter(prefix="/api/wallets", tags=["wallets"])

@router.get("")
async def get_summary(user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    summary = await wallets.wallet_summary(db, user)
    for key in ("total_balance", "total_available_balance", "total_locked_balance"):
        summary[key] = str(summary[key])
    return summary

@router.post("", status_code=201)
async def create_wallet(
    body: CreateWalletRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    wallet = await wallets.create_wallet(
        db, user, body.currency, body.currency_type,
        is_default=body.is_default, initial_balance=body.initial_balance,
    )
    await db.commit()
    return serialize_wallet(wallet)

@router.get("/{wallet_id}")
async def get_wallet(wallet_id: int, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    return serialize_wallet(await wallets.get_user_wallet(db, user, wallet_id))

@router.post("/{wallet_id}/default")
async def set_default(wallet_id: int, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    wallet = await wallets.get_user_wallet(db, user, wallet_id)
    wallet = await wallets.set_default_wallet(db, wallet)
    await db.commit()
    return serialize_wallet(wallet)

@router.delete("/{wallet_id}")
async def delete_wallet(wallet_id: int, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    wallet = await wallets.get_user_wallet(db, user, wallet_id)
    await wallets.delete_wallet(db, wallet)
    await db.commit()
    return {"message": "deleted"}

@router.get("/{wallet_id}/transactions")
async def get_transactions(
    wallet_id: int,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    wallet = await wallets.get_user_wallet(db, user, wallet_id)
    lines = await wallets.list_transactions(db, wallet, limit=limit, offset=offset)
    return [serialize_transaction(line) for line in lines]

@router.post("/{wallet_id}/deposit")
async def deposit(
    wallet_id: int,
    body: DepositRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    wallet = await wallets.get_user_wallet(db, user, wallet_id)
    line = await wallets.deposit(db, wallet, body.amount, description=body.description)
    await db.commit()
    return {"wallet": serialize_wallet(wallet), "transaction": serialize_transaction(line)}

@router.post("/{wallet_id}/withdraw")
async def withdraw(
    wallet_id: int,
    body: WithdrawRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    wallet = await wallets.get_user_wallet(db, user, wallet_id)
    line = await wallets.withdraw(db, wallet, body.amount, fee=body.fee, description=body.description)
    await db.commit()
    return {"wallet": serialize_wallet(wallet), "transaction": serialize_transaction(line)}

@router.post("/{wallet_id}/transfer")
async def transfer(
    wallet_id: int,
    body: TransferRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    source = await wallets.get_user_wallet(db, user, wallet_id)
    target = await wallets.get_user_wallet(db, user, body.to_wallet_id)
    out_line, in_line = await wallets.transfer(
        db, source, target, body.amount, fee=body.fee, description=body.description
    )
    await db.commit()
    return {
        "reference_id": out_line.reference_id,
        "from_wallet": serialize_wallet(source),
        "to_wallet": serialize_wallet(target),
        "transactions": [serialize_transaction(out_line), serialize_transaction(in_line)],
    }

@router.post("/{wallet_id}/lock")
async def lock(
    wallet_id: int,
    body: LockRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    wallet = await wallets.get_user_wallet(db, user, wallet_id)
    line = await wallets.lock_funds(db, wallet, body.amount, reason=body.reason)
    await db.commit()
    return {"wallet": serialize_wallet(wallet), "transaction": serialize_transaction(line)}

@router.post("/{wallet_id}/unlock")
async def unlock(
    wallet_id: int,
    body: LockRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    wallet = await wallets.get_user_wallet(db, user, wallet_id)
    line = await wallets.unlock_funds(db, wallet, body.amount, reason=body.reason)
    await db.commit()
    return {"wallet": serialize_wallet(wallet), "transaction": serialize_transaction(line)}
