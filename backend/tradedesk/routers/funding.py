from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from tradedesk.database import get_db
from tradedesk.core.deps import get_current_user
from tradedesk.models.user import User
from tradedesk.models.funding import ConnectedAccount
from tradedesk.schemas.funding import ConnectedAccountRequest, FundingRequest
from tradedesk.services import funding, wallets
from tradedesk.services.exceptions import NotFoundError
from tradedesk.services.funding import serialize_account, serialize_funding

router = APIRouter(prefix="/api/funding", tags=["funding"])

@router.post("/accounts", status_code=201)
async def connect_account(
    body: ConnectedAccountRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    account = await funding.create_connected_account(
        db, user, body.institution_name, body.account_name,
        account_type=body.account_type, account_mask=body.account_mask,
        currency=body.currency, balance=body.balance,
    )
    await db.commit()
    return serialize_account(account)

@router.get("/accounts")
async def list_accounts(user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    accounts = await db.scalars(select(ConnectedAccount).where(ConnectedAccount.user_id == user.id))
    return [serialize_account(a) for a in accounts]

@router.post("/deposits", status_code=201)
async def initiate_deposit(
    body: FundingRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    account = await funding.get_user_account(db, user, body.connected_account_id)
    wallet = await wallets.get_user_wallet(db, user, body.wallet_id) if body.wallet_id else None
    txn = await funding.initiate_deposit(db, user, account, wallet, body.amount)
    await db.commit()
    return serialize_funding(txn)

@router.post("/withdrawals", status_code=201)
async def initiate_withdrawal(
    body: FundingRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    account = await funding.get_user_account(db, user, body.connected_account_id)
    if body.wallet_id:
        wallet = await wallets.get_user_wallet(db, user, body.wallet_id)
    else:
        wallet = await wallets.get_default_wallet(db, user.id)
        if wallet is None:
            raise NotFoundError("No wallet to withdraw from")
    txn = await funding.initiate_withdrawal(db, user, wallet, account, body.amount, body.description)
    await db.commit()
    return serialize_funding(txn)

@router.post("/transactions/{transaction_id}/complete")
async def complete(transaction_id: int, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    txn = await funding.get_user_transaction(db, user, transaction_id)
    txn = await funding.complete_transaction(db, txn)
    await db.commit()
    return serialize_funding(txn)

@router.post("/transactions/{transaction_id}/cancel")
async def cancel(transaction_id: int, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    txn = await funding.get_user_transaction(db, user, transaction_id)
    txn = await funding.cancel_transaction(db, txn)
    await db.commit()
    return serialize_funding(txn)

@router.get("/transactions")
async def history(
    limit: int = Query(10, ge=1, le=100),
    offset: int = Query(0, ge=0),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    result = await funding.transaction_history(db, user, limit=limit, offset=offset)
    return {
        "transactions": [serialize_funding(t) for t in result["transactions"]],
        "total": result["total"],
    }
