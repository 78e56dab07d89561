from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from tradedesk.database import get_db
from tradedesk.core.deps import get_current_user
from tradedesk.models.user import User
from tradedesk.services import analytics

router = APIRouter(prefix="/api/analytics", tags=["analytics"])

@router.get("/performance")
async def performance(user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    return await analytics.performance_report(db, user)

@router.get("/risk")
async def risk(user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    return await analytics.risk_metrics(db, user)
