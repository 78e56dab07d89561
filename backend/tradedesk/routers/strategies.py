from fastapi import APIRouter, Depends, HTTPException
from tradedesk.core.deps import get_current_user
from tradedesk.models.user import User
from tradedesk.schemas.strategy import BacktestRequest
from tradedesk.services.backtest import run_ma_cross, summarize

router = APIRouter(prefix="/api/strategies", tags=["strategies"])

STRATEGIES = {"ma_cross": "Moving average crossover"}

@router.get("")
async def list_strategies(user: User = Depends(get_current_user)):
    return [{"id": key, "name": name} for key, name in STRATEGIES.items()]

@router.post("/backtest")
async def backtest(body: BacktestRequest, user: User = Depends(get_current_user)):
    if body.strategy not in STRATEGIES:
        raise HTTPException(400, f"Unknown strategy: {body.strategy}")
    candles = [c.model_dump() for c in body.candles]
    trades = run_ma_cross(candles, body.fast_period, body.slow_period)
    return {
        "strategy": body.strategy,
        "trades": [t.to_dict() for t in trades],
        "summary": summarize(trades, body.initial_capital),
    }
