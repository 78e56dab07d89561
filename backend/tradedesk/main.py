import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from tradedesk.config import settings
from tradedesk.core.redis import get_redis, close_redis
from tradedesk.routers import wallet, trading, funding, analytics, strategies
from tradedesk.services.exceptions import LedgerError
from tradedesk.services.scheduled_checks import run_price_alert_check, run_milestone_check, run_position_check

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

scheduler = AsyncIOScheduler()

@asynccontextmanager
async def lifespan(app: FastAPI):
    await get_redis()
    scheduler.add_job(run_price_alert_check, "interval", seconds=settings.PRICE_ALERT_INTERVAL_SECONDS,
                      id="price_alerts", max_instances=1, coalesce=True)
    scheduler.add_job(run_position_check, "interval", seconds=settings.POSITION_CHECK_INTERVAL_SECONDS,
                      id="position_check", max_instances=1, coalesce=True)
    scheduler.add_job(run_milestone_check, "cron", hour=0, minute=10, id="milestones")
    scheduler.start()
    logger.info("Scheduler started")
    yield
    scheduler.shutdown()
    await close_redis()

app = FastAPI(title="TradeDesk API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.exception_handler(LedgerError)
async def ledger_error_handler(request: Request, exc: LedgerError):
    logger.info("%s on %s: %s", exc.error_code, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.error_code, "message": exc.message, "details": exc.details},
    )

app.include_router(wallet.router)
app.include_router(trading.router)
app.include_router(funding.router)
app.include_router(analytics.router)
app.include_router(strategies.router)

@app.get("/health")
async def health():
    return {"status": "ok"}
