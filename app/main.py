# app/main.py
import logging
import sys

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.core.config import settings
from app.core.errors import LedgerError
from app.db.session import AsyncSessionLocal
from app.routers.admin import router as admin_router
from app.routers.bets import router as bets_router
from app.routers.draws import router as draws_router
from app.routers.user import router as user_router
from app.routers.wallet import router as wallet_router
from app.routers.webhooks import router as webhooks_router
from app.services.bootstrap_service import ensure_default_game_modes, ensure_system_settings, init_db
from app.tasks.scheduler import shutdown_scheduler, start_scheduler

# 日志：根级 WARNING，账务模块单独放开
logging.basicConfig(
    level=logging.WARNING,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)
_QUIET = {
    "uvicorn": logging.WARNING,
    "uvicorn.error": logging.WARNING,
    "uvicorn.access": logging.CRITICAL,
    "apscheduler": logging.ERROR,
}
for _name, _level in _QUIET.items():
    logging.getLogger(_name).setLevel(_level)
for _name in ("app.services", "app.tasks", "app.routers.webhooks"):
    logging.getLogger(_name).setLevel(settings.LEDGER_LOG_LEVEL)

logger = logging.getLogger(__name__)

app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
)

# 浏览器前端跨域；凭证仅在指定来源时开放
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials="*" not in settings.CORS_ORIGINS,
    allow_methods=["GET", "POST", "PUT"],
    allow_headers=["Authorization", "Content-Type"],
)


@app.exception_handler(LedgerError)
async def ledger_error_handler(request: Request, exc: LedgerError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s (%s)", request.method, request.url.path, exc.code, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"code": exc.code, "message": exc.message, **exc.details},
    )


for _router in (user_router, wallet_router, bets_router, draws_router, webhooks_router, admin_router):
    app.include_router(_router)


@app.on_event("startup")
async def on_startup() -> None:
    await init_db()
    async with AsyncSessionLocal() as session:
        await ensure_default_game_modes(session)
        await ensure_system_settings(session)
    # 红利过期 / 补结算 / 对账 / 开奖采集
    start_scheduler()


@app.on_event("shutdown")
async def on_shutdown() -> None:
    shutdown_scheduler()


@app.get("/ping")
async def ping():
    return {"ok": True, "env": settings.APP_ENV, "version": settings.APP_VERSION}


@app.get("/healthz")
async def healthz():
    return {"status": "healthy"}
