import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from ledger.config import settings
from ledger.core.exceptions import Contention, LedgerError, NotFound
from ledger.core.logging import setup_logging
from ledger.core.redis import close_redis
from ledger.routers import wallet

logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(settings.LOG_LEVEL)
    yield
    await close_redis()

app = FastAPI(title="Wallet Ledger API", lifespan=lifespan)

_allowed_origins = [o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()] or ["http://localhost:3000"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=_allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(wallet.router)


def _status_for(exc: LedgerError) -> int:
    if isinstance(exc, NotFound):
        return 404
    if isinstance(exc, Contention):
        return 409
    return 400


@app.exception_handler(LedgerError)
async def ledger_error_handler(request: Request, exc: LedgerError):
    status_code = _status_for(exc)
    logger.info(
        "Request rejected",
        extra={"path": request.url.path, "code": exc.error_code, "status": status_code},
    )
    return JSONResponse(
        status_code=status_code,
        content={"error": exc.message, "code": exc.error_code, "retryable": exc.retryable},
    )


@app.get("/health")
async def health():
    return {"status": "ok"}
