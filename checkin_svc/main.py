from __future__ import annotations
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator

from .db import dispose_db, init_db
from .routers import checkins
from .core.config import get_settings
from .core.errors import CheckinError, ConfigurationError
from .core.logging import setup_logging
from .core.metrics import CHECKIN_OUTCOMES
from .core.redis import ping_redis
from .core.nats import nats_connect, nats_close
from .services.badges import get_dispatcher

logger = logging.getLogger(__name__)
settings = get_settings()

@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    await init_db()
    # best-effort connect to infra; service still runs if these fail
    try:
        await nats_connect()
    except Exception as exc:
        logger.warning("NATS unavailable at startup: %r", exc)
    if not await ping_redis():
        logger.warning("Redis unavailable at startup, rate limiting fails open")
    dispatcher = get_dispatcher()
    dispatcher.start()
    yield
    await dispatcher.stop()
    try:
        await nats_close()
    except Exception as exc:
        logger.warning("NATS drain failed: %r", exc)
    await dispose_db()

app = FastAPI(title="checkin-svc", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(checkins.router)

@app.exception_handler(CheckinError)
async def handle_checkin_error(request: Request, exc: CheckinError):
    CHECKIN_OUTCOMES.labels(outcome=exc.kind).inc()
    if isinstance(exc, ConfigurationError):
        # operator-actionable; the volunteer only sees a generic failure
        logger.error("check-in configuration error on %s: %s (%s)", request.url.path, exc.message, exc.code)
    elif exc.status_code >= 500:
        logger.error("check-in failed on %s: %s (%s)", request.url.path, exc.message, exc.code)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

@app.exception_handler(RequestValidationError)
async def handle_request_validation(request: Request, exc: RequestValidationError):
    CHECKIN_OUTCOMES.labels(outcome="validation").inc()
    return JSONResponse(
        status_code=422,
        content={
            "kind": "validation",
            "code": "invalid_request",
            "message": "Request body is malformed",
            "retryable": True,
            "errors": jsonable_errors(exc),
        },
    )

def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    return [{"loc": list(e.get("loc", ())), "msg": e.get("msg", ""), "type": e.get("type", "")} for e in exc.errors()]

@app.get("/health")
async def health():
    return {"status": "ok", "service": "checkin-svc", "badge_dispatcher": get_dispatcher().running}

Instrumentator().instrument(app).expose(app)
