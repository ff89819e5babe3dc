import logging
import threading
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

import aiborn.models  # noqa: F401  (registers tables)
from aiborn.core.config import settings
from aiborn.core.errors import (
    AppError,
    app_error_handler,
    http_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from aiborn.core.logging import configure_logging, new_request_id, request_id_ctx
from aiborn.db.base import Base
from aiborn.db.session import engine
from aiborn.pipeline.context import build_context
from aiborn.pipeline.jobs import recover_pending_jobs
from aiborn.routers.admin import router as admin_router
from aiborn.routers.auth import router as auth_router
from aiborn.routers.bonus import router as bonus_router
from aiborn.routers.codes import router as codes_router
from aiborn.routers.downloads import router as downloads_router
from aiborn.routers.me import router as me_router
from aiborn.routers.newsletter import router as newsletter_router
from aiborn.routers.receipts import router as receipts_router

configure_logging(settings.LOG_LEVEL)
logger = logging.getLogger("aiborn")


class RequestIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        rid = request.headers.get("x-request-id") or new_request_id()
        token = request_id_ctx.set(rid)
        try:
            response = await call_next(request)
            response.headers["x-request-id"] = rid
            return response
        finally:
            request_id_ctx.reset(token)


@asynccontextmanager
async def lifespan(app: FastAPI):
    Base.metadata.create_all(bind=engine)
    if getattr(app.state, "pipeline", None) is None:
        app.state.pipeline = build_context(settings)

    # receipts whose job was cut short by the last shutdown
    threading.Thread(
        target=recover_pending_jobs, args=(app.state.pipeline,), name="receipt-recovery", daemon=True
    ).start()
    logger.info("Started (env=%s)", settings.ENV)
    yield


app = FastAPI(title="AI-Born API", lifespan=lifespan)
app.add_middleware(RequestIdMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


app.include_router(auth_router)
app.include_router(me_router)
app.include_router(receipts_router)
app.include_router(bonus_router)
app.include_router(downloads_router)
app.include_router(codes_router)
app.include_router(newsletter_router)
app.include_router(admin_router)


app.add_exception_handler(AppError, app_error_handler)
app.add_exception_handler(StarletteHTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)


@app.get("/health")
def health():
    return {"ok": True}


@app.get("/")
def root():
    return {"status": "ok", "docs": "/docs"}
