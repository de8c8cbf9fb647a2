from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse

from .engine import configure_logging
from .routes_engine import router as engine_router
from .settings import get_app_config

logger = logging.getLogger(__name__)

app = FastAPI(title="signal-engine")


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url)
    return PlainTextResponse("Internal Server Error", status_code=500)


@app.get("/ping")
async def ping():
    return {"status": "ok"}


app.include_router(engine_router)


@app.on_event("startup")
async def startup_event():
    """Start the daily sweep scheduler on app startup."""
    from .services.scheduler import scheduler_service
    configure_logging(get_app_config().log_level)
    scheduler_service.start()


@app.on_event("shutdown")
async def shutdown_event():
    from .services.scheduler import scheduler_service
    scheduler_service.stop()
