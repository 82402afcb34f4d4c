from fastapi import FastAPI

from src.common.logging import get_logger, setup_logging
from src.common.metrics import setup_metrics
from src.common.settings import settings
from src.common.telemetry import setup_otel

from . import deps
from .api import router

setup_logging(settings.log_level)
logger = get_logger(__name__)

app = FastAPI(title="audio_archive")
setup_metrics(app, "audio_archive")
setup_otel(app, "audio_archive")


@app.on_event("startup")
async def on_startup() -> None:
    backend = deps.get_backend()
    await backend.start()
    logger.info("service.started", backend=backend.settings.backend)


@app.on_event("shutdown")
async def on_shutdown() -> None:
    await deps.close_backend()


@app.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/readyz")
async def readyz() -> dict[str, str]:
    return {"status": "ready"}


app.include_router(router)
