import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from songbattle import __version__
from songbattle.api import api_router
from songbattle.core.config import get_settings
from songbattle.db.base import Base
from songbattle.db.session import SessionLocal, engine
from songbattle import models  # noqa: F401
from songbattle.services.scheduler import PhaseEngine
from songbattle.services.tasks import WebhookArtifactGenerator


settings = get_settings()

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    configure_logging(settings.log_level)
    Base.metadata.create_all(bind=engine)

    generator: Optional[WebhookArtifactGenerator] = None
    if settings.artifact_webhook_url:
        generator = WebhookArtifactGenerator(
            settings.artifact_webhook_url,
            timeout=settings.artifact_timeout_seconds,
        )

    phase_engine: Optional[PhaseEngine] = None
    if settings.scheduler_enabled:
        phase_engine = PhaseEngine(SessionLocal, settings, generator=generator)
        phase_engine.start()
    else:
        logger.info("phase_engine_disabled env=%s", settings.env)
    app.state.phase_engine = phase_engine

    try:
        yield
    finally:
        if phase_engine is not None:
            phase_engine.shutdown()
        if generator is not None:
            generator.close()


app = FastAPI(title="Song Battle API", version=__version__, lifespan=lifespan)
app.state.phase_engine = None

if settings.cors_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


@app.get("/")
def root() -> dict:
    return {
        "name": "Song Battle",
        "status": "online",
        "health": "/health",
        "api": "/v1",
    }


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}


app.include_router(api_router)
