"""Entry point for the Twilio to OpenAI Realtime call relay service."""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from agents.errors import MissingCredentialError
from api.routes import router as api_router
from config.settings import get_settings

LOGGER = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    get_settings().require_openai_api_key()
    yield


settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

app = FastAPI(
    title="Realtime Call Relay",
    description="Relays Twilio Media Streams to the OpenAI Realtime API and extracts caller details.",
    lifespan=lifespan,
)
app.include_router(api_router)


def run() -> None:
    try:
        settings.require_openai_api_key()
    except MissingCredentialError as exc:
        LOGGER.error(exc.detail)
        sys.exit(1)

    LOGGER.info("Server is listening on port %s", settings.port)
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    run()
