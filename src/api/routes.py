"""FastAPI routes exposed by the relay service."""

from __future__ import annotations

from fastapi import APIRouter

from api.schemas import HealthResponse
from api.twilio_routes import router as twilio_router

router = APIRouter()


@router.get("/", response_model=HealthResponse)
async def root() -> HealthResponse:
    return HealthResponse()


router.include_router(twilio_router)
