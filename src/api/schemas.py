"""API-facing Pydantic models."""

from __future__ import annotations

from pydantic import BaseModel


class HealthResponse(BaseModel):
    message: str = "Twilio Media Stream Server is running!"
