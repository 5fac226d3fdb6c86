"""Application-wide configuration loading and validation."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from agents.errors import MissingCredentialError


class Settings(BaseSettings):
    """Centralized environment configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    environment: Literal["local", "dev", "prod"] = Field(default="local")
    log_level: str = Field(default="INFO")

    # HTTP server
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=5050, description="Listening port for webhooks and media streams.")

    # OpenAI credential shared by the realtime link and the extraction call
    openai_api_key: str | None = Field(default=None)

    # OpenAI Realtime (upstream voice link)
    realtime_url: str = Field(default="wss://api.openai.com/v1/realtime")
    realtime_model: str = Field(default="gpt-4o-realtime-preview-2024-10-01")
    realtime_voice: str = Field(default="ballad")
    realtime_temperature: float = Field(default=0.8, ge=0.6, le=1.2)
    realtime_transcription_model: str = Field(default="whisper-1")
    realtime_settle_timeout_seconds: float = Field(
        default=2.0,
        gt=0.0,
        description=(
            "How long to wait for session.created before configuring the "
            "realtime session anyway."
        ),
    )
    realtime_log_event_types: list[str] = Field(
        default=[
            "response.content.done",
            "rate_limits.updated",
            "response.done",
            "input_audio_buffer.committed",
            "input_audio_buffer.speech_stopped",
            "input_audio_buffer.speech_started",
            "session.created",
            "response.text.done",
            "conversation.item.input_audio_transcription.completed",
        ],
        description="Upstream event types logged verbatim.",
    )

    # Post-call extraction
    llm_provider: Literal["openai", "self_hosted_vllm"] = Field(default="openai")
    llm_endpoint: str | None = Field(
        default=None,
        description="Base URL of an OpenAI-compatible server (vLLM/TGI) or an OpenAI proxy.",
    )
    llm_api_key: str | None = Field(
        default=None,
        description="Key for the extraction endpoint; defaults to OPENAI_API_KEY.",
    )
    extraction_model: str = Field(default="gpt-4o-2024-08-06")

    # Twilio (Voice)
    public_base_url: str | None = Field(
        default=None,
        description="Public base URL for Twilio (e.g. https://<ngrok>.ngrok-free.app).",
    )
    call_disclaimer: str = Field(default="This call will be recorded for quality purposes.")

    @field_validator("openai_api_key", "llm_api_key", "llm_endpoint", "public_base_url")
    @classmethod
    def blank_is_unset(cls, value: str | None) -> str | None:
        if value is not None and not value.strip():
            return None
        return value

    @property
    def extraction_api_key(self) -> str | None:
        return self.llm_api_key or self.openai_api_key

    def require_openai_api_key(self) -> str:
        """Return the OpenAI key or raise if the process must not start."""

        if not self.openai_api_key:
            raise MissingCredentialError("Missing OpenAI API key. Please set OPENAI_API_KEY in the .env file.")
        return self.openai_api_key


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance."""

    return Settings()
