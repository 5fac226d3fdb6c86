"""OpenAI Realtime API link for one call.

State machine::

    CONNECTING --session.created (or settle timeout)--> CONFIGURING
    CONFIGURING --session.update + greeting sent------> ACTIVE
    any state --close / link error--------------------> CLOSED

Caller audio is only accepted while ACTIVE. Nothing is sent once CLOSED and
there is no reconnection: a call that loses this link keeps running without
AI responses.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from enum import Enum
from typing import Any
from urllib.parse import urlencode

import websockets
from websockets.exceptions import ConnectionClosed, ConnectionClosedOK

from agents.errors import MalformedFrameError, UpstreamLinkError
from config.settings import Settings, get_settings
from integrations.realtime_events import RealtimeEvent, SessionCreated, parse_realtime_event
from prompts.loader import load_prompt

LOGGER = logging.getLogger(__name__)

Connector = Callable[..., Awaitable[Any]]


class LinkState(str, Enum):
    CONNECTING = "connecting"
    CONFIGURING = "configuring"
    ACTIVE = "active"
    CLOSED = "closed"


_TRANSITIONS: dict[LinkState, frozenset[LinkState]] = {
    LinkState.CONNECTING: frozenset({LinkState.CONFIGURING, LinkState.CLOSED}),
    LinkState.CONFIGURING: frozenset({LinkState.ACTIVE, LinkState.CLOSED}),
    LinkState.ACTIVE: frozenset({LinkState.CLOSED}),
    LinkState.CLOSED: frozenset(),
}


def build_session_update(settings: Settings) -> dict[str, Any]:
    return {
        "type": "session.update",
        "session": {
            "turn_detection": {"type": "server_vad"},
            "input_audio_format": "g711_ulaw",
            "output_audio_format": "g711_ulaw",
            "voice": settings.realtime_voice,
            "instructions": load_prompt("persona.txt"),
            "modalities": ["text", "audio"],
            "temperature": settings.realtime_temperature,
            "input_audio_transcription": {"model": settings.realtime_transcription_model},
        },
    }


def build_greeting_item() -> dict[str, Any]:
    return {
        "type": "conversation.item.create",
        "item": {
            "type": "message",
            "role": "user",
            "content": [{"type": "input_text", "text": load_prompt("greeting.txt")}],
        },
    }


class RealtimeVoiceLink:
    """One persistent duplex connection to the OpenAI Realtime API."""

    def __init__(
        self,
        call_id: str,
        *,
        settings: Settings | None = None,
        connect: Connector | None = None,
    ) -> None:
        self._call_id = call_id
        self._settings = settings or get_settings()
        self._connect = connect or websockets.connect
        self._ws: Any = None
        self._state = LinkState.CONNECTING
        self._settle_task: asyncio.Task | None = None
        self._send_lock = asyncio.Lock()

    @property
    def state(self) -> LinkState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state is LinkState.ACTIVE

    @property
    def is_open(self) -> bool:
        return self._ws is not None and self._state is not LinkState.CLOSED

    def _build_url(self) -> str:
        base = self._settings.realtime_url.rstrip("/")
        return f"{base}?{urlencode({'model': self._settings.realtime_model})}"

    async def open(self) -> None:
        api_key = self._settings.require_openai_api_key()
        headers = [
            ("Authorization", f"Bearer {api_key}"),
            ("OpenAI-Beta", "realtime=v1"),
        ]
        url = self._build_url()
        LOGGER.info("Connecting to OpenAI Realtime for call %s: %s", self._call_id, url)
        try:
            self._ws = await self._connect(url, additional_headers=headers)
        except Exception as exc:
            self._mark_closed()
            raise UpstreamLinkError(f"Failed to connect to OpenAI Realtime: {exc}") from exc

        LOGGER.info("Connected to the OpenAI Realtime API (call %s)", self._call_id)
        self._settle_task = asyncio.create_task(self._configure_after_settle())

    async def events(self) -> AsyncIterator[RealtimeEvent]:
        """Yield parsed server events until the link closes."""

        ws = self._ws
        if ws is None:
            return
        try:
            async for message in ws:
                if isinstance(message, bytes):
                    continue
                try:
                    event = parse_realtime_event(message)
                except MalformedFrameError as exc:
                    LOGGER.error("Error processing OpenAI message: %s. Raw message: %.200s", exc.detail, message)
                    continue

                if isinstance(event, SessionCreated) and self._state is LinkState.CONNECTING:
                    self._cancel_settle_task()
                    await self._configure()
                yield event
        except ConnectionClosedOK:
            LOGGER.info("Disconnected from the OpenAI Realtime API (call %s)", self._call_id)
        except ConnectionClosed as exc:
            LOGGER.error("OpenAI Realtime connection lost for call %s: %s", self._call_id, exc)
        except OSError as exc:
            LOGGER.error("Error in the OpenAI WebSocket for call %s: %s", self._call_id, exc)
        finally:
            self._mark_closed()

    async def send_audio(self, payload: str) -> bool:
        if self._state is not LinkState.ACTIVE:
            return False
        return await self._send_json({"type": "input_audio_buffer.append", "audio": payload})

    async def cancel_response(self) -> bool:
        return await self._send_json({"type": "response.cancel"})

    async def close(self) -> None:
        self._mark_closed()
        ws, self._ws = self._ws, None
        if ws is None:
            return
        try:
            await ws.close()
        except (ConnectionClosed, OSError) as exc:
            LOGGER.debug("Ignoring error while closing realtime link for call %s: %s", self._call_id, exc)

    async def _configure_after_settle(self) -> None:
        await asyncio.sleep(self._settings.realtime_settle_timeout_seconds)
        if self._state is LinkState.CONNECTING:
            LOGGER.warning(
                "No session.created within %.1fs for call %s; configuring anyway",
                self._settings.realtime_settle_timeout_seconds,
                self._call_id,
            )
            await self._configure()

    async def _configure(self) -> None:
        if not self._transition(LinkState.CONFIGURING):
            return

        LOGGER.info("Sending session update for call %s", self._call_id)
        sent = await self._send_json(build_session_update(self._settings))
        sent = sent and await self._send_json(build_greeting_item())
        sent = sent and await self._send_json({"type": "response.create"})
        if sent and self._state is LinkState.CONFIGURING:
            self._transition(LinkState.ACTIVE)

    async def _send_json(self, payload: dict[str, Any]) -> bool:
        ws = self._ws
        if self._state is LinkState.CLOSED or ws is None:
            return False

        event_type = str(payload.get("type"))
        if not event_type.startswith("input_audio_buffer."):
            LOGGER.debug("OpenAI send %s (call %s)", event_type, self._call_id)
        try:
            async with self._send_lock:
                await ws.send(json.dumps(payload))
        except (ConnectionClosed, OSError) as exc:
            LOGGER.warning("OpenAI Realtime send failed for call %s: %s", self._call_id, exc)
            self._mark_closed()
            return False
        return True

    def _transition(self, target: LinkState) -> bool:
        if target not in _TRANSITIONS[self._state]:
            LOGGER.warning(
                "Rejected realtime link transition %s -> %s (call %s)",
                self._state.value,
                target.value,
                self._call_id,
            )
            return False
        LOGGER.debug("Realtime link %s -> %s (call %s)", self._state.value, target.value, self._call_id)
        self._state = target
        return True

    def _mark_closed(self) -> None:
        if self._state is not LinkState.CLOSED:
            self._transition(LinkState.CLOSED)
        self._cancel_settle_task()

    def _cancel_settle_task(self) -> None:
        task = self._settle_task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
