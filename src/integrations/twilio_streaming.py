"""Twilio Media Streams framing and the carrier-facing side of a call.

Inbound frames: ``start`` (carries the streamSid), ``media`` (base64 mu-law
payload), and informational kinds (``connected``, ``mark``, ``stop``...).
Outbound frames: ``media`` and ``clear``, both tagged with the bound streamSid.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any, Protocol, Union

from fastapi import WebSocketDisconnect

from agents.errors import MalformedFrameError

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class StartEvent:
    stream_sid: str
    call_sid: str | None = None
    custom_parameters: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class MediaEvent:
    payload: str
    track: str | None = None

    @property
    def is_inbound(self) -> bool:
        return self.track is None or self.track == "inbound"


@dataclass(frozen=True, slots=True)
class OtherEvent:
    event: str
    raw: dict[str, Any] = field(default_factory=dict)


CarrierEvent = Union[StartEvent, MediaEvent, OtherEvent]


def parse_twilio_ws_message(text: str | bytes) -> CarrierEvent:
    try:
        message = json.loads(text)
    except (TypeError, ValueError) as exc:
        raise MalformedFrameError(f"Frame is not JSON: {exc}") from exc
    if not isinstance(message, dict):
        raise MalformedFrameError("Frame is not a JSON object")

    event = str(message.get("event") or "")
    if event == "start":
        start = message.get("start")
        if not isinstance(start, dict) or not start.get("streamSid"):
            raise MalformedFrameError("start frame without streamSid")
        params = start.get("customParameters") or {}
        return StartEvent(
            stream_sid=str(start["streamSid"]),
            call_sid=start.get("callSid"),
            custom_parameters={str(k): str(v) for k, v in params.items()} if isinstance(params, dict) else {},
        )
    if event == "media":
        media = message.get("media")
        if not isinstance(media, dict) or not isinstance(media.get("payload"), str):
            raise MalformedFrameError("media frame without payload")
        return MediaEvent(payload=media["payload"], track=media.get("track"))
    return OtherEvent(event=event or "unknown", raw=message)


def build_media_frame(stream_sid: str, payload: str) -> dict[str, Any]:
    return {"event": "media", "streamSid": stream_sid, "media": {"payload": payload}}


def build_clear_frame(stream_sid: str) -> dict[str, Any]:
    return {"event": "clear", "streamSid": stream_sid}


class CarrierSocket(Protocol):
    async def receive(self) -> dict[str, Any]: ...

    async def send_text(self, data: str) -> None: ...


class TwilioMediaLink:
    """Duplex link to one Twilio media stream."""

    def __init__(self, websocket: CarrierSocket) -> None:
        self._ws = websocket
        self._stream_sid: str | None = None
        self._closed = False

    @property
    def stream_sid(self) -> str | None:
        return self._stream_sid

    @property
    def closed(self) -> bool:
        return self._closed

    def bind_stream(self, stream_sid: str) -> None:
        self._stream_sid = stream_sid

    async def frames(self) -> AsyncIterator[CarrierEvent]:
        """Yield parsed inbound frames until the carrier disconnects."""

        while not self._closed:
            message = await self._ws.receive()
            if message["type"] == "websocket.disconnect":
                self._closed = True
                return
            text = message.get("text")
            if text is None:
                LOGGER.warning("Dropping non-text carrier frame (%s)", message["type"])
                continue
            try:
                event = parse_twilio_ws_message(text)
            except MalformedFrameError as exc:
                LOGGER.warning("Dropping carrier frame: %s. Message: %.200s", exc.detail, text)
                continue
            yield event

    async def send_media(self, payload: str) -> bool:
        if self._stream_sid is None:
            LOGGER.warning("Dropping outbound audio: stream has not started yet")
            return False
        return await self._send(build_media_frame(self._stream_sid, payload))

    async def send_clear(self) -> bool:
        if self._stream_sid is None:
            LOGGER.debug("Nothing to clear: stream has not started yet")
            return False
        return await self._send(build_clear_frame(self._stream_sid))

    async def _send(self, frame: dict[str, Any]) -> bool:
        if self._closed:
            return False
        try:
            await self._ws.send_text(json.dumps(frame))
        except (WebSocketDisconnect, RuntimeError, OSError) as exc:
            LOGGER.warning("Carrier link send failed, closing: %s", exc)
            self._closed = True
            return False
        return True
