"""Typed view of the OpenAI Realtime server events the relay reacts to."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Union

from agents.errors import MalformedFrameError

SESSION_CREATED = "session.created"
SESSION_UPDATED = "session.updated"
TRANSCRIPTION_COMPLETED = "conversation.item.input_audio_transcription.completed"
RESPONSE_CREATED = "response.created"
RESPONSE_DONE = "response.done"
AUDIO_DELTA = "response.audio.delta"
SPEECH_STARTED = "input_audio_buffer.speech_started"
ERROR = "error"


@dataclass(frozen=True, slots=True)
class SessionCreated:
    type: str
    raw: dict[str, Any] = field(repr=False)


@dataclass(frozen=True, slots=True)
class SessionUpdated:
    type: str
    raw: dict[str, Any] = field(repr=False)


@dataclass(frozen=True, slots=True)
class TranscriptionCompleted:
    type: str
    raw: dict[str, Any] = field(repr=False)
    transcript: str = ""


@dataclass(frozen=True, slots=True)
class ResponseCreated:
    type: str
    raw: dict[str, Any] = field(repr=False)
    response_id: str | None = None


@dataclass(frozen=True, slots=True)
class ResponseDone:
    type: str
    raw: dict[str, Any] = field(repr=False)
    response_id: str | None = None
    text: str | None = None


@dataclass(frozen=True, slots=True)
class AudioDelta:
    type: str
    raw: dict[str, Any] = field(repr=False)
    delta: str = ""
    response_id: str | None = None


@dataclass(frozen=True, slots=True)
class SpeechStarted:
    type: str
    raw: dict[str, Any] = field(repr=False)


@dataclass(frozen=True, slots=True)
class RealtimeError:
    type: str
    raw: dict[str, Any] = field(repr=False)
    message: str = ""
    code: str | None = None


@dataclass(frozen=True, slots=True)
class UnknownEvent:
    type: str
    raw: dict[str, Any] = field(repr=False)


RealtimeEvent = Union[
    SessionCreated,
    SessionUpdated,
    TranscriptionCompleted,
    ResponseCreated,
    ResponseDone,
    AudioDelta,
    SpeechStarted,
    RealtimeError,
    UnknownEvent,
]


def agent_text_from_response(response: Any) -> str | None:
    """First spoken transcript of the first output item, if any."""

    if not isinstance(response, dict):
        return None
    output = response.get("output")
    if not isinstance(output, list) or not output or not isinstance(output[0], dict):
        return None
    content = output[0].get("content")
    if not isinstance(content, list):
        return None
    for part in content:
        if isinstance(part, dict) and part.get("transcript"):
            return str(part["transcript"])
    return None


def parse_realtime_event(text: str | bytes) -> RealtimeEvent:
    try:
        event = json.loads(text)
    except (TypeError, ValueError) as exc:
        raise MalformedFrameError(f"Realtime payload is not JSON: {exc}") from exc
    if not isinstance(event, dict) or not isinstance(event.get("type"), str):
        raise MalformedFrameError("Realtime payload has no event type")

    event_type = event["type"]
    if event_type == SESSION_CREATED:
        return SessionCreated(event_type, event)
    if event_type == SESSION_UPDATED:
        return SessionUpdated(event_type, event)
    if event_type == TRANSCRIPTION_COMPLETED:
        return TranscriptionCompleted(event_type, event, transcript=str(event.get("transcript") or ""))
    if event_type == RESPONSE_CREATED:
        response = event.get("response") or {}
        return ResponseCreated(event_type, event, response_id=response.get("id") if isinstance(response, dict) else None)
    if event_type == RESPONSE_DONE:
        response = event.get("response") or {}
        return ResponseDone(
            event_type,
            event,
            response_id=response.get("id") if isinstance(response, dict) else None,
            text=agent_text_from_response(response),
        )
    if event_type == AUDIO_DELTA:
        return AudioDelta(event_type, event, delta=str(event.get("delta") or ""), response_id=event.get("response_id"))
    if event_type == SPEECH_STARTED:
        return SpeechStarted(event_type, event)
    if event_type == ERROR:
        error = event.get("error") or {}
        if not isinstance(error, dict):
            error = {"message": str(error)}
        return RealtimeError(event_type, event, message=str(error.get("message") or ""), code=error.get("code"))
    return UnknownEvent(event_type, event)
