"""Twilio Voice integration.

This module provides:
- Voice webhook (TwiML) that plays the recording disclaimer and connects the
  call to the media-stream WebSocket.
- The media-stream WebSocket itself, bridged to OpenAI Realtime per call.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from fastapi import APIRouter, Depends, Request, Response, WebSocket
from twilio.twiml.voice_response import Connect, Stream, VoiceResponse

from agents.extraction import CustomerDetailsExtractor
from api.dependencies import get_extractor, get_session_store, get_voice_link_factory
from config.settings import get_settings
from integrations.twilio_streaming import TwilioMediaLink
from relay.bridge import CallBridge, VoiceLink
from relay.sessions import CallSessionStore, new_call_id

LOGGER = logging.getLogger(__name__)

router = APIRouter(tags=["twilio"])

MEDIA_STREAM_PATH = "/media-stream"


def _to_ws_url(http_url: str) -> str:
    if http_url.startswith("https://"):
        return "wss://" + http_url.removeprefix("https://")
    if http_url.startswith("http://"):
        return "ws://" + http_url.removeprefix("http://")
    return http_url


def _stream_url(request: Request) -> str:
    settings = get_settings()
    if settings.public_base_url:
        return _to_ws_url(settings.public_base_url.rstrip("/") + MEDIA_STREAM_PATH)
    # Fallback to request host. This may not work behind proxies; prefer PUBLIC_BASE_URL.
    host = request.headers.get("host") or request.url.netloc
    return f"wss://{host}{MEDIA_STREAM_PATH}"


def _twiml_response(xml: str) -> Response:
    # Twilio expects application/xml
    return Response(content=xml, media_type="application/xml")


def _twiml_connect_stream(
    *,
    stream_url: str,
    disclaimer: str,
    call_sid: str | None,
    caller_number: str | None,
) -> str:
    response = VoiceResponse()
    response.say(disclaimer)

    # Twilio drops query strings on stream URLs; call metadata travels as
    # custom parameters and comes back in the "start" frame.
    stream = Stream(url=stream_url)
    if call_sid:
        stream.parameter(name="callSid", value=call_sid)
    if caller_number:
        stream.parameter(name="callerNumber", value=caller_number)

    connect = Connect()
    connect.append(stream)
    response.append(connect)
    return str(response)


@router.api_route("/incoming-call", methods=["GET", "POST"])
async def incoming_call(request: Request) -> Response:
    params: dict[str, str] = dict(request.query_params)
    if request.method == "POST":
        form = await request.form()
        params.update({key: str(value) for key, value in form.items()})

    caller_number = params.get("From", "").strip() or None
    call_sid = params.get("CallSid", "").strip() or None
    LOGGER.info("Incoming call %s from %s", call_sid, caller_number)

    return _twiml_response(
        _twiml_connect_stream(
            stream_url=_stream_url(request),
            disclaimer=get_settings().call_disclaimer,
            call_sid=call_sid,
            caller_number=caller_number,
        )
    )


@router.websocket(MEDIA_STREAM_PATH)
async def media_stream(
    websocket: WebSocket,
    store: CallSessionStore = Depends(get_session_store),
    extractor: CustomerDetailsExtractor | None = Depends(get_extractor),
    voice_link_factory: Callable[[str], VoiceLink] = Depends(get_voice_link_factory),
) -> None:
    await websocket.accept()
    call_id = (
        websocket.headers.get("x-twilio-call-sid")
        or websocket.query_params.get("callSid")
        or new_call_id()
    )
    session = store.get_or_create(call_id)
    bridge = CallBridge(
        session,
        TwilioMediaLink(websocket),
        voice_link_factory(call_id),
        store=store,
        extractor=extractor,
    )
    await bridge.run()
