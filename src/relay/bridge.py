"""Call bridge: wires one Twilio media stream to one OpenAI Realtime session."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Iterable
from typing import Protocol

from agents.errors import ExtractionFailedError, RelayError
from agents.extraction import CustomerDetailsExtractor
from agents.schemas import CustomerDetails
from config.settings import get_settings
from integrations.realtime_events import (
    AudioDelta,
    RealtimeError,
    RealtimeEvent,
    ResponseCreated,
    ResponseDone,
    SessionUpdated,
    SpeechStarted,
    TranscriptionCompleted,
)
from integrations.twilio_streaming import CarrierEvent, MediaEvent, OtherEvent, StartEvent
from relay.sessions import CallSession, CallSessionStore

LOGGER = logging.getLogger(__name__)

# Extraction tasks are referenced here until they finish so they are not
# garbage collected while the call that spawned them is already gone.
_BACKGROUND_TASKS: set[asyncio.Task] = set()


class CarrierLink(Protocol):
    @property
    def stream_sid(self) -> str | None: ...

    def bind_stream(self, stream_sid: str) -> None: ...

    def frames(self) -> AsyncIterator[CarrierEvent]: ...

    async def send_media(self, payload: str) -> bool: ...

    async def send_clear(self) -> bool: ...


class VoiceLink(Protocol):
    @property
    def is_ready(self) -> bool: ...

    @property
    def is_open(self) -> bool: ...

    async def open(self) -> None: ...

    def events(self) -> AsyncIterator[RealtimeEvent]: ...

    async def send_audio(self, payload: str) -> bool: ...

    async def cancel_response(self) -> bool: ...

    async def close(self) -> None: ...


class CallBridge:
    """Owns one call from carrier connect to carrier disconnect.

    Carrier frames are handled on the calling task; realtime events on a
    second task. Both run on the same event loop, so the session needs no lock.

    Barge-in bumps a per-call response generation. Every response id is tagged
    with the generation current when it was first seen, and audio deltas from
    an older generation are dropped, so a cancelled response cannot leak audio
    after the ``clear``.
    """

    def __init__(
        self,
        session: CallSession,
        carrier: CarrierLink,
        voice_link: VoiceLink,
        *,
        store: CallSessionStore,
        extractor: CustomerDetailsExtractor | None = None,
        log_event_types: Iterable[str] | None = None,
    ) -> None:
        self._session = session
        self._carrier = carrier
        self._voice = voice_link
        self._store = store
        self._extractor = extractor
        if log_event_types is None:
            log_event_types = get_settings().realtime_log_event_types
        self._log_event_types = frozenset(log_event_types)

        self._generation = 0
        self._response_generations: dict[str, int] = {}
        self._retired_responses: set[str] = set()
        self._upstream_task: asyncio.Task | None = None
        self._disconnected = False

        self.dropped_media_frames = 0
        self.extraction_task: asyncio.Task | None = None

    @property
    def session(self) -> CallSession:
        return self._session

    @property
    def generation(self) -> int:
        return self._generation

    async def run(self) -> None:
        await self.on_carrier_connect()
        try:
            async for event in self._carrier.frames():
                await self.on_carrier_event(event)
        finally:
            await self.on_carrier_disconnect()

    async def on_carrier_connect(self) -> None:
        LOGGER.info("Client connected (call %s)", self._session.call_id)
        try:
            await self._voice.open()
        except RelayError as exc:
            LOGGER.error("Realtime link unavailable for call %s: %s", self._session.call_id, exc.detail)
            return
        self._upstream_task = asyncio.create_task(self._pump_upstream())

    async def on_carrier_event(self, event: CarrierEvent) -> None:
        if isinstance(event, StartEvent):
            session = self._session
            session.stream_sid = event.stream_sid
            session.call_sid = event.call_sid or session.call_sid
            session.caller_number = event.custom_parameters.get("callerNumber") or session.caller_number
            self._carrier.bind_stream(event.stream_sid)
            LOGGER.info("Incoming stream has started %s (call %s)", event.stream_sid, session.call_id)
        elif isinstance(event, MediaEvent):
            if not event.is_inbound:
                return
            if self._voice.is_ready:
                await self._voice.send_audio(event.payload)
            else:
                self.dropped_media_frames += 1
        elif isinstance(event, OtherEvent):
            LOGGER.info("Received non-media event: %s", event.event)

    async def on_upstream_event(self, event: RealtimeEvent) -> None:
        if event.type in self._log_event_types:
            LOGGER.info("Received event: %s %s", event.type, event.raw)

        if isinstance(event, AudioDelta):
            await self._forward_audio(event)
        elif isinstance(event, SpeechStarted):
            await self.barge_in()
        elif isinstance(event, TranscriptionCompleted):
            line = self._session.transcript.add_caller(event.transcript)
            LOGGER.info("%s (call %s)", line, self._session.call_id)
        elif isinstance(event, ResponseCreated):
            self._generation_of(event.response_id)
        elif isinstance(event, ResponseDone):
            line = self._session.transcript.add_agent(event.text)
            LOGGER.info("%s (call %s)", line, self._session.call_id)
            if event.response_id is not None:
                self._response_generations.pop(event.response_id, None)
                self._retired_responses.add(event.response_id)
        elif isinstance(event, SessionUpdated):
            LOGGER.info("Session updated successfully (call %s)", self._session.call_id)
        elif isinstance(event, RealtimeError):
            LOGGER.error("OpenAI Realtime error for call %s: %s (%s)", self._session.call_id, event.message, event.code)

    async def barge_in(self) -> None:
        """Caller started talking: flush carrier playback, then cancel the response."""

        LOGGER.info("Speech started on call %s; cancelling AI speech", self._session.call_id)
        self._generation += 1
        await self._carrier.send_clear()
        await self._voice.cancel_response()

    async def on_carrier_disconnect(self) -> None:
        if self._disconnected:
            return
        self._disconnected = True

        LOGGER.info("Client disconnected (%s).", self._session.call_id)
        try:
            if self._voice.is_open:
                await self._voice.close()
        finally:
            if self._upstream_task is not None and not self._upstream_task.done():
                self._upstream_task.cancel()

            transcript = self._session.transcript.cleaned()
            LOGGER.info("Full Transcript (%s):\n%s", self._session.call_id, transcript)

            self.extraction_task = self._dispatch_extraction(transcript)
            self._store.discard(self._session.call_id)

    async def _pump_upstream(self) -> None:
        async for event in self._voice.events():
            try:
                await self.on_upstream_event(event)
            except Exception:
                LOGGER.exception("Error processing OpenAI event %s (call %s)", event.type, self._session.call_id)

    async def _forward_audio(self, event: AudioDelta) -> None:
        if not event.delta:
            return
        retired = event.response_id in self._retired_responses
        if retired or self._generation_of(event.response_id) != self._generation:
            LOGGER.debug("Dropping stale audio delta of response %s", event.response_id)
            return
        await self._carrier.send_media(event.delta)

    def _generation_of(self, response_id: str | None) -> int:
        # Ids are tagged when first seen. The API sends response.created before
        # any delta of that response, so first sight is the creation generation.
        if response_id is None:
            return self._generation
        return self._response_generations.setdefault(response_id, self._generation)

    def _dispatch_extraction(self, transcript: str) -> asyncio.Task | None:
        if self._extractor is None:
            LOGGER.info("No extractor configured; skipping extraction for call %s", self._session.call_id)
            return None

        task = asyncio.create_task(self._extract(self._extractor, transcript, self._session.correlation_id))
        _BACKGROUND_TASKS.add(task)
        task.add_done_callback(_BACKGROUND_TASKS.discard)
        return task

    @staticmethod
    async def _extract(
        extractor: CustomerDetailsExtractor,
        transcript: str,
        call_id: str,
    ) -> CustomerDetails | None:
        try:
            details = await extractor.extract(transcript, call_id)
        except ExtractionFailedError as exc:
            LOGGER.error("Extraction for call %s abandoned: %s", call_id, exc.detail)
            return None

        LOGGER.info("customerName (call %s): %s", call_id, details.customer_name)
        LOGGER.info("customerAddress (call %s): %s", call_id, details.customer_address)
        return details
