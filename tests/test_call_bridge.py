from __future__ import annotations

import asyncio

from conftest import FakeCarrierSocket, FakeLLM, FakeRealtimeSocket, make_voice_link, wait_for

from agents.extraction import CustomerDetailsExtractor
from config.settings import Settings
from integrations.openai_realtime import RealtimeVoiceLink
from integrations.twilio_streaming import TwilioMediaLink
from relay.bridge import CallBridge
from relay.sessions import CallSessionStore

CALL_ID = "CA-test"


def _run(coro):
    return asyncio.run(coro)


def _start(stream_sid: str = "S1") -> dict:
    return {
        "event": "start",
        "start": {"streamSid": stream_sid, "callSid": CALL_ID, "customParameters": {"callerNumber": "+15550001"}},
    }


def _media(payload: str) -> dict:
    return {"event": "media", "media": {"payload": payload, "track": "inbound"}}


def _delta(response_id: str, payload: str) -> dict:
    return {"type": "response.audio.delta", "response_id": response_id, "delta": payload}


class Harness:
    def __init__(self, *, llm: FakeLLM | None = None, voice_link=None, journal: list | None = None) -> None:
        self.store = CallSessionStore()
        self.session = self.store.get_or_create(CALL_ID)
        self.carrier = FakeCarrierSocket(journal)
        self.upstream = FakeRealtimeSocket(journal)
        self.link = voice_link or make_voice_link(self.upstream, CALL_ID)
        self.llm = llm or FakeLLM()
        self.bridge = CallBridge(
            self.session,
            TwilioMediaLink(self.carrier),
            self.link,
            store=self.store,
            extractor=CustomerDetailsExtractor(self.llm),
            log_event_types=[],
        )

    async def connect_and_activate(self, stream_sid: str = "S1") -> asyncio.Task:
        task = asyncio.create_task(self.bridge.run())
        self.carrier.push(_start(stream_sid))
        self.upstream.push({"type": "session.created", "session": {}})
        await wait_for(lambda: self.link.is_ready and self.session.stream_sid == stream_sid)
        return task


def test_end_to_end_call_relays_audio_and_extracts_once():
    async def scenario():
        h = Harness(llm=FakeLLM('{"customerName": "Ada Lovelace", "customerAddress": ""}'))
        run_task = await h.connect_and_activate("S1")

        for payload in ("IN1", "IN2", "IN3"):
            h.carrier.push(_media(payload))
        await wait_for(lambda: len(h.upstream.appended_audio()) == 3)

        h.upstream.push({"type": "conversation.item.input_audio_transcription.completed", "transcript": " My name is Ada "})
        h.upstream.push({"type": "response.created", "response": {"id": "r1"}})
        h.upstream.push(_delta("r1", "OUT1"))
        h.upstream.push(_delta("r1", "OUT2"))
        h.upstream.push(
            {
                "type": "response.done",
                "response": {"id": "r1", "output": [{"content": [{"transcript": "Nice to meet you, Ada."}]}]},
            }
        )
        h.upstream.push({"type": "response.done", "response": {"id": "r2", "output": []}})
        await wait_for(lambda: len(h.carrier.sent) == 2 and h.session.transcript.text.count("\n") == 3)

        h.carrier.hang_up()
        await asyncio.wait_for(run_task, 1.0)
        session_gone = CALL_ID not in h.store
        details = await h.bridge.extraction_task
        return h, session_gone, details

    h, session_gone, details = _run(scenario())

    assert h.upstream.appended_audio() == ["IN1", "IN2", "IN3"]
    assert h.carrier.sent == [
        {"event": "media", "streamSid": "S1", "media": {"payload": "OUT1"}},
        {"event": "media", "streamSid": "S1", "media": {"payload": "OUT2"}},
    ]
    assert session_gone
    assert h.upstream.closed

    assert len(h.llm.calls) == 1
    assert h.llm.calls[0]["messages"][1]["content"] == "Caller: My name is Ada\n\nAgent: Nice to meet you, Ada."
    assert details.customer_name == "Ada Lovelace"
    assert details.customer_address == "NONE"

    assert h.session.caller_number == "+15550001"
    assert h.session.call_sid == CALL_ID


def test_speech_started_clears_carrier_before_cancelling_upstream():
    async def scenario():
        journal: list = []
        h = Harness(journal=journal)
        run_task = await h.connect_and_activate("MZXXXX")
        journal.clear()

        h.upstream.push({"type": "input_audio_buffer.speech_started"})
        await wait_for(lambda: ("upstream", "response.cancel") in journal)

        h.carrier.hang_up()
        await asyncio.wait_for(run_task, 1.0)
        return h, journal

    h, journal = _run(scenario())

    assert journal == [("carrier", "clear"), ("upstream", "response.cancel")]
    assert h.carrier.sent == [{"event": "clear", "streamSid": "MZXXXX"}]
    assert h.bridge.generation == 1


def test_deltas_of_cancelled_response_are_dropped_after_barge_in():
    async def scenario():
        h = Harness()
        run_task = await h.connect_and_activate("S1")

        h.upstream.push({"type": "response.created", "response": {"id": "r1"}})
        h.upstream.push(_delta("r1", "OLD1"))
        h.upstream.push({"type": "input_audio_buffer.speech_started"})
        h.upstream.push(_delta("r1", "OLD2"))
        h.upstream.push({"type": "response.created", "response": {"id": "r2"}})
        h.upstream.push(_delta("r2", "NEW1"))
        await wait_for(lambda: len(h.carrier.sent) == 3)

        h.carrier.hang_up()
        await asyncio.wait_for(run_task, 1.0)
        return h

    h = _run(scenario())

    assert [frame["event"] for frame in h.carrier.sent] == ["media", "clear", "media"]
    assert [frame["media"]["payload"] for frame in h.carrier.sent if frame["event"] == "media"] == ["OLD1", "NEW1"]


def test_media_before_link_is_active_is_dropped_without_error():
    async def scenario():
        h = Harness()
        run_task = asyncio.create_task(h.bridge.run())
        h.carrier.push(_start("S1"))
        h.carrier.push(_media("EARLY1"))
        h.carrier.push("{broken frame")
        h.carrier.push({"event": "mark", "mark": {"name": "x"}})
        h.carrier.push(_media("EARLY2"))
        await wait_for(lambda: h.bridge.dropped_media_frames == 2)

        h.carrier.hang_up()
        await asyncio.wait_for(run_task, 1.0)
        await h.bridge.extraction_task
        return h

    h = _run(scenario())

    assert h.upstream.appended_audio() == []
    assert CALL_ID not in h.store
    assert len(h.llm.calls) == 1


def test_failed_extraction_still_removes_session():
    async def scenario():
        h = Harness(llm=FakeLLM("definitely not json"))
        run_task = await h.connect_and_activate("S1")
        h.carrier.hang_up()
        await asyncio.wait_for(run_task, 1.0)
        session_gone = CALL_ID not in h.store
        result = await h.bridge.extraction_task
        return session_gone, result

    session_gone, result = _run(scenario())

    assert session_gone
    assert result is None


def test_call_without_upstream_link_degrades_to_silence():
    async def failing_connect(url, *, additional_headers):
        raise OSError("network unreachable")

    async def scenario():
        link = RealtimeVoiceLink(CALL_ID, settings=Settings(), connect=failing_connect)
        h = Harness(voice_link=link)
        run_task = asyncio.create_task(h.bridge.run())
        h.carrier.push(_start("S1"))
        h.carrier.push(_media("IN1"))
        await wait_for(lambda: h.bridge.dropped_media_frames == 1)
        h.carrier.hang_up()
        await asyncio.wait_for(run_task, 1.0)
        await h.bridge.extraction_task
        return h

    h = _run(scenario())

    assert h.carrier.sent == []
    assert CALL_ID not in h.store
    assert len(h.llm.calls) == 1


def test_deltas_after_response_done_are_dropped():
    async def scenario():
        h = Harness()
        run_task = await h.connect_and_activate("S1")

        h.upstream.push({"type": "response.created", "response": {"id": "r1"}})
        h.upstream.push(_delta("r1", "LIVE"))
        h.upstream.push({"type": "response.done", "response": {"id": "r1", "output": []}})
        h.upstream.push(_delta("r1", "LATE"))
        h.upstream.push({"type": "response.created", "response": {"id": "r2"}})
        h.upstream.push(_delta("r2", "NEXT"))
        await wait_for(lambda: len(h.carrier.sent) == 2)

        h.carrier.hang_up()
        await asyncio.wait_for(run_task, 1.0)
        return h

    h = _run(scenario())

    assert [frame["media"]["payload"] for frame in h.carrier.sent] == ["LIVE", "NEXT"]
