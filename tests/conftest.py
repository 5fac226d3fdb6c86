from __future__ import annotations

import asyncio
import json
import os
import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = REPO_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

# Must be set before settings are first read.
os.environ["OPENAI_API_KEY"] = "test-key"
os.environ["LLM_PROVIDER"] = "openai"
os.environ.pop("PUBLIC_BASE_URL", None)


class FakeRealtimeSocket:
    """Stands in for the OpenAI Realtime websocket connection."""

    def __init__(self, journal: list | None = None) -> None:
        self.sent: list[dict] = []
        self.url: str | None = None
        self.headers: list[tuple[str, str]] = []
        self.closed = False
        self._journal = journal
        self._incoming: asyncio.Queue = asyncio.Queue()

    def push(self, event: dict | str) -> None:
        self._incoming.put_nowait(event if isinstance(event, str) else json.dumps(event))

    def sent_types(self) -> list[str]:
        return [message["type"] for message in self.sent]

    def appended_audio(self) -> list[str]:
        return [m["audio"] for m in self.sent if m["type"] == "input_audio_buffer.append"]

    async def send(self, text: str) -> None:
        message = json.loads(text)
        self.sent.append(message)
        if self._journal is not None:
            self._journal.append(("upstream", message["type"]))

    async def close(self) -> None:
        self.closed = True
        self._incoming.put_nowait(None)

    def __aiter__(self):
        return self

    async def __anext__(self) -> str:
        message = await self._incoming.get()
        if message is None:
            raise StopAsyncIteration
        return message


class FakeCarrierSocket:
    """Stands in for the Twilio side of the media-stream websocket."""

    def __init__(self, journal: list | None = None) -> None:
        self.sent: list[dict] = []
        self._journal = journal
        self._incoming: asyncio.Queue = asyncio.Queue()

    def push(self, frame: dict | str) -> None:
        self._incoming.put_nowait(frame if isinstance(frame, str) else json.dumps(frame))

    def push_bytes(self, data: bytes) -> None:
        self._incoming.put_nowait(data)

    def hang_up(self) -> None:
        self._incoming.put_nowait(None)

    async def receive(self) -> dict:
        message = await self._incoming.get()
        if message is None:
            return {"type": "websocket.disconnect", "code": 1000}
        if isinstance(message, bytes):
            return {"type": "websocket.receive", "bytes": message}
        return {"type": "websocket.receive", "text": message}

    async def send_text(self, data: str) -> None:
        frame = json.loads(data)
        self.sent.append(frame)
        if self._journal is not None:
            self._journal.append(("carrier", frame["event"]))


def make_voice_link(socket: FakeRealtimeSocket, call_id: str = "CA-test", **overrides):
    from config.settings import Settings
    from integrations.openai_realtime import RealtimeVoiceLink

    settings = Settings(**{"realtime_settle_timeout_seconds": 5.0, **overrides})

    async def connect(url, *, additional_headers):
        socket.url = url
        socket.headers = list(additional_headers)
        return socket

    return RealtimeVoiceLink(call_id, settings=settings, connect=connect)


class FakeLLM:
    def __init__(self, response: str = '{"customerName": "NONE", "customerAddress": "NONE"}') -> None:
        self.response = response
        self.calls: list[dict] = []

    async def chat(self, messages, *, temperature: float = 0.1, response_format=None) -> str:
        self.calls.append(
            {"messages": list(messages), "temperature": temperature, "response_format": response_format}
        )
        return self.response


async def wait_for(predicate, timeout: float = 1.0) -> None:
    async def _poll() -> None:
        while not predicate():
            await asyncio.sleep(0.005)

    await asyncio.wait_for(_poll(), timeout)


@pytest.fixture(scope="session")
def app():
    import importlib

    from config.settings import get_settings

    get_settings.cache_clear()
    sys.modules.pop("main", None)
    main = importlib.import_module("main")
    return main.app


@pytest.fixture()
def client(app):
    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
