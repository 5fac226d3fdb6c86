from __future__ import annotations

import logging
import secrets
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone

from relay.transcript import Transcript

LOGGER = logging.getLogger(__name__)


def new_call_id() -> str:
    """Time-based identifier for streams that arrive without a call id."""

    return f"session_{int(time.time() * 1000)}_{secrets.token_hex(3)}"


@dataclass
class CallSession:
    call_id: str
    stream_sid: str | None = None
    call_sid: str | None = None
    caller_number: str | None = None
    transcript: Transcript = field(default_factory=Transcript)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def correlation_id(self) -> str:
        return self.call_sid or self.call_id


class CallSessionStore:
    """In-memory map of live calls.

    Note: This is a single-process store, mutated only from the event loop that
    runs the call bridges. For multi-worker deployments, replace with a shared store.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, CallSession] = {}

    def get_or_create(self, call_id: str) -> CallSession:
        session = self._sessions.get(call_id)
        if session is None:
            session = CallSession(call_id=call_id)
            self._sessions[call_id] = session
            LOGGER.debug("Created session %s (%d live)", call_id, len(self._sessions))
        return session

    def get(self, call_id: str) -> CallSession | None:
        return self._sessions.get(call_id)

    def discard(self, call_id: str) -> CallSession | None:
        session = self._sessions.pop(call_id, None)
        if session is not None:
            LOGGER.debug("Removed session %s (%d live)", call_id, len(self._sessions))
        return session

    def __contains__(self, call_id: object) -> bool:
        return call_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)


GLOBAL_CALL_SESSION_STORE = CallSessionStore()
