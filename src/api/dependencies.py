"""Shared FastAPI dependencies.

Separated to avoid circular imports between route modules, and so tests can
swap the realtime link and the extractor through ``app.dependency_overrides``.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from functools import lru_cache

from agents.extraction import CustomerDetailsExtractor
from integrations.openai_realtime import RealtimeVoiceLink
from llm.factory import build_llm_client
from relay.bridge import VoiceLink
from relay.sessions import GLOBAL_CALL_SESSION_STORE, CallSessionStore

LOGGER = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def _extractor_factory() -> CustomerDetailsExtractor:
    return CustomerDetailsExtractor(build_llm_client())


def get_extractor() -> CustomerDetailsExtractor | None:
    # A broken extractor must not reject the media stream.
    try:
        return _extractor_factory()
    except ValueError as exc:
        LOGGER.error("Extractor unavailable, calls will not be summarised: %s", exc)
        return None


def get_session_store() -> CallSessionStore:
    return GLOBAL_CALL_SESSION_STORE


def get_voice_link_factory() -> Callable[[str], VoiceLink]:
    return RealtimeVoiceLink
