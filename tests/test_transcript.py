from __future__ import annotations

import pytest

from relay.transcript import AGENT_MESSAGE_NOT_FOUND, Transcript, clean_transcript


def test_clean_drops_sentinel_and_blank_lines_and_keeps_order():
    raw = (
        "Caller: Hello\n"
        "\n"
        f"Agent: {AGENT_MESSAGE_NOT_FOUND}\n"
        "   \n"
        "Agent: Hi, how can I help?\n"
        "Caller: My name is Ada\n"
    )

    assert clean_transcript(raw) == "Caller: Hello\n\nAgent: Hi, how can I help?\n\nCaller: My name is Ada"


@pytest.mark.parametrize(
    "raw",
    [
        "",
        "\n\n\n",
        "Caller: one\nAgent: two\n",
        f"Agent: {AGENT_MESSAGE_NOT_FOUND}\nCaller: still here\n\n\nAgent: ok",
    ],
)
def test_clean_is_idempotent(raw):
    once = clean_transcript(raw)
    assert clean_transcript(once) == once


def test_clean_of_only_sentinels_is_empty():
    raw = f"Agent: {AGENT_MESSAGE_NOT_FOUND}\nAgent: {AGENT_MESSAGE_NOT_FOUND}\n"
    assert clean_transcript(raw) == ""


def test_transcript_labels_lines_in_arrival_order():
    transcript = Transcript()

    transcript.add_caller("  Hi there ")
    transcript.add_agent("Hello!")
    transcript.add_agent(None)

    assert transcript.text == f"Caller: Hi there\nAgent: Hello!\nAgent: {AGENT_MESSAGE_NOT_FOUND}\n"
    assert transcript.cleaned() == "Caller: Hi there\n\nAgent: Hello!"


def test_blank_agent_text_becomes_sentinel():
    transcript = Transcript()
    line = transcript.add_agent("   ")
    assert line == f"Agent: {AGENT_MESSAGE_NOT_FOUND}"
