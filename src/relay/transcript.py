from __future__ import annotations

from typing import Final

CALLER_LABEL: Final[str] = "Caller"
AGENT_LABEL: Final[str] = "Agent"
AGENT_MESSAGE_NOT_FOUND: Final[str] = "Agent message not found"


def clean_transcript(text: str) -> str:
    """Drop sentinel and blank lines, keep order, separate lines by a blank line."""

    lines = (line for line in text.split("\n") if AGENT_MESSAGE_NOT_FOUND not in line)
    return "\n\n".join(line for line in lines if line.strip())


class Transcript:
    """Append-only buffer of labeled utterance lines for one call."""

    def __init__(self) -> None:
        self._text = ""

    @property
    def text(self) -> str:
        return self._text

    def __len__(self) -> int:
        return len(self._text)

    def add_caller(self, text: str) -> str:
        return self._append(CALLER_LABEL, text.strip())

    def add_agent(self, text: str | None) -> str:
        message = (text or "").strip() or AGENT_MESSAGE_NOT_FOUND
        return self._append(AGENT_LABEL, message)

    def cleaned(self) -> str:
        return clean_transcript(self._text)

    def _append(self, label: str, message: str) -> str:
        line = f"{label}: {message}"
        self._text += line + "\n"
        return line
