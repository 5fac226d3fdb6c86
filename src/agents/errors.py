"""Domain-specific exceptions for relay operations.

These exceptions are safe to import from API and config layers without pulling in
network clients.
"""

from __future__ import annotations


class RelayError(Exception):
    default_detail: str = "Relay error"

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail or self.default_detail)
        self.detail = detail or self.default_detail


class MalformedFrameError(RelayError):
    default_detail = "Malformed frame."


class UpstreamLinkError(RelayError):
    default_detail = "Realtime voice link failed."


class ExtractionFailedError(RelayError):
    default_detail = "Customer detail extraction failed."


class MissingCredentialError(RelayError):
    default_detail = "Required credential is not configured."
