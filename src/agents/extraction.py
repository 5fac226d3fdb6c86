"""Post-call extraction of customer details from a finished transcript."""

from __future__ import annotations

import json
import logging

from pydantic import ValidationError

from agents.errors import ExtractionFailedError
from agents.schemas import CUSTOMER_DETAILS_RESPONSE_FORMAT, CustomerDetails
from llm.base import BaseLLMClient
from prompts.loader import load_prompt

LOGGER = logging.getLogger(__name__)

EXTRACTION_SYSTEM_PROMPT = load_prompt("extraction_system.txt")


class CustomerDetailsExtractor:
    """Extracts the caller's name and address with one structured-output request.

    Values the model cannot find in the transcript come back as the ``NONE``
    sentinel; the extractor never fills them in itself.
    """

    def __init__(self, llm_client: BaseLLMClient) -> None:
        self._llm = llm_client

    async def extract(self, transcript: str, call_id: str | None = None) -> CustomerDetails:
        LOGGER.info("Starting transcript processing for call %s", call_id)
        messages = [
            {"role": "system", "content": EXTRACTION_SYSTEM_PROMPT},
            {"role": "user", "content": transcript},
        ]

        try:
            raw_response = await self._llm.chat(
                messages,
                temperature=0.0,
                response_format=CUSTOMER_DETAILS_RESPONSE_FORMAT,
            )
        except Exception as exc:
            raise ExtractionFailedError(f"Extraction request failed: {exc}") from exc

        return self._parse(raw_response, call_id)

    @staticmethod
    def _parse(raw_response: str, call_id: str | None) -> CustomerDetails:
        try:
            payload = json.loads(raw_response)
        except (TypeError, json.JSONDecodeError) as exc:
            LOGGER.error("Extractor returned invalid JSON for call %s: %s", call_id, raw_response)
            raise ExtractionFailedError("Invalid extraction JSON") from exc

        if not isinstance(payload, dict):
            raise ExtractionFailedError("Unexpected JSON structure in extraction response")

        try:
            details = CustomerDetails.model_validate(payload)
        except ValidationError as exc:
            raise ExtractionFailedError(f"Extraction response does not match schema: {exc}") from exc

        LOGGER.debug("Parsed extraction content for call %s: %s", call_id, details.model_dump_json(by_alias=True))
        return details
