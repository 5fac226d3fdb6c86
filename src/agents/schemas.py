"""Pydantic schemas for post-call extraction."""

from __future__ import annotations

from typing import Any, Final

from pydantic import BaseModel, ConfigDict, Field, field_validator

NOT_FOUND: Final[str] = "NONE"


class CustomerDetails(BaseModel):
    """Customer data extracted from a finished call."""

    model_config = ConfigDict(populate_by_name=True)

    customer_name: str = Field(default=NOT_FOUND, alias="customerName")
    customer_address: str = Field(default=NOT_FOUND, alias="customerAddress")

    @field_validator("customer_name", "customer_address", mode="before")
    @classmethod
    def missing_is_none_sentinel(cls, value: Any) -> str:
        if value is None:
            return NOT_FOUND
        text = str(value).strip()
        return text or NOT_FOUND

    @property
    def has_name(self) -> bool:
        return self.customer_name != NOT_FOUND

    @property
    def has_address(self) -> bool:
        return self.customer_address != NOT_FOUND


CUSTOMER_DETAILS_RESPONSE_FORMAT: Final[dict[str, Any]] = {
    "type": "json_schema",
    "json_schema": {
        "name": "customer_details_extraction",
        "schema": {
            "type": "object",
            "properties": {
                "customerName": {"type": "string", "default": NOT_FOUND},
                "customerAddress": {"type": "string", "default": NOT_FOUND},
            },
            "required": ["customerName", "customerAddress"],
        },
    },
}
