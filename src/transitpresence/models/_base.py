"""Base model for store documents and device payloads.

Every document model inherits from :class:`TransitBaseModel` which
provides:

* ``alias_generator=to_camel`` so camelCase document keys map
  automatically to snake_case fields, and ``model_dump(by_alias=True)``
  produces store documents.
* A ``model_validator(mode="before")`` that strips placeholder values
  (``""``, ``"--"``, NaN) so the field default is used.
* A ``raw`` dict that captures the original document (never dumped).
"""

from __future__ import annotations

import math
from datetime import UTC, datetime
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from transitpresence.normalize import parse_timestamp

_SENTINELS = frozenset({"", "--", "NaN", "nan"})


def utcnow() -> datetime:
    return datetime.now(UTC)


StoreTimestamp = Annotated[datetime | None, BeforeValidator(parse_timestamp)]
"""Annotated type that coerces store timestamps (datetime, epoch, ISO) to UTC datetimes."""


class TransitBaseModel(BaseModel):
    """Base for document models."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
        alias_generator=to_camel,
    )

    raw: dict[str, Any] = Field(default_factory=dict, exclude=True)
    """Original document dict."""

    @model_validator(mode="before")
    @classmethod
    def _clean_values(cls, values: Any) -> Any:
        """Strip placeholder values and stash the raw document."""
        if not isinstance(values, dict):
            return values
        cleaned: dict[str, Any] = {}
        for key, value in values.items():
            if value is None:
                continue
            if isinstance(value, str) and value.strip() in _SENTINELS:
                continue
            if isinstance(value, float) and math.isnan(value):
                continue
            cleaned[key] = value
        if "raw" not in values:
            cleaned["raw"] = dict(values)
        return cleaned

    def to_document(self) -> dict[str, Any]:
        """Dump as a camelCase store document without ``None`` values."""
        return self.model_dump(by_alias=True, exclude_none=True)
