"""
KairOS -- Common Primitives

Shared base model, ID generation, clocks, and byte coercion helpers used by
every system.
"""

from __future__ import annotations

import time
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, PlainSerializer
from ulid import ULID


def new_id() -> str:
    """Generate a new ULID string. Time-sortable, globally unique."""
    return str(ULID())


def now_ms() -> int:
    """Milliseconds since the epoch. All wire timestamps use this unit."""
    return int(time.time() * 1000)


def _coerce_bytes(value: Any) -> Any:
    """
    Accept the three encodings a key travels in: raw bytes, a JSON array of
    ints (the registry wire form), or a hex string (the tag form).
    """
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value)
    if isinstance(value, list):
        if not all(isinstance(b, int) and 0 <= b <= 255 for b in value):
            raise ValueError("byte array must contain integers in 0..255")
        return bytes(value)
    if isinstance(value, str):
        try:
            return bytes.fromhex(value)
        except ValueError as exc:
            raise ValueError(f"invalid hex string: {exc}") from exc
    return value


# bytes in Python, list[int] on the JSON wire
WireBytes = Annotated[
    bytes,
    BeforeValidator(_coerce_bytes),
    PlainSerializer(lambda b: list(b), return_type=list[int], when_used="json"),
]


# ─── Base Models ──────────────────────────────────────────────────


class KairosBaseModel(BaseModel):
    """Base model for all KairOS primitives."""

    model_config = {"populate_by_name": True, "from_attributes": True}
