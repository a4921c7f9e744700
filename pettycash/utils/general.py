"""Small helpers shared by repositories and services: ids, clock, JSON payloads."""

from __future__ import annotations

import math
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Dict, List, Protocol, Union, runtime_checkable

__all__ = ["convert_to_json_safe", "new_id", "utc_now"]

# What ends up in a sync_queue payload or an audit detail.
JsonValue = Union[None, str, int, bool, float, Dict[str, "JsonValue"], List["JsonValue"]]


@runtime_checkable
class Dumpable(Protocol):
    def model_dump(self) -> Dict[str, object]: ...  # noqa: E704


def convert_to_json_safe(data: object) -> JsonValue:
    """Turn a model or row dict into something ``json.dumps`` accepts.

    Money stays exact: a ``Decimal`` becomes its string form, never a
    float.  Dates become ISO strings, non-finite floats become ``None``
    and pydantic models are dumped first.  Anything else unknown (a UUID,
    an enum member) is stringified.
    """
    if data is None or isinstance(data, (str, int, bool)):
        return data
    if isinstance(data, float):
        return data if math.isfinite(data) else None
    if isinstance(data, Decimal):
        return str(data)
    if isinstance(data, (datetime, date)):
        return data.isoformat()
    if isinstance(data, dict):
        return {k: convert_to_json_safe(v) for k, v in data.items()}
    if isinstance(data, (list, tuple, set, frozenset)):
        return [convert_to_json_safe(item) for item in data]
    if isinstance(data, Dumpable):
        return convert_to_json_safe(data.model_dump())
    return str(data)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    """UUID4 string used as the primary key of locally created rows."""
    return str(uuid.uuid4())
