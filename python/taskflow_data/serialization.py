"""taskflow_data.serialization — DynamoDB serialization/deserialization.

Provides TypeSerializer/TypeDeserializer wrappers, timestamp helpers and
small sequence utilities shared by the stores.
"""

from __future__ import annotations

import datetime as dt
import uuid
from decimal import Decimal
from typing import Any, Dict, Iterable, Iterator, List, Sequence, TypeVar

from boto3.dynamodb.types import TypeDeserializer, TypeSerializer

_SER = TypeSerializer()
_DESER = TypeDeserializer()

T = TypeVar("T")

_ISO_FORMAT = "%Y-%m-%dT%H:%M:%S.%f"


def _serialize(value: Any) -> Any:
    """Serialize a Python value for DynamoDB."""
    if isinstance(value, float):
        value = Decimal(str(value))
    return _SER.serialize(value)


def _serialize_item(item: Dict[str, Any]) -> Dict[str, Any]:
    """Serialize a plain dict, dropping attributes whose value is None."""
    return {k: _serialize(v) for k, v in item.items() if v is not None}


def _deserialize(item: Dict[str, Any]) -> Dict[str, Any]:
    """Deserialize a DynamoDB item to a plain Python dict."""
    out: Dict[str, Any] = {}
    for k, v in item.items():
        out[k] = _plain(_DESER.deserialize(v))
    return out


def _plain(value: Any) -> Any:
    if isinstance(value, Decimal):
        return int(value) if value == int(value) else float(value)
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_plain(v) for v in value]
    if isinstance(value, set):
        return {_plain(v) for v in value}
    return value


def _now_iso() -> str:
    """Current UTC timestamp, ISO 8601 with milliseconds and Z suffix."""
    return _format_iso(dt.datetime.now(dt.timezone.utc))


def _format_iso(moment: dt.datetime) -> str:
    return moment.strftime(_ISO_FORMAT)[:-3] + "Z"


def _bump_iso(timestamp: str, milliseconds: int = 1) -> str:
    """Advance a ``_now_iso`` timestamp by the given number of milliseconds."""
    moment = dt.datetime.strptime(timestamp.rstrip("Z"), _ISO_FORMAT)
    return _format_iso(moment + dt.timedelta(milliseconds=milliseconds))


def _new_id() -> str:
    return str(uuid.uuid4())


def _dedupe(values: Iterable[T]) -> List[T]:
    """Drop repeats and falsy entries, keeping first-seen order."""
    seen = set()
    out: List[T] = []
    for value in values:
        if not value or value in seen:
            continue
        seen.add(value)
        out.append(value)
    return out


def _chunked(values: Sequence[T], size: int) -> Iterator[List[T]]:
    for start in range(0, len(values), size):
        yield list(values[start:start + size])
