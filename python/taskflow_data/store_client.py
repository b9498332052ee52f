"""taskflow_data.store_client — Thin DynamoDB wrapper shared by every store.

``StoreClient`` owns one low-level boto3 DynamoDB client. It speaks plain
Python dicts to the stores and DynamoDB attribute-value maps to boto3,
follows ``LastEvaluatedKey`` for queries and scans, enforces the batch and
transaction bounds before any network call, and translates botocore
failures into the ``taskflow_data.errors`` taxonomy.

It performs no retries. A handle is safe to share between threads: it
keeps no per-request state.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from botocore.exceptions import BotoCoreError, ClientError

from taskflow_data.aws_clients import _make_ddb
from taskflow_data.config import BATCH_GET_LIMIT, TRANSACTION_ITEM_LIMIT
from taskflow_data.errors import (
    ConditionFailed,
    StoreError,
    TransactionCancelled,
    TransactionTooLarge,
    TransientStoreError,
    TransientTransactionCancelled,
    ValidationError,
)
from taskflow_data.field_mask import UpdatePlan
from taskflow_data.serialization import _deserialize, _serialize, _serialize_item

logger = logging.getLogger(__name__)

__all__ = [
    "StoreClient",
    "TransactDelete",
    "TransactPut",
]

_TRANSIENT_CODES = {
    "InternalServerError",
    "LimitExceededException",
    "ProvisionedThroughputExceededException",
    "RequestLimitExceeded",
    "ServiceUnavailable",
    "ThrottlingException",
    "TransactionConflictException",
    "TransactionInProgressException",
}

# Per-item CancellationReasons codes that a retry of the whole transaction can clear.
_TRANSIENT_CANCELLATION_REASONS = {
    "ProvisionedThroughputExceeded",
    "ThrottlingError",
    "TransactionConflict",
}


# ---------------------------------------------------------------------------
# Transaction operations
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TransactPut:
    table: str
    item: Dict[str, Any]
    condition: Optional[str] = None
    names: Optional[Dict[str, str]] = None


@dataclass(frozen=True)
class TransactDelete:
    table: str
    key: Dict[str, Any]
    condition: Optional[str] = None
    names: Optional[Dict[str, str]] = None


TransactOp = Union[TransactPut, TransactDelete]


# ---------------------------------------------------------------------------
# Error translation
# ---------------------------------------------------------------------------


def _map_client_error(exc: Exception, operation: str) -> StoreError:
    if isinstance(exc, BotoCoreError):
        return TransientStoreError(f"{operation} failed: {exc}", code=type(exc).__name__)

    response = getattr(exc, "response", None) or {}
    error = response.get("Error", {})
    code = error.get("Code", "Unknown")
    message = error.get("Message", str(exc))
    status = int(response.get("ResponseMetadata", {}).get("HTTPStatusCode") or 0)

    if code == "ConditionalCheckFailedException":
        return ConditionFailed(f"{operation}: condition not met", code=code)
    if code == "TransactionCanceledException":
        reasons = [str(r.get("Code") or "None") for r in response.get("CancellationReasons") or []]
        failed = {r for r in reasons if r != "None"}
        if failed and failed <= _TRANSIENT_CANCELLATION_REASONS:
            return TransientTransactionCancelled(f"{operation} cancelled: {message}", reasons=reasons, code=code)
        return TransactionCancelled(f"{operation} cancelled: {message}", reasons=reasons, code=code)
    if code in _TRANSIENT_CODES or status >= 500:
        return TransientStoreError(f"{operation} failed ({code}): {message}", code=code)
    return StoreError(f"{operation} failed ({code}): {message}", code=code)


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class StoreClient:
    def __init__(
        self,
        ddb: Any,
        *,
        transaction_limit: int = TRANSACTION_ITEM_LIMIT,
        batch_get_limit: int = BATCH_GET_LIMIT,
    ) -> None:
        self._ddb = ddb
        self.transaction_limit = transaction_limit
        self.batch_get_limit = batch_get_limit
        self._closed = False

    @classmethod
    def open(
        cls,
        *,
        region: Optional[str] = None,
        endpoint_url: Optional[str] = None,
        max_attempts: Optional[int] = None,
    ) -> "StoreClient":
        """Build a handle around a fresh boto3 DynamoDB client."""
        return cls(_make_ddb(region=region, endpoint_url=endpoint_url, max_attempts=max_attempts))

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        close = getattr(self._ddb, "close", None)
        if callable(close):
            close()

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def ddb(self) -> Any:
        """The underlying boto3 client, for administrative calls."""
        return self._ddb

    def __enter__(self) -> "StoreClient":
        return self

    def __exit__(self, *_exc: Any) -> None:
        self.close()

    def _call(self, operation: str, fn: Callable[..., Dict[str, Any]], **kwargs: Any) -> Dict[str, Any]:
        if self._closed:
            raise StoreError(f"{operation} on a closed store client")
        try:
            return fn(**kwargs)
        except (BotoCoreError, ClientError) as exc:
            mapped = _map_client_error(exc, operation)
            if isinstance(mapped, TransientStoreError):
                logger.warning("[WARNING] %s", mapped)
            raise mapped from exc

    # -- single item -------------------------------------------------------

    def get(self, table: str, key: Dict[str, Any], *, consistent: bool = True) -> Optional[Dict[str, Any]]:
        resp = self._call(
            "GetItem",
            self._ddb.get_item,
            TableName=table,
            Key=_serialize_item(key),
            ConsistentRead=consistent,
        )
        raw = resp.get("Item")
        if not raw:
            return None
        return _deserialize(raw)

    def put(
        self,
        table: str,
        item: Dict[str, Any],
        *,
        condition: Optional[str] = None,
        names: Optional[Dict[str, str]] = None,
    ) -> None:
        kwargs: Dict[str, Any] = {"TableName": table, "Item": _serialize_item(item)}
        if condition:
            kwargs["ConditionExpression"] = condition
        if names:
            kwargs["ExpressionAttributeNames"] = dict(names)
        self._call("PutItem", self._ddb.put_item, **kwargs)

    def delete(self, table: str, key: Dict[str, Any], *, return_old: bool = False) -> Optional[Dict[str, Any]]:
        kwargs: Dict[str, Any] = {"TableName": table, "Key": _serialize_item(key)}
        if return_old:
            kwargs["ReturnValues"] = "ALL_OLD"
        resp = self._call("DeleteItem", self._ddb.delete_item, **kwargs)
        raw = resp.get("Attributes") if return_old else None
        return _deserialize(raw) if raw else None

    def update(
        self,
        table: str,
        key: Dict[str, Any],
        plan: UpdatePlan,
        *,
        condition: Optional[str] = None,
        condition_names: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """Apply ``plan`` and return the full item as stored afterwards."""
        names = dict(plan.names)
        if condition_names:
            names.update(condition_names)
        kwargs: Dict[str, Any] = {
            "TableName": table,
            "Key": _serialize_item(key),
            "UpdateExpression": plan.expression,
            "ExpressionAttributeNames": names,
            "ExpressionAttributeValues": {k: _serialize(v) for k, v in plan.values.items()},
            "ReturnValues": "ALL_NEW",
        }
        if condition:
            kwargs["ConditionExpression"] = condition
        resp = self._call("UpdateItem", self._ddb.update_item, **kwargs)
        return _deserialize(resp.get("Attributes") or {})

    # -- multi item reads --------------------------------------------------

    def _paginate(self, operation: str, fn: Callable[..., Dict[str, Any]], kwargs: Dict[str, Any],
                  first_only: bool = False) -> List[Dict[str, Any]]:
        items: List[Dict[str, Any]] = []
        while True:
            resp = self._call(operation, fn, **kwargs)
            items.extend(_deserialize(raw) for raw in resp.get("Items", []))
            if first_only and items:
                break
            last_key = resp.get("LastEvaluatedKey")
            if not last_key:
                break
            kwargs["ExclusiveStartKey"] = last_key
        return items

    def query_partition(
        self,
        table: str,
        pk_attr: str,
        pk_value: Any,
        *,
        sk_attr: Optional[str] = None,
        sk_prefix: Optional[str] = None,
        newest_first: bool = False,
        consistent: bool = True,
    ) -> List[Dict[str, Any]]:
        """All items of one partition, optionally restricted to a sort-key prefix."""
        kwargs = self._key_condition(pk_attr, pk_value, sk_attr, sk_prefix)
        kwargs.update(TableName=table, ConsistentRead=consistent, ScanIndexForward=not newest_first)
        return self._paginate("Query", self._ddb.query, kwargs)

    def query_index(
        self,
        table: str,
        index: str,
        attr: str,
        value: Any,
        *,
        sk_attr: Optional[str] = None,
        sk_prefix: Optional[str] = None,
        first_only: bool = False,
    ) -> List[Dict[str, Any]]:
        """Query a global secondary index (eventually consistent by nature)."""
        kwargs = self._key_condition(attr, value, sk_attr, sk_prefix)
        kwargs.update(TableName=table, IndexName=index)
        return self._paginate("Query", self._ddb.query, kwargs, first_only=first_only)

    @staticmethod
    def _key_condition(
        pk_attr: str, pk_value: Any, sk_attr: Optional[str], sk_prefix: Optional[str]
    ) -> Dict[str, Any]:
        expression = "#pk = :pk"
        names = {"#pk": pk_attr}
        values = {":pk": _serialize(pk_value)}
        if sk_prefix is not None:
            if not sk_attr:
                raise ValidationError("sk_prefix requires sk_attr")
            expression += " AND begins_with(#sk, :sk)"
            names["#sk"] = sk_attr
            values[":sk"] = _serialize(sk_prefix)
        return {
            "KeyConditionExpression": expression,
            "ExpressionAttributeNames": names,
            "ExpressionAttributeValues": values,
        }

    def scan(
        self,
        table: str,
        *,
        filter_attr: Optional[str] = None,
        filter_value: Any = None,
        first_only: bool = False,
    ) -> List[Dict[str, Any]]:
        """Full-table scan. Cost grows with the table, not with the result."""
        kwargs: Dict[str, Any] = {"TableName": table}
        if filter_attr:
            kwargs.update(
                FilterExpression="#f = :f",
                ExpressionAttributeNames={"#f": filter_attr},
                ExpressionAttributeValues={":f": _serialize(filter_value)},
            )
        return self._paginate("Scan", self._ddb.scan, kwargs, first_only=first_only)

    def batch_get(self, table: str, keys: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
        if not keys:
            return []
        if len(keys) > self.batch_get_limit:
            raise ValidationError(f"batch_get accepts at most {self.batch_get_limit} keys, got {len(keys)}")
        resp = self._call(
            "BatchGetItem",
            self._ddb.batch_get_item,
            RequestItems={table: {"Keys": [_serialize_item(k) for k in keys]}},
        )
        unprocessed = (resp.get("UnprocessedKeys") or {}).get(table, {}).get("Keys") or []
        if unprocessed:
            raise TransientStoreError(
                f"BatchGetItem left {len(unprocessed)} of {len(keys)} keys unprocessed",
                code="UnprocessedKeys",
            )
        return [_deserialize(raw) for raw in (resp.get("Responses") or {}).get(table, [])]

    # -- transactions ------------------------------------------------------

    def transact_write(self, ops: Sequence[TransactOp]) -> None:
        """All-or-nothing write of at most ``transaction_limit`` operations."""
        if not ops:
            return
        if len(ops) > self.transaction_limit:
            raise TransactionTooLarge(len(ops), self.transaction_limit)

        transact_items: List[Dict[str, Any]] = []
        for op in ops:
            if isinstance(op, TransactPut):
                req: Dict[str, Any] = {"TableName": op.table, "Item": _serialize_item(op.item)}
                verb = "Put"
            elif isinstance(op, TransactDelete):
                req = {"TableName": op.table, "Key": _serialize_item(op.key)}
                verb = "Delete"
            else:
                raise ValidationError(f"Unsupported transaction operation: {type(op).__name__}")
            if op.condition:
                req["ConditionExpression"] = op.condition
            if op.names:
                req["ExpressionAttributeNames"] = dict(op.names)
            transact_items.append({verb: req})

        self._call("TransactWriteItems", self._ddb.transact_write_items, TransactItems=transact_items)
