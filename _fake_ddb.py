"""_fake_ddb.py — In-memory stand-in for the low-level boto3 DynamoDB client.

Understands exactly the request shapes ``taskflow_data.store_client``
produces: ``#pk = :pk [AND begins_with(#sk, :sk)]`` key conditions,
``#f = :f`` scan filters, ``SET ... [REMOVE ...]`` updates and
``attribute_[not_]exists(#x)`` conditions. Items are kept in DynamoDB
attribute-value form, so everything crosses the real TypeSerializer and
TypeDeserializer.

Mirrors the service where it matters for the tests: key-schema checks on
index queries, no consistent reads on GSIs, sparse indexes, no empty-string
index keys, paging applied before scan filters, the 100-item transaction
bound, one operation per item per transaction, and all-or-nothing
cancellation.
"""

from __future__ import annotations

import copy
import json
import re
import threading
from typing import Any, Dict, List, Optional, Tuple

from botocore.exceptions import ClientError

from taskflow_data.config import StoreSettings
from taskflow_data.serialization import _deserialize

_KEY_CONDITION = re.compile(r"#pk = :pk(?: AND begins_with\(#sk, :sk\))?")
_FILTER = re.compile(r"#f = :f")
_CONDITION = re.compile(r"attribute_(not_)?exists\((#\w+)\)")
_UPDATE = re.compile(r"SET (.+?)(?: REMOVE (.+))?")

TASK_ID_INDEX = "TaskIdIndex"
NOTIFICATION_ID_INDEX = "NotificationIdIndex"


def _client_error(code: str, message: str, operation: str, **extra: Any) -> ClientError:
    response: Dict[str, Any] = {
        "Error": {"Code": code, "Message": message},
        "ResponseMetadata": {"HTTPStatusCode": 400},
    }
    response.update(extra)
    return ClientError(response, operation)


def _scalar(value: Dict[str, Any]) -> Any:
    if "S" in value:
        return value["S"]
    if "N" in value:
        return float(value["N"])
    return json.dumps(value, sort_keys=True)


class _FakeDdb:
    def __init__(self, settings: Optional[StoreSettings] = None, page_size: int = 1000):
        s = settings or StoreSettings()
        self.schemas: Dict[str, Dict[str, Any]] = {
            s.users_table: {
                "key": ("userId", None),
                "indexes": {s.email_index: ("email", None), s.username_index: ("username", None)},
            },
            s.projects_table: {
                "key": ("PK", "SK"),
                "indexes": {
                    s.user_projects_index: ("SK", "PK"),
                    s.assigned_tasks_index: ("assignedTo", None),
                    TASK_ID_INDEX: ("taskId", None),
                },
            },
            s.notifications_table: {
                "key": ("userId", "createdAt"),
                "indexes": {NOTIFICATION_ID_INDEX: ("notificationId", None)},
            },
        }
        self.tables: Dict[str, Dict[Tuple[str, ...], Dict[str, Any]]] = {name: {} for name in self.schemas}
        self.page_size = page_size
        self.calls: List[Tuple[str, Dict[str, Any]]] = []
        self.fail_next: Dict[str, str] = {}
        self.unprocessed_next = False
        self.closed = False
        self._lock = threading.RLock()

    # -- helpers -----------------------------------------------------------

    def _record(self, operation: str, kwargs: Dict[str, Any]) -> None:
        self.calls.append((operation, kwargs))
        code = self.fail_next.pop(operation, None)
        if code:
            raise _client_error(code, f"injected {code}", operation)

    def _schema(self, table: str, operation: str) -> Dict[str, Any]:
        if table not in self.schemas:
            raise _client_error("ResourceNotFoundException", f"Table {table} not found", operation)
        return self.schemas[table]

    def _key(self, table: str, item: Dict[str, Any], operation: str) -> Tuple[str, ...]:
        hash_attr, range_attr = self._schema(table, operation)["key"]
        attrs = [hash_attr] + ([range_attr] if range_attr else [])
        missing = [a for a in attrs if a not in item]
        if missing:
            raise _client_error("ValidationException", f"Missing key attributes {missing}", operation)
        return tuple(json.dumps(item[a], sort_keys=True) for a in attrs)

    @staticmethod
    def _condition_holds(condition: Optional[str], names: Optional[Dict[str, str]], existing: Optional[Dict]) -> bool:
        if not condition:
            return True
        m = _CONDITION.fullmatch(condition.strip())
        if not m:
            raise ValueError(f"fake cannot evaluate condition {condition!r}")
        attr = (names or {})[m.group(2)]
        exists = existing is not None and attr in existing
        return not exists if m.group(1) else exists

    def _check_index_keys(self, table: str, item: Dict[str, Any], operation: str) -> None:
        for index, attrs in self._schema(table, operation)["indexes"].items():
            for attr in attrs:
                if attr and item.get(attr) == {"S": ""}:
                    raise _client_error(
                        "ValidationException",
                        f"One or more parameter values are not valid. A value specified for a secondary "
                        f"index key is not supported. The AttributeValue for a key attribute cannot contain "
                        f"an empty string value. IndexName: {index}, IndexKey: {attr}",
                        operation,
                    )

    def _check(self, condition, names, existing, operation: str) -> None:
        if not self._condition_holds(condition, names, existing):
            raise _client_error("ConditionalCheckFailedException", "The conditional request failed", operation)

    def calls_of(self, operation: str) -> List[Dict[str, Any]]:
        return [kwargs for op, kwargs in self.calls if op == operation]

    def items(self, table: str) -> List[Dict[str, Any]]:
        return [_deserialize(raw) for raw in self.tables[table].values()]

    # -- single item -------------------------------------------------------

    def get_item(self, TableName, Key, ConsistentRead=False):  # noqa: N803
        self._record("GetItem", {"TableName": TableName, "Key": Key, "ConsistentRead": ConsistentRead})
        with self._lock:
            item = self.tables[TableName].get(self._key(TableName, Key, "GetItem"))
            return {"Item": copy.deepcopy(item)} if item else {}

    def put_item(self, TableName, Item, ConditionExpression=None, ExpressionAttributeNames=None):  # noqa: N803
        self._record("PutItem", {"TableName": TableName, "Item": Item, "ConditionExpression": ConditionExpression})
        with self._lock:
            key = self._key(TableName, Item, "PutItem")
            self._check_index_keys(TableName, Item, "PutItem")
            self._check(ConditionExpression, ExpressionAttributeNames, self.tables[TableName].get(key), "PutItem")
            self.tables[TableName][key] = copy.deepcopy(Item)
        return {}

    def delete_item(self, TableName, Key, ReturnValues=None):  # noqa: N803
        self._record("DeleteItem", {"TableName": TableName, "Key": Key})
        with self._lock:
            old = self.tables[TableName].pop(self._key(TableName, Key, "DeleteItem"), None)
        if ReturnValues == "ALL_OLD" and old:
            return {"Attributes": old}
        return {}

    def update_item(  # noqa: N803
        self,
        TableName,
        Key,
        UpdateExpression,
        ExpressionAttributeNames,
        ExpressionAttributeValues,
        ConditionExpression=None,
        ReturnValues=None,
    ):
        self._record("UpdateItem", {"TableName": TableName, "Key": Key, "UpdateExpression": UpdateExpression})
        m = _UPDATE.fullmatch(UpdateExpression.strip())
        if not m:
            raise ValueError(f"fake cannot apply update {UpdateExpression!r}")
        with self._lock:
            key = self._key(TableName, Key, "UpdateItem")
            existing = self.tables[TableName].get(key)
            self._check(ConditionExpression, ExpressionAttributeNames, existing, "UpdateItem")
            item = copy.deepcopy(existing) if existing else copy.deepcopy(Key)
            for part in m.group(1).split(", "):
                name, placeholder = part.split(" = ")
                item[ExpressionAttributeNames[name]] = ExpressionAttributeValues[placeholder]
            for name in (m.group(2) or "").split(", "):
                if name:
                    item.pop(ExpressionAttributeNames[name], None)
            self._check_index_keys(TableName, item, "UpdateItem")
            self.tables[TableName][key] = item
        return {"Attributes": copy.deepcopy(item)} if ReturnValues == "ALL_NEW" else {}

    # -- multi item --------------------------------------------------------

    def _page(self, rows: List[Dict[str, Any]], start_key: Optional[Dict[str, Any]]):
        start = int(start_key["__offset"]["N"]) if start_key else 0
        page = rows[start:start + self.page_size]
        last = None
        if start + self.page_size < len(rows):
            last = {"__offset": {"N": str(start + self.page_size)}}
        return page, last

    def query(  # noqa: N803
        self,
        TableName,
        KeyConditionExpression,
        ExpressionAttributeNames,
        ExpressionAttributeValues,
        IndexName=None,
        ScanIndexForward=True,
        ConsistentRead=False,
        ExclusiveStartKey=None,
    ):
        self._record(
            "Query",
            {"TableName": TableName, "IndexName": IndexName, "ExpressionAttributeValues": ExpressionAttributeValues},
        )
        schema = self._schema(TableName, "Query")
        if IndexName:
            if ConsistentRead:
                raise _client_error("ValidationException", "Consistent reads are not supported on GSIs", "Query")
            if IndexName not in schema["indexes"]:
                raise _client_error("ValidationException", f"Unknown index {IndexName}", "Query")
            hash_attr, range_attr = schema["indexes"][IndexName]
        else:
            hash_attr, range_attr = schema["key"]

        m = _KEY_CONDITION.fullmatch(KeyConditionExpression)
        if not m:
            raise ValueError(f"fake cannot evaluate key condition {KeyConditionExpression!r}")
        if ExpressionAttributeNames["#pk"] != hash_attr:
            raise _client_error("ValidationException", "Query condition missed key schema element", "Query")
        prefix = ExpressionAttributeValues.get(":sk")
        if prefix is not None and ExpressionAttributeNames["#sk"] != range_attr:
            raise _client_error("ValidationException", "Query key condition not supported", "Query")

        pk_value = ExpressionAttributeValues[":pk"]
        with self._lock:
            rows = []
            for item in self.tables[TableName].values():
                if item.get(hash_attr) != pk_value:
                    continue
                if IndexName and range_attr and range_attr not in item:
                    continue
                if prefix is not None and not item.get(range_attr, {}).get("S", "").startswith(prefix["S"]):
                    continue
                rows.append(copy.deepcopy(item))
        if range_attr:
            rows.sort(key=lambda i: _scalar(i[range_attr]), reverse=not ScanIndexForward)

        page, last = self._page(rows, ExclusiveStartKey)
        resp: Dict[str, Any] = {"Items": page, "Count": len(page)}
        if last:
            resp["LastEvaluatedKey"] = last
        return resp

    def scan(  # noqa: N803
        self,
        TableName,
        FilterExpression=None,
        ExpressionAttributeNames=None,
        ExpressionAttributeValues=None,
        ExclusiveStartKey=None,
    ):
        self._record("Scan", {"TableName": TableName, "FilterExpression": FilterExpression})
        self._schema(TableName, "Scan")
        with self._lock:
            rows = [copy.deepcopy(item) for item in self.tables[TableName].values()]
        page, last = self._page(rows, ExclusiveStartKey)
        if FilterExpression:
            if not _FILTER.fullmatch(FilterExpression):
                raise ValueError(f"fake cannot evaluate filter {FilterExpression!r}")
            attr = ExpressionAttributeNames["#f"]
            page = [item for item in page if item.get(attr) == ExpressionAttributeValues[":f"]]
        resp: Dict[str, Any] = {"Items": page, "Count": len(page)}
        if last:
            resp["LastEvaluatedKey"] = last
        return resp

    def batch_get_item(self, RequestItems):  # noqa: N803
        self._record("BatchGetItem", {"RequestItems": RequestItems})
        responses: Dict[str, List[Dict[str, Any]]] = {}
        unprocessed: Dict[str, Any] = {}
        with self._lock:
            for table, request in RequestItems.items():
                keys = request["Keys"]
                if len(keys) > 100:
                    raise _client_error("ValidationException", "Too many items requested", "BatchGetItem")
                if self.unprocessed_next:
                    self.unprocessed_next = False
                    unprocessed[table] = {"Keys": keys[-1:]}
                    keys = keys[:-1]
                found = [self.tables[table].get(self._key(table, k, "BatchGetItem")) for k in keys]
                responses[table] = [copy.deepcopy(item) for item in found if item]
        return {"Responses": responses, "UnprocessedKeys": unprocessed}

    def transact_write_items(self, TransactItems):  # noqa: N803
        self._record("TransactWriteItems", {"TransactItems": TransactItems})
        if len(TransactItems) > 100:
            raise _client_error(
                "ValidationException",
                "Member must have length less than or equal to 100",
                "TransactWriteItems",
            )
        with self._lock:
            planned = []
            seen = set()
            for entry in TransactItems:
                (verb, req), = entry.items()
                table = req["TableName"]
                key = self._key(table, req["Item"] if verb == "Put" else req["Key"], "TransactWriteItems")
                if (table, key) in seen:
                    raise _client_error(
                        "ValidationException",
                        "Transaction request cannot include multiple operations on one item",
                        "TransactWriteItems",
                    )
                seen.add((table, key))
                if verb == "Put":
                    self._check_index_keys(table, req["Item"], "TransactWriteItems")
                planned.append((verb, req, table, key))

            reasons = []
            for verb, req, table, key in planned:
                ok = self._condition_holds(
                    req.get("ConditionExpression"),
                    req.get("ExpressionAttributeNames"),
                    self.tables[table].get(key),
                )
                reasons.append({"Code": "None"} if ok else {"Code": "ConditionalCheckFailed"})
            if any(r["Code"] != "None" for r in reasons):
                raise _client_error(
                    "TransactionCanceledException",
                    "Transaction cancelled, please refer cancellation reasons for specific reasons",
                    "TransactWriteItems",
                    CancellationReasons=reasons,
                )

            for verb, req, table, key in planned:
                if verb == "Put":
                    self.tables[table][key] = copy.deepcopy(req["Item"])
                else:
                    self.tables[table].pop(key, None)
        return {}

    def close(self):
        self.closed = True
