"""test_store_client.py — Unit tests for the DynamoDB store client.

Run from the repository root:
    python3 -m pytest test_store_client.py -v
"""

from __future__ import annotations

import os
import sys
import unittest
from unittest.mock import MagicMock, patch

# Ensure the package directory is importable without installation.
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "python"))

from botocore.exceptions import ClientError, EndpointConnectionError

from taskflow_data.errors import (
    ConditionFailed,
    StoreError,
    TransactionCancelled,
    TransactionTooLarge,
    TransientStoreError,
    ValidationError,
)
from taskflow_data.field_mask import FieldMask
from taskflow_data.store_client import StoreClient, TransactDelete, TransactPut, _map_client_error


def _client_error(code, operation="PutItem", status=400, **extra):
    response = {"Error": {"Code": code, "Message": "boom"}, "ResponseMetadata": {"HTTPStatusCode": status}}
    response.update(extra)
    return ClientError(response, operation)


class ErrorMappingTests(unittest.TestCase):
    def test_throttling_is_transient(self):
        err = _map_client_error(_client_error("ProvisionedThroughputExceededException"), "PutItem")
        self.assertIsInstance(err, TransientStoreError)
        self.assertEqual(err.code, "ProvisionedThroughputExceededException")

    def test_server_error_status_is_transient(self):
        err = _map_client_error(_client_error("SomethingNew", status=503), "GetItem")
        self.assertIsInstance(err, TransientStoreError)

    def test_network_failure_is_transient(self):
        err = _map_client_error(EndpointConnectionError(endpoint_url="http://localhost:8000"), "GetItem")
        self.assertIsInstance(err, TransientStoreError)

    def test_conditional_check(self):
        err = _map_client_error(_client_error("ConditionalCheckFailedException"), "PutItem")
        self.assertIsInstance(err, ConditionFailed)

    def test_transaction_cancelled_carries_reasons(self):
        exc = _client_error(
            "TransactionCanceledException",
            operation="TransactWriteItems",
            CancellationReasons=[{"Code": "None"}, {"Code": "ConditionalCheckFailed"}],
        )
        err = _map_client_error(exc, "TransactWriteItems")
        self.assertIsInstance(err, TransactionCancelled)
        self.assertEqual(err.reasons, ["None", "ConditionalCheckFailed"])

    def test_throttled_transaction_is_transient(self):
        for reason in ("ThrottlingError", "TransactionConflict", "ProvisionedThroughputExceeded"):
            exc = _client_error(
                "TransactionCanceledException",
                operation="TransactWriteItems",
                CancellationReasons=[{"Code": reason}, {"Code": "None"}],
            )
            err = _map_client_error(exc, "TransactWriteItems")
            self.assertIsInstance(err, TransientStoreError, reason)
            self.assertIsInstance(err, TransactionCancelled, reason)
            self.assertEqual(err.reasons, [reason, "None"])

    def test_condition_failure_keeps_transaction_permanent(self):
        exc = _client_error(
            "TransactionCanceledException",
            operation="TransactWriteItems",
            CancellationReasons=[{"Code": "ThrottlingError"}, {"Code": "ConditionalCheckFailed"}],
        )
        err = _map_client_error(exc, "TransactWriteItems")
        self.assertIsInstance(err, TransactionCancelled)
        self.assertNotIsInstance(err, TransientStoreError)

    def test_validation_is_not_transient(self):
        err = _map_client_error(_client_error("ValidationException"), "Query")
        self.assertIsInstance(err, StoreError)
        self.assertNotIsInstance(err, TransientStoreError)


class SingleItemTests(unittest.TestCase):
    def setUp(self):
        self.ddb = MagicMock()
        self.client = StoreClient(self.ddb)

    def test_get_missing_returns_none(self):
        self.ddb.get_item.return_value = {}
        self.assertIsNone(self.client.get("Users", {"userId": "u1"}))
        kwargs = self.ddb.get_item.call_args.kwargs
        self.assertEqual(kwargs["Key"], {"userId": {"S": "u1"}})
        self.assertTrue(kwargs["ConsistentRead"])

    def test_get_deserializes_numbers(self):
        self.ddb.get_item.return_value = {"Item": {"userId": {"S": "u1"}, "count": {"N": "3"}}}
        self.assertEqual(self.client.get("Users", {"userId": "u1"}), {"userId": "u1", "count": 3})

    def test_put_drops_none_attributes(self):
        self.client.put("Users", {"userId": "u1", "bio": None}, condition="attribute_not_exists(#u)", names={"#u": "userId"})
        kwargs = self.ddb.put_item.call_args.kwargs
        self.assertEqual(kwargs["Item"], {"userId": {"S": "u1"}})
        self.assertEqual(kwargs["ConditionExpression"], "attribute_not_exists(#u)")

    def test_update_merges_condition_names(self):
        self.ddb.update_item.return_value = {"Attributes": {"userId": {"S": "u1"}, "bio": {"S": "hi"}}}
        plan = FieldMask({"bio": "bio"}).compile({"bio": "hi"}, "2026-01-01T00:00:00.000Z")
        out = self.client.update("Users", {"userId": "u1"}, plan, condition="attribute_exists(#u)", condition_names={"#u": "userId"})
        self.assertEqual(out["bio"], "hi")
        kwargs = self.ddb.update_item.call_args.kwargs
        self.assertEqual(kwargs["ExpressionAttributeNames"]["#u"], "userId")
        self.assertEqual(kwargs["ReturnValues"], "ALL_NEW")

    def test_client_error_is_translated(self):
        self.ddb.get_item.side_effect = _client_error("ThrottlingException", operation="GetItem")
        with self.assertRaises(TransientStoreError) as ctx:
            self.client.get("Users", {"userId": "u1"})
        self.assertIsInstance(ctx.exception.__cause__, ClientError)


class QueryTests(unittest.TestCase):
    def setUp(self):
        self.ddb = MagicMock()
        self.client = StoreClient(self.ddb)

    def test_query_follows_last_evaluated_key(self):
        self.ddb.query.side_effect = [
            {"Items": [{"PK": {"S": "PROJ#p"}, "SK": {"S": "METADATA"}}], "LastEvaluatedKey": {"k": {"S": "1"}}},
            {"Items": [{"PK": {"S": "PROJ#p"}, "SK": {"S": "USER#u1"}}]},
        ]
        items = self.client.query_partition("Projects", "PK", "PROJ#p")
        self.assertEqual([i["SK"] for i in items], ["METADATA", "USER#u1"])
        second = self.ddb.query.call_args_list[1].kwargs
        self.assertEqual(second["ExclusiveStartKey"], {"k": {"S": "1"}})

    def test_prefix_condition(self):
        self.ddb.query.return_value = {"Items": []}
        self.client.query_partition("Projects", "PK", "PROJ#p", sk_attr="SK", sk_prefix="TASK#", newest_first=True)
        kwargs = self.ddb.query.call_args.kwargs
        self.assertEqual(kwargs["KeyConditionExpression"], "#pk = :pk AND begins_with(#sk, :sk)")
        self.assertEqual(kwargs["ExpressionAttributeValues"][":sk"], {"S": "TASK#"})
        self.assertFalse(kwargs["ScanIndexForward"])

    def test_prefix_without_sort_attribute_is_rejected(self):
        with self.assertRaises(ValidationError):
            self.client.query_partition("Projects", "PK", "PROJ#p", sk_prefix="TASK#")
        self.ddb.query.assert_not_called()

    def test_index_query_is_not_consistent(self):
        self.ddb.query.return_value = {"Items": []}
        self.client.query_index("Users", "EmailIndex", "email", "a@x.com")
        kwargs = self.ddb.query.call_args.kwargs
        self.assertEqual(kwargs["IndexName"], "EmailIndex")
        self.assertNotIn("ConsistentRead", kwargs)

    def test_scan_first_only_stops_after_a_match(self):
        self.ddb.scan.side_effect = [
            {"Items": [], "LastEvaluatedKey": {"k": {"S": "1"}}},
            {"Items": [{"taskId": {"S": "t1"}}], "LastEvaluatedKey": {"k": {"S": "2"}}},
            {"Items": [{"taskId": {"S": "t1"}}]},
        ]
        items = self.client.scan("Projects", filter_attr="taskId", filter_value="t1", first_only=True)
        self.assertEqual(len(items), 1)
        self.assertEqual(self.ddb.scan.call_count, 2)


class BatchAndTransactionTests(unittest.TestCase):
    def setUp(self):
        self.ddb = MagicMock()
        self.client = StoreClient(self.ddb)

    def test_batch_get_bound(self):
        keys = [{"userId": f"u{i}"} for i in range(101)]
        with self.assertRaises(ValidationError):
            self.client.batch_get("Users", keys)
        self.ddb.batch_get_item.assert_not_called()

    def test_batch_get_empty_makes_no_call(self):
        self.assertEqual(self.client.batch_get("Users", []), [])
        self.ddb.batch_get_item.assert_not_called()

    def test_batch_get_unprocessed_keys_surface_as_transient(self):
        self.ddb.batch_get_item.return_value = {
            "Responses": {"Users": []},
            "UnprocessedKeys": {"Users": {"Keys": [{"userId": {"S": "u1"}}]}},
        }
        with self.assertRaises(TransientStoreError):
            self.client.batch_get("Users", [{"userId": "u1"}])

    def test_transaction_over_bound_fails_before_network(self):
        ops = [TransactDelete("Projects", {"PK": "PROJ#p", "SK": f"USER#{i}"}) for i in range(101)]
        with self.assertRaises(TransactionTooLarge) as ctx:
            self.client.transact_write(ops)
        self.assertEqual(ctx.exception.count, 101)
        self.ddb.transact_write_items.assert_not_called()

    def test_transaction_request_shape(self):
        self.client.transact_write(
            [
                TransactPut("Projects", {"PK": "PROJ#p", "SK": "METADATA"}, condition="attribute_not_exists(#pk)", names={"#pk": "PK"}),
                TransactDelete("Projects", {"PK": "PROJ#p", "SK": "USER#u1"}),
            ]
        )
        items = self.ddb.transact_write_items.call_args.kwargs["TransactItems"]
        self.assertEqual(items[0]["Put"]["ConditionExpression"], "attribute_not_exists(#pk)")
        self.assertEqual(items[1]["Delete"]["Key"], {"PK": {"S": "PROJ#p"}, "SK": {"S": "USER#u1"}})

    def test_throttled_transaction_raises_transient(self):
        self.ddb.transact_write_items.side_effect = _client_error(
            "TransactionCanceledException",
            operation="TransactWriteItems",
            CancellationReasons=[{"Code": "ThrottlingError"}, {"Code": "None"}],
        )
        with self.assertRaises(TransientStoreError) as ctx:
            self.client.transact_write([TransactDelete("Projects", {"PK": "PROJ#p", "SK": "METADATA"})])
        self.assertIsInstance(ctx.exception, TransactionCancelled)

    def test_empty_transaction_is_a_no_op(self):
        self.client.transact_write([])
        self.ddb.transact_write_items.assert_not_called()


class LifecycleTests(unittest.TestCase):
    @patch("taskflow_data.aws_clients.boto3")
    def test_open_builds_client_without_retries(self, mock_boto3):
        client = StoreClient.open(region="us-west-2", endpoint_url="http://localhost:8000")
        _, kwargs = mock_boto3.client.call_args
        self.assertEqual(kwargs["region_name"], "us-west-2")
        self.assertEqual(kwargs["endpoint_url"], "http://localhost:8000")
        self.assertEqual(kwargs["config"].retries["max_attempts"], 1)
        self.assertIs(client.ddb, mock_boto3.client.return_value)

    def test_context_manager_closes(self):
        ddb = MagicMock()
        with StoreClient(ddb) as client:
            pass
        self.assertTrue(client.closed)
        ddb.close.assert_called_once()

    def test_closed_client_refuses_calls(self):
        ddb = MagicMock()
        client = StoreClient(ddb)
        client.close()
        client.close()
        ddb.close.assert_called_once()
        with self.assertRaises(StoreError):
            client.get("Users", {"userId": "u1"})
        ddb.get_item.assert_not_called()


if __name__ == "__main__":
    unittest.main()
