"""test_schema.py — Table definitions and local provisioning."""

from __future__ import annotations

import os
import sys
import unittest
from unittest.mock import MagicMock

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "python"))

from botocore.exceptions import ClientError

from taskflow_data.config import StoreSettings
from taskflow_data.schema import ensure_tables, table_definitions
from taskflow_data.store_client import StoreClient


def _not_found(**_kwargs):
    raise ClientError(
        {"Error": {"Code": "ResourceNotFoundException", "Message": "missing"}}, "DescribeTable"
    )


class TableDefinitionTests(unittest.TestCase):
    def test_default_tables(self):
        defs = {d["TableName"]: d for d in table_definitions()}
        self.assertEqual(set(defs), {"Users", "Projects", "Notifications"})

        projects = defs["Projects"]
        self.assertEqual([k["AttributeName"] for k in projects["KeySchema"]], ["PK", "SK"])
        member_index = next(i for i in projects["GlobalSecondaryIndexes"] if i["IndexName"] == "UserProjectsIndex")
        self.assertEqual([k["AttributeName"] for k in member_index["KeySchema"]], ["SK", "PK"])

        notifications = defs["Notifications"]
        self.assertEqual([k["AttributeName"] for k in notifications["KeySchema"]], ["userId", "createdAt"])
        self.assertNotIn("GlobalSecondaryIndexes", notifications)

        users = defs["Users"]
        self.assertEqual(
            {i["IndexName"] for i in users["GlobalSecondaryIndexes"]},
            {"EmailIndex", "UsernameIndex"},
        )
        self.assertEqual(
            {a["AttributeName"] for a in users["AttributeDefinitions"]},
            {"userId", "email", "username"},
        )

    def test_optional_id_indexes(self):
        settings = StoreSettings(task_id_index="TaskIdIndex", notification_id_index="NotificationIdIndex")
        defs = {d["TableName"]: d for d in table_definitions(settings)}
        project_indexes = {i["IndexName"] for i in defs["Projects"]["GlobalSecondaryIndexes"]}
        self.assertIn("TaskIdIndex", project_indexes)
        self.assertEqual(defs["Notifications"]["GlobalSecondaryIndexes"][0]["IndexName"], "NotificationIdIndex")


class EnsureTablesTests(unittest.TestCase):
    def test_creates_only_missing_tables(self):
        ddb = MagicMock()

        def describe(TableName):  # noqa: N803
            if TableName == "Users":
                return {"Table": {"TableName": "Users"}}
            return _not_found()

        ddb.describe_table.side_effect = describe
        created = ensure_tables(StoreClient(ddb))

        self.assertEqual(created, ["Projects", "Notifications"])
        self.assertEqual(ddb.create_table.call_count, 2)
        waiter = ddb.get_waiter.return_value
        self.assertEqual(waiter.wait.call_count, 2)

    def test_other_errors_propagate(self):
        ddb = MagicMock()
        ddb.describe_table.side_effect = ClientError(
            {"Error": {"Code": "AccessDeniedException", "Message": "no"}}, "DescribeTable"
        )
        with self.assertRaises(ClientError):
            ensure_tables(StoreClient(ddb), wait=False)
        ddb.create_table.assert_not_called()


if __name__ == "__main__":
    unittest.main()
