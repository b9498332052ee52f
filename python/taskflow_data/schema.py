"""taskflow_data.schema — CreateTable definitions for local provisioning.

Production tables are managed outside this package; these definitions are
for DynamoDB Local and throwaway environments. All tables use on-demand
billing and all indexes project every attribute.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from botocore.exceptions import ClientError

from taskflow_data.codec import PK, SK
from taskflow_data.config import StoreSettings
from taskflow_data.store_client import StoreClient

logger = logging.getLogger(__name__)

__all__ = [
    "ensure_tables",
    "table_definitions",
]


def _index(name: str, hash_attr: str, range_attr: Optional[str] = None) -> Dict[str, Any]:
    key_schema = [{"AttributeName": hash_attr, "KeyType": "HASH"}]
    if range_attr:
        key_schema.append({"AttributeName": range_attr, "KeyType": "RANGE"})
    return {"IndexName": name, "KeySchema": key_schema, "Projection": {"ProjectionType": "ALL"}}


def _table(name: str, hash_attr: str, range_attr: Optional[str], indexes: List[Dict[str, Any]]) -> Dict[str, Any]:
    key_schema = [{"AttributeName": hash_attr, "KeyType": "HASH"}]
    if range_attr:
        key_schema.append({"AttributeName": range_attr, "KeyType": "RANGE"})

    attrs = {hash_attr}
    if range_attr:
        attrs.add(range_attr)
    for index in indexes:
        attrs.update(k["AttributeName"] for k in index["KeySchema"])

    definition: Dict[str, Any] = {
        "TableName": name,
        "KeySchema": key_schema,
        "AttributeDefinitions": [{"AttributeName": a, "AttributeType": "S"} for a in sorted(attrs)],
        "BillingMode": "PAY_PER_REQUEST",
    }
    if indexes:
        definition["GlobalSecondaryIndexes"] = indexes
    return definition


def table_definitions(settings: Optional[StoreSettings] = None) -> List[Dict[str, Any]]:
    settings = settings or StoreSettings()

    project_indexes = [
        _index(settings.user_projects_index, SK, PK),
        _index(settings.assigned_tasks_index, "assignedTo"),
    ]
    if settings.task_id_index:
        project_indexes.append(_index(settings.task_id_index, "taskId"))

    notification_indexes = []
    if settings.notification_id_index:
        notification_indexes.append(_index(settings.notification_id_index, "notificationId"))

    return [
        _table(
            settings.users_table,
            "userId",
            None,
            [_index(settings.email_index, "email"), _index(settings.username_index, "username")],
        ),
        _table(settings.projects_table, PK, SK, project_indexes),
        _table(settings.notifications_table, "userId", "createdAt", notification_indexes),
    ]


def ensure_tables(client: StoreClient, settings: Optional[StoreSettings] = None, wait: bool = True) -> List[str]:
    """Create whichever tables are missing; returns the names created."""
    ddb = client.ddb
    created: List[str] = []
    for definition in table_definitions(settings):
        name = definition["TableName"]
        try:
            ddb.describe_table(TableName=name)
            continue
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") != "ResourceNotFoundException":
                raise
        ddb.create_table(**definition)
        logger.info("[INFO] Created table %s", name)
        created.append(name)

    if wait:
        waiter = ddb.get_waiter("table_exists")
        for name in created:
            waiter.wait(TableName=name)
    return created
