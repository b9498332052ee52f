"""taskflow_data.config — Environment-driven table names, index names and limits.

Every value can be overridden through the environment. Stores never read
these constants directly; they receive a ``StoreSettings`` instance so a
process can talk to more than one set of tables (tests, DynamoDB Local).
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

# ---------------------------------------------------------------------------
# Connection
# ---------------------------------------------------------------------------

DYNAMODB_REGION: str = os.environ.get("DYNAMODB_REGION", os.environ.get("AWS_REGION", "us-east-1"))
DYNAMODB_ENDPOINT_URL: str = os.environ.get("DYNAMODB_ENDPOINT_URL", "")
# 1 means a single attempt: transient errors reach the caller untouched.
DYNAMODB_MAX_ATTEMPTS: int = int(os.environ.get("DYNAMODB_MAX_ATTEMPTS", "1"))

# ---------------------------------------------------------------------------
# Tables and indexes
# ---------------------------------------------------------------------------

USERS_TABLE: str = os.environ.get("USERS_TABLE", "Users")
PROJECTS_TABLE: str = os.environ.get("PROJECTS_TABLE", "Projects")
NOTIFICATIONS_TABLE: str = os.environ.get("NOTIFICATIONS_TABLE", "Notifications")

EMAIL_INDEX: str = os.environ.get("EMAIL_INDEX", "EmailIndex")
USERNAME_INDEX: str = os.environ.get("USERNAME_INDEX", "UsernameIndex")
USER_PROJECTS_INDEX: str = os.environ.get("USER_PROJECTS_INDEX", "UserProjectsIndex")
ASSIGNED_TASKS_INDEX: str = os.environ.get("ASSIGNED_TASKS_INDEX", "AssignedTasksIndex")
# Optional id indexes. When unset, id lookups fall back to a table scan.
TASK_ID_INDEX: str = os.environ.get("TASK_ID_INDEX", "")
NOTIFICATION_ID_INDEX: str = os.environ.get("NOTIFICATION_ID_INDEX", "")

# ---------------------------------------------------------------------------
# Store limits (DynamoDB service quotas)
# ---------------------------------------------------------------------------

TRANSACTION_ITEM_LIMIT = 100
BATCH_GET_LIMIT = 100

# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------

S3_BUCKET_NAME: str = os.environ.get("S3_BUCKET_NAME", "taskflow-front-end")
S3_REGION: str = os.environ.get("S3_REGION", DYNAMODB_REGION)
AUDIT_LOG_GROUP: str = os.environ.get("AUDIT_LOG_GROUP", "")


@dataclass(frozen=True)
class StoreSettings:
    users_table: str = USERS_TABLE
    projects_table: str = PROJECTS_TABLE
    notifications_table: str = NOTIFICATIONS_TABLE
    email_index: str = EMAIL_INDEX
    username_index: str = USERNAME_INDEX
    user_projects_index: str = USER_PROJECTS_INDEX
    assigned_tasks_index: str = ASSIGNED_TASKS_INDEX
    task_id_index: Optional[str] = TASK_ID_INDEX or None
    notification_id_index: Optional[str] = NOTIFICATION_ID_INDEX or None
    audit_log_group: Optional[str] = AUDIT_LOG_GROUP or None

    @classmethod
    def from_env(cls) -> "StoreSettings":
        """Re-read the environment (module constants are bound at import)."""
        env = os.environ
        return cls(
            users_table=env.get("USERS_TABLE", "Users"),
            projects_table=env.get("PROJECTS_TABLE", "Projects"),
            notifications_table=env.get("NOTIFICATIONS_TABLE", "Notifications"),
            email_index=env.get("EMAIL_INDEX", "EmailIndex"),
            username_index=env.get("USERNAME_INDEX", "UsernameIndex"),
            user_projects_index=env.get("USER_PROJECTS_INDEX", "UserProjectsIndex"),
            assigned_tasks_index=env.get("ASSIGNED_TASKS_INDEX", "AssignedTasksIndex"),
            task_id_index=env.get("TASK_ID_INDEX") or None,
            notification_id_index=env.get("NOTIFICATION_ID_INDEX") or None,
            audit_log_group=env.get("AUDIT_LOG_GROUP") or None,
        )
