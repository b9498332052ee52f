"""taskflow_data — DynamoDB access layer for the Taskflow backend.

Provides:
    - An explicitly constructed DynamoDB store client
    - Entity codecs for users, projects, tasks and notifications
    - One store per aggregate (users, projects, tasks, notifications)
    - Table definitions for local provisioning
"""

from taskflow_data.config import StoreSettings
from taskflow_data.errors import (
    ConditionFailed,
    StoreError,
    TransactionCancelled,
    TransactionTooLarge,
    TransientStoreError,
    TransientTransactionCancelled,
    UniquenessConflict,
    ValidationError,
)
from taskflow_data.notifications import NotificationStore
from taskflow_data.projects import ProjectStore
from taskflow_data.store_client import StoreClient
from taskflow_data.tasks import TaskStore
from taskflow_data.users import UserStore

__version__ = "1.0.0"

__all__ = [
    "ConditionFailed",
    "NotificationStore",
    "ProjectStore",
    "StoreClient",
    "StoreError",
    "StoreSettings",
    "TaskStore",
    "TransactionCancelled",
    "TransactionTooLarge",
    "TransientStoreError",
    "TransientTransactionCancelled",
    "UniquenessConflict",
    "UserStore",
    "ValidationError",
]
