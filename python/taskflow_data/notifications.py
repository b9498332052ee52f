"""taskflow_data.notifications — Per-user notification feed.

Partition ``userId``, sort ``createdAt`` (ISO 8601, millisecond precision).
Two notifications for one user in the same millisecond would share a key,
so creation writes conditionally and moves the timestamp forward by one
millisecond on a collision.
"""

from __future__ import annotations

import dataclasses
import enum
import logging
from typing import Any, List, Mapping, Optional

from taskflow_data.codec import Notification, notification_from_item, notification_to_item
from taskflow_data.config import StoreSettings
from taskflow_data.errors import ConditionFailed, StoreError, ValidationError
from taskflow_data.field_mask import FieldMask
from taskflow_data.observability import emit_audit_event
from taskflow_data.serialization import _bump_iso, _chunked, _new_id, _now_iso
from taskflow_data.store_client import StoreClient, TransactPut

logger = logging.getLogger(__name__)

__all__ = [
    "NotificationStore",
    "NotificationType",
]


class NotificationType(str, enum.Enum):
    LOGIN_SUCCESS = "login_success"
    LOGOUT_SUCCESS = "logout_success"
    PROFILE_UPDATED = "profile_updated"
    AVATAR_UPLOADED = "avatar_uploaded"
    AVATAR_DELETED = "avatar_deleted"
    PASSWORD_UPDATED = "password_updated"
    PROJECT_CREATED = "project_created"
    PROJECT_INVITATION = "project_invitation"
    PROJECT_UPDATED = "project_updated"
    TASK_CREATED = "task_created"
    TASK_ASSIGNED = "task_assigned"
    TASK_UPDATED = "task_updated"
    TASK_COMPLETED = "task_completed"


_READ_MASK = FieldMask({"read": "read"})
_KEY_NAMES = {"#uid": "userId"}
_EXISTS = "attribute_exists(#uid)"
_NOT_EXISTS = "attribute_not_exists(#uid)"
_MAX_KEY_ATTEMPTS = 5


class NotificationStore:
    def __init__(self, client: StoreClient, settings: Optional[StoreSettings] = None) -> None:
        self._client = client
        self._settings = settings or StoreSettings()
        self._table = self._settings.notifications_table

    def create_notification(self, data: Mapping[str, Any]) -> Notification:
        user_id = str(data.get("user_id") or "").strip()
        message = str(data.get("message") or "").strip()
        if not user_id or not message:
            raise ValidationError("notification user and message are required")
        kind = data.get("type") or ""
        if isinstance(kind, NotificationType):
            kind = kind.value

        now = _now_iso()
        notification = Notification(
            notification_id=_new_id(),
            user_id=user_id,
            message=message,
            type=str(kind),
            read=False,
            created_at=now,
            updated_at=now,
        )
        for _ in range(_MAX_KEY_ATTEMPTS):
            try:
                self._client.put(
                    self._table, notification_to_item(notification), condition=_NOT_EXISTS, names=_KEY_NAMES
                )
                return notification
            except ConditionFailed:
                bumped = _bump_iso(notification.created_at)
                notification = dataclasses.replace(notification, created_at=bumped, updated_at=bumped)

        raise StoreError(f"Failed allocating a notification timestamp for user {user_id}")

    def get_notifications_by_user(self, user_id: str) -> List[Notification]:
        """Newest first."""
        items = self._client.query_partition(self._table, "userId", user_id, newest_first=True)
        return [notification_from_item(item) for item in items]

    def count_unread(self, user_id: str) -> int:
        return sum(1 for n in self.get_notifications_by_user(user_id) if not n.read)

    def find_by_id(self, notification_id: str) -> Optional[Notification]:
        """Lookup by id: the id index when configured, else a full scan."""
        if self._settings.notification_id_index:
            items = self._client.query_index(
                self._table,
                self._settings.notification_id_index,
                "notificationId",
                notification_id,
                first_only=True,
            )
        else:
            logger.warning("[WARNING] find_by_id(%s) is scanning %s", notification_id, self._table)
            items = self._client.scan(
                self._table, filter_attr="notificationId", filter_value=notification_id, first_only=True
            )
        return notification_from_item(items[0]) if items else None

    def mark_read(self, user_id: str, created_at: str) -> Optional[Notification]:
        plan = _READ_MASK.compile({"read": True}, _now_iso())
        try:
            item = self._client.update(
                self._table,
                {"userId": user_id, "createdAt": created_at},
                plan,
                condition=_EXISTS,
                condition_names=_KEY_NAMES,
            )
        except ConditionFailed:
            return None
        return notification_from_item(item)

    def mark_all_read(self, user_id: str) -> int:
        """Rewrite every unread notification as read; returns how many.

        Each transaction holds at most the store's item bound; above it the
        work is split across several transactions, each all-or-nothing. A
        notification deleted meanwhile cancels its batch instead of being
        recreated.
        """
        unread = [n for n in self.get_notifications_by_user(user_id) if not n.read]
        if not unread:
            return 0

        now = _now_iso()
        updated = 0
        for batch in _chunked(unread, self._client.transaction_limit):
            self._client.transact_write(
                [
                    TransactPut(
                        self._table,
                        notification_to_item(dataclasses.replace(n, read=True, updated_at=now)),
                        condition=_EXISTS,
                        names=_KEY_NAMES,
                    )
                    for n in batch
                ]
            )
            updated += len(batch)

        emit_audit_event(
            "notifications_marked_read",
            entity_id=user_id,
            item_count=updated,
            mirror_log_group=self._settings.audit_log_group,
        )
        return updated

    def delete_notification(self, user_id: str, created_at: str) -> None:
        self._client.delete(self._table, {"userId": user_id, "createdAt": created_at})
