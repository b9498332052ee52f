"""taskflow_data.users — User accounts.

Flat table keyed by ``userId`` with two global secondary indexes,
``EmailIndex`` and ``UsernameIndex``.

Uniqueness of email and username is advisory: ``create_user`` queries both
indexes and then writes, and nothing makes that sequence atomic. Two
concurrent registrations for the same address can both succeed. Indexes
are eventually consistent, which widens the window further.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional

from taskflow_data.assets import AvatarStore
from taskflow_data.codec import NotificationSettings, User, user_from_item, user_to_item
from taskflow_data.config import StoreSettings
from taskflow_data.errors import ConditionFailed, UniquenessConflict, ValidationError
from taskflow_data.field_mask import FieldMask
from taskflow_data.observability import emit_audit_event
from taskflow_data.serialization import _chunked, _dedupe, _new_id, _now_iso
from taskflow_data.store_client import StoreClient

logger = logging.getLogger(__name__)

__all__ = [
    "USER_FIELDS",
    "UserStore",
]

USER_FIELDS = FieldMask(
    {
        "first_name": "firstName",
        "last_name": "lastName",
        "role": "role",
        "position": "position",
        "department": "department",
        "bio": "bio",
        "phone": "phone",
        "avatar": "avatar",
        "password_hash": "password",
        "notification_settings": "notificationSettings",
    },
    immutable=("user_id", "email", "username", "created_at"),
    required=("password_hash", "role"),
)

_KEY_ATTR = "userId"
_KEY_NAMES = {"#uid": _KEY_ATTR}


def _settings_value(value: Any) -> Any:
    if isinstance(value, NotificationSettings):
        return value.to_item()
    if isinstance(value, Mapping):
        return NotificationSettings.from_item(
            {
                "emailNotifications": value.get("email_notifications", value.get("emailNotifications", True)),
                "pushNotifications": value.get("push_notifications", value.get("pushNotifications", True)),
                "weeklyDigest": value.get("weekly_digest", value.get("weeklyDigest", False)),
            }
        ).to_item()
    return value


class UserStore:
    def __init__(
        self,
        client: StoreClient,
        settings: Optional[StoreSettings] = None,
        avatars: Optional[AvatarStore] = None,
    ) -> None:
        self._client = client
        self._settings = settings or StoreSettings()
        self._table = self._settings.users_table
        self._avatars = avatars

    # -- writes ------------------------------------------------------------

    def create_user(self, data: Mapping[str, Any]) -> User:
        """Register a user after checking email and username are free.

        Raises ``UniquenessConflict`` when either is already taken. The
        check is not atomic with the write (see module docstring).
        """
        email = str(data.get("email") or "").strip()
        username = str(data.get("username") or "").strip()
        password_hash = str(data.get("password_hash") or "")
        if not email or not username:
            raise ValidationError("email and username are required")
        if not password_hash:
            raise ValidationError("password hash is required")

        if self.get_user_by_email(email) is not None:
            raise UniquenessConflict("email", email)
        if self.get_user_by_username(username) is not None:
            raise UniquenessConflict("username", username)

        now = _now_iso()
        settings = data.get("notification_settings")
        user = User(
            user_id=_new_id(),
            email=email,
            username=username,
            password_hash=password_hash,
            first_name=data.get("first_name") or "",
            last_name=data.get("last_name") or "",
            role=data.get("role") or "member",
            position=data.get("position"),
            department=data.get("department"),
            bio=data.get("bio"),
            phone=data.get("phone"),
            avatar=data.get("avatar"),
            notification_settings=NotificationSettings.from_item(_settings_value(settings)) if settings else NotificationSettings(),
            created_at=now,
            updated_at=now,
        )
        self._client.put(self._table, user_to_item(user), condition="attribute_not_exists(#uid)", names=_KEY_NAMES)
        emit_audit_event("user_created", entity_id=user.user_id, mirror_log_group=self._settings.audit_log_group)
        return user

    def update_user(self, user_id: str, patch: Mapping[str, Any]) -> Optional[User]:
        """Patch profile attributes.

        ``user_id``, ``email``, ``username`` and ``created_at`` are never
        written, whatever the patch holds. Returns ``None`` for an unknown
        user and the current record when nothing mutable was supplied.
        """
        patch = dict(patch or {})
        if "notification_settings" in patch and patch["notification_settings"] is not None:
            patch["notification_settings"] = _settings_value(patch["notification_settings"])

        plan = USER_FIELDS.compile(patch, _now_iso())
        if plan is None:
            logger.warning("[WARNING] No mutable user fields in update for %s; reading through", user_id)
            return self.get_user_by_id(user_id)
        try:
            item = self._client.update(
                self._table,
                {_KEY_ATTR: user_id},
                plan,
                condition="attribute_exists(#uid)",
                condition_names=_KEY_NAMES,
            )
        except ConditionFailed:
            return None
        emit_audit_event(
            "user_updated",
            entity_id=user_id,
            extra={"fields": plan.changed},
            mirror_log_group=self._settings.audit_log_group,
        )
        return user_from_item(item)

    def delete_user(self, user_id: str) -> Optional[User]:
        """Delete the account, then hand its avatar URL to the asset store.

        Avatar removal is best effort and never fails the deletion.
        """
        old = self._client.delete(self._table, {_KEY_ATTR: user_id}, return_old=True)
        if old is None:
            return None
        user = user_from_item(old)
        emit_audit_event("user_deleted", entity_id=user_id, mirror_log_group=self._settings.audit_log_group)
        if user.avatar and self._avatars is not None:
            self._avatars.delete_url(user.avatar)
        return user

    # -- reads -------------------------------------------------------------

    def get_user_by_id(self, user_id: str) -> Optional[User]:
        item = self._client.get(self._table, {_KEY_ATTR: user_id})
        return user_from_item(item) if item else None

    def get_user_by_email(self, email: str) -> Optional[User]:
        return self._first_by_index(self._settings.email_index, "email", email)

    def get_user_by_username(self, username: str) -> Optional[User]:
        return self._first_by_index(self._settings.username_index, "username", username)

    def _first_by_index(self, index: str, attr: str, value: str) -> Optional[User]:
        items = self._client.query_index(self._table, index, attr, value, first_only=True)
        return user_from_item(items[0]) if items else None

    def get_users_by_ids(self, user_ids: List[str]) -> List[User]:
        """Batch lookup, deduplicated; unknown ids are simply absent."""
        unique_ids = _dedupe(user_ids or [])
        by_id: Dict[str, User] = {}
        for chunk in _chunked(unique_ids, self._client.batch_get_limit):
            for item in self._client.batch_get(self._table, [{_KEY_ATTR: uid} for uid in chunk]):
                user = user_from_item(item)
                by_id[user.user_id] = user
        return [by_id[uid] for uid in unique_ids if uid in by_id]

    def scan_all_users(self) -> List[User]:
        """Every user in the table. Development only: reads the whole table."""
        logger.warning("[WARNING] scan_all_users is reading all of %s", self._table)
        return [user_from_item(item) for item in self._client.scan(self._table)]
