"""taskflow_data.projects — Project metadata and membership.

One partition per project holds the metadata row, one membership row per
member and the project's tasks (see ``taskflow_data.codec``). The member
index (``UserProjectsIndex``, partitioned on ``SK``) answers "which
projects is this user in".

Consistency:
    * creation is one transaction: metadata plus every initial membership
      row commit together or not at all;
    * add/remove member are independent single-item writes;
    * deletion removes the partition in transaction-sized batches, metadata
      last, and only returns once a re-read finds the partition empty.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional

from taskflow_data.codec import (
    MEMBER_PREFIX,
    METADATA_SK,
    PK,
    SK,
    PROJECT_PREFIX,
    Membership,
    Project,
    ProjectRef,
    assemble_project,
    member_sk,
    membership_item,
    membership_key,
    metadata_key,
    project_from_item,
    project_metadata_item,
    project_pk,
)
from taskflow_data.config import StoreSettings
from taskflow_data.errors import ConditionFailed, StoreError, ValidationError
from taskflow_data.field_mask import FieldMask
from taskflow_data.observability import emit_audit_event
from taskflow_data.serialization import _chunked, _dedupe, _new_id, _now_iso
from taskflow_data.store_client import StoreClient, TransactDelete, TransactPut

logger = logging.getLogger(__name__)

__all__ = [
    "PROJECT_FIELDS",
    "ProjectStore",
]

PROJECT_FIELDS = FieldMask(
    {
        "name": "name",
        "description": "description",
        "status": "status",
        "priority": "priority",
        "due_date": "dueDate",
    },
    immutable=("project_id", "created_by", "created_at", "members"),
    required=("name",),
)

_PK_NAMES = {"#pk": PK}
_EXISTS = "attribute_exists(#pk)"
_NOT_EXISTS = "attribute_not_exists(#pk)"
_MAX_DELETE_PASSES = 5


class ProjectStore:
    def __init__(self, client: StoreClient, settings: Optional[StoreSettings] = None) -> None:
        self._client = client
        self._settings = settings or StoreSettings()
        self._table = self._settings.projects_table

    # -- writes ------------------------------------------------------------

    def create_project(self, data: Mapping[str, Any]) -> Project:
        """Create metadata and all initial memberships in one transaction.

        The creator is always a member; ``members`` may repeat the creator
        or itself. Raises ``TransactionTooLarge`` (nothing written) when the
        member count does not fit in a single transaction.

        Not idempotent: every call mints a new project id.
        """
        name = str(data.get("name") or "").strip()
        if not name:
            raise ValidationError("project name is required")
        creator = str(data.get("created_by") or "").strip()
        if not creator:
            raise ValidationError("project creator is required")

        now = _now_iso()
        project = Project(
            project_id=_new_id(),
            name=name,
            created_by=creator,
            members=_dedupe([creator] + [str(m).strip() for m in data.get("members") or [] if m is not None]),
            description=data.get("description"),
            status=data.get("status"),
            priority=data.get("priority"),
            due_date=data.get("due_date"),
            created_at=now,
            updated_at=now,
        )

        ops: List[Any] = [
            TransactPut(self._table, project_metadata_item(project), condition=_NOT_EXISTS, names=_PK_NAMES)
        ]
        ops.extend(TransactPut(self._table, membership_item(project.project_id, m)) for m in project.members)
        self._client.transact_write(ops)

        logger.info("[INFO] Created project %s with %d members", project.project_id, len(project.members))
        emit_audit_event(
            "project_created",
            entity_id=project.project_id,
            actor_id=creator,
            item_count=len(ops),
            mirror_log_group=self._settings.audit_log_group,
        )
        return project

    def update_project_details(self, project_id: str, patch: Mapping[str, Any]) -> Optional[Project]:
        """Patch mutable metadata fields.

        Returns the updated project with its members, the current project
        when the patch holds no mutable field, or ``None`` when the project
        does not exist. Clearing ``name`` raises ``ValidationError``.
        """
        plan = PROJECT_FIELDS.compile(patch, _now_iso())
        if plan is None:
            logger.warning("[WARNING] No mutable project fields in update for %s; reading through", project_id)
            return self.get_project_details(project_id)
        try:
            item = self._client.update(
                self._table,
                metadata_key(project_id),
                plan,
                condition=_EXISTS,
                condition_names=_PK_NAMES,
            )
        except ConditionFailed:
            return None
        return project_from_item(item, self._member_ids(project_id))

    def add_member(self, project_id: str, member_id: str) -> Membership:
        """Link a member. Not transactional with any other write."""
        self._client.put(self._table, membership_item(project_id, member_id))
        emit_audit_event(
            "project_member_added",
            entity_id=project_id,
            actor_id=member_id,
            mirror_log_group=self._settings.audit_log_group,
        )
        return Membership(project_id=project_id, member_id=member_id)

    def remove_member(self, project_id: str, member_id: str) -> None:
        self._client.delete(self._table, membership_key(project_id, member_id))
        emit_audit_event(
            "project_member_removed",
            entity_id=project_id,
            actor_id=member_id,
            mirror_log_group=self._settings.audit_log_group,
        )

    def delete_project(self, project_id: str) -> int:
        """Delete every record in the project partition.

        Records are deleted in transactions of at most the store's item
        bound, metadata last, so a failure part-way leaves a project that
        is still visible and can be deleted again. Returns the number of
        records removed (0 when the partition was already empty).
        """
        pk = project_pk(project_id)
        limit = self._client.transaction_limit
        removed = 0

        for _ in range(_MAX_DELETE_PASSES):
            items = self._client.query_partition(self._table, PK, pk)
            if not items:
                break
            items.sort(key=lambda item: item[SK] == METADATA_SK)
            for batch in _chunked(items, limit):
                self._client.transact_write(
                    [TransactDelete(self._table, {PK: item[PK], SK: item[SK]}) for item in batch]
                )
                removed += len(batch)
        else:
            raise StoreError(f"Project {project_id} partition still has records after {_MAX_DELETE_PASSES} passes")

        if removed:
            logger.info("[INFO] Deleted project %s (%d records)", project_id, removed)
            emit_audit_event(
                "project_deleted",
                entity_id=project_id,
                item_count=removed,
                mirror_log_group=self._settings.audit_log_group,
            )
        return removed

    # -- reads -------------------------------------------------------------

    def get_project_details(self, project_id: str) -> Optional[Project]:
        """Metadata plus member set; ``None`` when no metadata row exists."""
        items = self._client.query_partition(self._table, PK, project_pk(project_id))
        return assemble_project(items)

    def _member_ids(self, project_id: str) -> List[str]:
        items = self._client.query_partition(
            self._table,
            PK,
            project_pk(project_id),
            sk_attr=SK,
            sk_prefix=MEMBER_PREFIX,
        )
        return [item[SK][len(MEMBER_PREFIX):] for item in items]

    def is_member(self, project_id: str, user_id: str) -> bool:
        return self._client.get(self._table, membership_key(project_id, user_id)) is not None

    def get_projects_by_user_id(self, user_id: str) -> List[ProjectRef]:
        items = self._client.query_index(
            self._table,
            self._settings.user_projects_index,
            SK,
            member_sk(user_id),
        )
        return [ProjectRef(project_id=item[PK][len(PROJECT_PREFIX):]) for item in items]

    def get_projects_by_ids(self, project_ids: List[str]) -> List[Project]:
        """Metadata for each id, in input order. Members are not hydrated."""
        unique_ids = _dedupe(project_ids or [])
        by_id: Dict[str, Project] = {}
        for chunk in _chunked(unique_ids, self._client.batch_get_limit):
            for item in self._client.batch_get(self._table, [metadata_key(pid) for pid in chunk]):
                project = project_from_item(item)
                by_id[project.project_id] = project
        return [by_id[pid] for pid in unique_ids if pid in by_id]

    def get_projects_for_user(self, user_id: str) -> List[Project]:
        refs = self.get_projects_by_user_id(user_id)
        return self.get_projects_by_ids([ref.project_id for ref in refs])
