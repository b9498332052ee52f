"""taskflow_data.tasks — Tasks stored inside their project's partition.

Lookups:
    by project   partition query on ``PROJ#<projectId>`` with prefix ``TASK#``
    by assignee  ``AssignedTasksIndex`` (hash ``assignedTo``)
    by id        ``TASK_ID_INDEX`` when configured, otherwise a full scan

Status is free-form: no transition graph is enforced.
"""

from __future__ import annotations

import logging
from typing import Any, List, Mapping, Optional

from taskflow_data.codec import PK, SK, TASK_PREFIX, Task, project_pk, task_from_item, task_key, task_to_item
from taskflow_data.config import StoreSettings
from taskflow_data.errors import ConditionFailed, ValidationError
from taskflow_data.field_mask import FieldMask
from taskflow_data.observability import emit_audit_event
from taskflow_data.serialization import _new_id, _now_iso
from taskflow_data.store_client import StoreClient

logger = logging.getLogger(__name__)

__all__ = [
    "TASK_FIELDS",
    "TASK_STATUSES",
    "TaskStore",
]

TASK_STATUSES = ("pending", "in_progress", "completed")

TASK_FIELDS = FieldMask(
    {
        "title": "title",
        "description": "description",
        "status": "status",
        "assigned_to": "assignedTo",
        "due_date": "dueDate",
    },
    immutable=("task_id", "project_id", "created_at"),
    required=("title", "status"),
)

_SK_NAMES = {"#sk": SK}


def _assignee(value: Any) -> Optional[str]:
    # assignedTo keys a GSI, which rejects empty strings.
    if value is None:
        return None
    return str(value).strip() or None


class TaskStore:
    def __init__(self, client: StoreClient, settings: Optional[StoreSettings] = None) -> None:
        self._client = client
        self._settings = settings or StoreSettings()
        self._table = self._settings.projects_table

    def create_task(self, data: Mapping[str, Any]) -> Task:
        """Put a new task under its project's partition. Mints a new id per call."""
        title = str(data.get("title") or "").strip()
        if not title:
            raise ValidationError("task title is required")
        project_id = str(data.get("project_id") or "").strip()
        if not project_id:
            raise ValidationError("task project is required")

        now = _now_iso()
        task = Task(
            task_id=_new_id(),
            title=title,
            project_id=project_id,
            status=data.get("status") or "pending",
            description=data.get("description"),
            assigned_to=_assignee(data.get("assigned_to")),
            due_date=data.get("due_date"),
            created_at=now,
            updated_at=now,
        )
        self._client.put(self._table, task_to_item(task), condition="attribute_not_exists(#sk)", names=_SK_NAMES)
        emit_audit_event(
            "task_created",
            entity_id=task.task_id,
            extra={"project_id": project_id},
            mirror_log_group=self._settings.audit_log_group,
        )
        return task

    def get_task(self, project_id: str, task_id: str) -> Optional[Task]:
        item = self._client.get(self._table, task_key(project_id, task_id))
        return task_from_item(item) if item else None

    def get_tasks_by_project(self, project_id: str) -> List[Task]:
        items = self._client.query_partition(
            self._table,
            PK,
            project_pk(project_id),
            sk_attr=SK,
            sk_prefix=TASK_PREFIX,
        )
        return [task_from_item(item) for item in items]

    def get_tasks_by_assignee(self, user_id: str) -> List[Task]:
        items = self._client.query_index(
            self._table,
            self._settings.assigned_tasks_index,
            "assignedTo",
            user_id,
        )
        return [task_from_item(item) for item in items]

    def find_task_by_id(self, task_id: str) -> Optional[Task]:
        """Locate a task when only its id is known.

        Uses the task-id index when one is configured. Without it this is a
        full-table scan: O(table size), unordered, never for hot paths.
        """
        if self._settings.task_id_index:
            items = self._client.query_index(
                self._table, self._settings.task_id_index, "taskId", task_id, first_only=True
            )
        else:
            logger.warning("[WARNING] find_task_by_id(%s) is scanning %s; configure TASK_ID_INDEX", task_id, self._table)
            items = self._client.scan(self._table, filter_attr="taskId", filter_value=task_id, first_only=True)
        return task_from_item(items[0]) if items else None

    def update_task(self, project_id: str, task_id: str, patch: Mapping[str, Any]) -> Optional[Task]:
        """Patch mutable task fields; ``None`` when the task does not exist.

        A blank ``assigned_to`` unassigns. Clearing ``title`` or ``status``
        raises ``ValidationError``.
        """
        patch = dict(patch or {})
        if "assigned_to" in patch:
            patch["assigned_to"] = _assignee(patch["assigned_to"])
        plan = TASK_FIELDS.compile(patch, _now_iso())
        if plan is None:
            logger.warning("[WARNING] No mutable task fields in update for %s; reading through", task_id)
            return self.get_task(project_id, task_id)
        try:
            item = self._client.update(
                self._table,
                task_key(project_id, task_id),
                plan,
                condition="attribute_exists(#sk)",
                condition_names=_SK_NAMES,
            )
        except ConditionFailed:
            return None
        emit_audit_event(
            "task_updated",
            entity_id=task_id,
            extra={"project_id": project_id, "fields": plan.changed},
            mirror_log_group=self._settings.audit_log_group,
        )
        return task_from_item(item)

    def delete_task(self, project_id: str, task_id: str) -> None:
        self._client.delete(self._table, task_key(project_id, task_id))
        emit_audit_event(
            "task_deleted",
            entity_id=task_id,
            extra={"project_id": project_id},
            mirror_log_group=self._settings.audit_log_group,
        )
