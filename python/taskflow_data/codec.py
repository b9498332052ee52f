"""taskflow_data.codec — Entity <-> attribute-map mapping and key schema.

Stored attribute names are camelCase; Python attributes are snake_case.

The Projects table overloads one partition per project::

    PK = PROJ#<projectId>   SK = METADATA          project metadata
                            SK = USER#<memberId>   membership link
                            SK = TASK#<taskId>     task

``decode_project_record`` reads the sort-key prefix as the record's
discriminant and returns the matching variant.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Union

from taskflow_data.errors import ValidationError

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Key schema
# ---------------------------------------------------------------------------

PK = "PK"
SK = "SK"
PROJECT_PREFIX = "PROJ#"
MEMBER_PREFIX = "USER#"
TASK_PREFIX = "TASK#"
METADATA_SK = "METADATA"


class RecordKind(str, enum.Enum):
    METADATA = "METADATA"
    MEMBERSHIP = "MEMBERSHIP"
    TASK = "TASK"


def _require(value: Optional[str], what: str) -> str:
    text = str(value or "").strip()
    if not text:
        raise ValidationError(f"{what} is required")
    return text


def project_pk(project_id: str) -> str:
    return f"{PROJECT_PREFIX}{_require(project_id, 'project id')}"


def member_sk(member_id: str) -> str:
    return f"{MEMBER_PREFIX}{_require(member_id, 'member id')}"


def task_sk(task_id: str) -> str:
    return f"{TASK_PREFIX}{_require(task_id, 'task id')}"


def metadata_key(project_id: str) -> Dict[str, str]:
    return {PK: project_pk(project_id), SK: METADATA_SK}


def membership_key(project_id: str, member_id: str) -> Dict[str, str]:
    return {PK: project_pk(project_id), SK: member_sk(member_id)}


def task_key(project_id: str, task_id: str) -> Dict[str, str]:
    return {PK: project_pk(project_id), SK: task_sk(task_id)}


def _strip_prefix(value: str, prefix: str) -> str:
    return value[len(prefix):] if value.startswith(prefix) else value


def record_kind(sort_key: str) -> Optional[RecordKind]:
    if sort_key == METADATA_SK:
        return RecordKind.METADATA
    if sort_key.startswith(MEMBER_PREFIX):
        return RecordKind.MEMBERSHIP
    if sort_key.startswith(TASK_PREFIX):
        return RecordKind.TASK
    return None


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Principal:
    """Authenticated caller, as supplied by the transport layer."""

    id: str
    role: str = "member"

    @property
    def is_admin(self) -> bool:
        return self.role in ("admin", "superadmin")


@dataclass
class NotificationSettings:
    email_notifications: bool = True
    push_notifications: bool = True
    weekly_digest: bool = False

    def to_item(self) -> Dict[str, bool]:
        return {
            "emailNotifications": bool(self.email_notifications),
            "pushNotifications": bool(self.push_notifications),
            "weeklyDigest": bool(self.weekly_digest),
        }

    @classmethod
    def from_item(cls, raw: Optional[Dict[str, Any]]) -> "NotificationSettings":
        if not raw:
            return cls()
        return cls(
            email_notifications=bool(raw.get("emailNotifications", True)),
            push_notifications=bool(raw.get("pushNotifications", True)),
            weekly_digest=bool(raw.get("weeklyDigest", False)),
        )


@dataclass
class User:
    user_id: str
    email: str
    username: str
    password_hash: str
    first_name: str = ""
    last_name: str = ""
    role: str = "member"
    position: Optional[str] = None
    department: Optional[str] = None
    bio: Optional[str] = None
    phone: Optional[str] = None
    avatar: Optional[str] = None
    notification_settings: NotificationSettings = field(default_factory=NotificationSettings)
    created_at: str = ""
    updated_at: str = ""


@dataclass
class Project:
    project_id: str
    name: str
    created_by: str
    members: List[str] = field(default_factory=list)
    description: Optional[str] = None
    status: Optional[str] = None
    priority: Optional[str] = None
    due_date: Optional[str] = None
    created_at: str = ""
    updated_at: str = ""


@dataclass(frozen=True)
class ProjectRef:
    project_id: str


@dataclass(frozen=True)
class Membership:
    project_id: str
    member_id: str


@dataclass
class Task:
    task_id: str
    title: str
    project_id: str
    status: str = "pending"
    description: Optional[str] = None
    assigned_to: Optional[str] = None
    due_date: Optional[str] = None
    created_at: str = ""
    updated_at: str = ""


@dataclass
class Notification:
    notification_id: str
    user_id: str
    message: str
    type: str
    read: bool = False
    created_at: str = ""
    updated_at: str = ""


ProjectRecord = Union[Project, Membership, Task]

# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


def user_to_item(user: User) -> Dict[str, Any]:
    return {
        "userId": user.user_id,
        "email": user.email,
        "username": user.username,
        "password": user.password_hash,
        "firstName": user.first_name,
        "lastName": user.last_name,
        "role": user.role,
        "position": user.position,
        "department": user.department,
        "bio": user.bio,
        "phone": user.phone,
        "avatar": user.avatar,
        "notificationSettings": user.notification_settings.to_item(),
        "createdAt": user.created_at,
        "updatedAt": user.updated_at,
    }


def user_from_item(item: Dict[str, Any]) -> User:
    return User(
        user_id=item["userId"],
        email=item.get("email", ""),
        username=item.get("username", ""),
        password_hash=item.get("password", ""),
        first_name=item.get("firstName", ""),
        last_name=item.get("lastName", ""),
        role=item.get("role") or "member",
        position=item.get("position"),
        department=item.get("department"),
        bio=item.get("bio"),
        phone=item.get("phone"),
        avatar=item.get("avatar"),
        notification_settings=NotificationSettings.from_item(item.get("notificationSettings")),
        created_at=item.get("createdAt", ""),
        updated_at=item.get("updatedAt", ""),
    )


# ---------------------------------------------------------------------------
# Projects
# ---------------------------------------------------------------------------


def project_metadata_item(project: Project) -> Dict[str, Any]:
    item = metadata_key(project.project_id)
    item.update(
        {
            "name": project.name,
            "description": project.description,
            "createdBy": project.created_by,
            "createdAt": project.created_at,
            "updatedAt": project.updated_at,
            "status": project.status,
            "priority": project.priority,
            "dueDate": project.due_date,
        }
    )
    return item


def membership_item(project_id: str, member_id: str) -> Dict[str, Any]:
    return membership_key(project_id, member_id)


def project_from_item(item: Dict[str, Any], members: Iterable[str] = ()) -> Project:
    return Project(
        project_id=_strip_prefix(item[PK], PROJECT_PREFIX),
        name=item.get("name", ""),
        created_by=item.get("createdBy", ""),
        members=list(members),
        description=item.get("description"),
        status=item.get("status"),
        priority=item.get("priority"),
        due_date=item.get("dueDate"),
        created_at=item.get("createdAt", ""),
        updated_at=item.get("updatedAt", ""),
    )


def decode_project_record(item: Dict[str, Any]) -> Optional[ProjectRecord]:
    """Decode one row of a project partition by its sort-key discriminant."""
    kind = record_kind(str(item.get(SK, "")))
    if kind is RecordKind.METADATA:
        return project_from_item(item)
    if kind is RecordKind.MEMBERSHIP:
        return Membership(
            project_id=_strip_prefix(item[PK], PROJECT_PREFIX),
            member_id=_strip_prefix(item[SK], MEMBER_PREFIX),
        )
    if kind is RecordKind.TASK:
        return task_from_item(item)
    logger.warning("[WARNING] Skipping unrecognised record %s/%s", item.get(PK), item.get(SK))
    return None


def assemble_project(items: Iterable[Dict[str, Any]]) -> Optional[Project]:
    """Build a Project from a partition's rows; None without a metadata row."""
    metadata: Optional[Project] = None
    members: List[str] = []
    for item in items:
        record = decode_project_record(item)
        if isinstance(record, Membership):
            members.append(record.member_id)
        elif isinstance(record, Project):
            metadata = record
    if metadata is None:
        return None
    metadata.members = members
    return metadata


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------


def task_to_item(task: Task) -> Dict[str, Any]:
    item = task_key(task.project_id, task.task_id)
    item.update(
        {
            "taskId": task.task_id,
            "title": task.title,
            "description": task.description,
            "status": task.status,
            "project": task.project_id,
            "assignedTo": task.assigned_to,
            "dueDate": task.due_date,
            "createdAt": task.created_at,
            "updatedAt": task.updated_at,
        }
    )
    return item


def task_from_item(item: Dict[str, Any]) -> Task:
    project_id = item.get("project") or _strip_prefix(str(item.get(PK, "")), PROJECT_PREFIX)
    task_id = item.get("taskId") or _strip_prefix(str(item.get(SK, "")), TASK_PREFIX)
    return Task(
        task_id=task_id,
        title=item.get("title", ""),
        project_id=project_id,
        status=item.get("status") or "pending",
        description=item.get("description"),
        assigned_to=item.get("assignedTo"),
        due_date=item.get("dueDate"),
        created_at=item.get("createdAt", ""),
        updated_at=item.get("updatedAt", ""),
    )


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------


def notification_to_item(notification: Notification) -> Dict[str, Any]:
    return {
        "userId": notification.user_id,
        "createdAt": notification.created_at,
        "notificationId": notification.notification_id,
        "message": notification.message,
        "type": notification.type,
        "read": bool(notification.read),
        "updatedAt": notification.updated_at,
    }


def notification_from_item(item: Dict[str, Any]) -> Notification:
    return Notification(
        notification_id=item.get("notificationId", ""),
        user_id=item["userId"],
        message=item.get("message", ""),
        type=item.get("type", ""),
        read=bool(item.get("read", False)),
        created_at=item["createdAt"],
        updated_at=item.get("updatedAt", ""),
    )
