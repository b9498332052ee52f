"""taskflow_data.dashboard — Per-user project and task counts."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, Union

from taskflow_data.codec import Principal
from taskflow_data.projects import ProjectStore
from taskflow_data.tasks import TASK_STATUSES, TaskStore


@dataclass
class DashboardStats:
    total_projects: int = 0
    total_tasks: int = 0
    tasks_by_status: Dict[str, int] = field(default_factory=lambda: {s: 0 for s in TASK_STATUSES})


def get_dashboard_stats(
    projects: ProjectStore,
    tasks: TaskStore,
    user: Union[str, Principal],
) -> DashboardStats:
    """Count the user's projects and every task inside them, by status.

    One index query plus one partition query per project; statuses outside
    the known set are counted under their own name.
    """
    user_id = user.id if isinstance(user, Principal) else user
    refs = projects.get_projects_by_user_id(user_id)
    stats = DashboardStats(total_projects=len(refs))

    counts: Counter = Counter()
    for ref in refs:
        for task in tasks.get_tasks_by_project(ref.project_id):
            counts[task.status] += 1

    stats.total_tasks = sum(counts.values())
    stats.tasks_by_status.update(counts)
    return stats
