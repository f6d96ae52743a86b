"""Dashboard service: recent activity feed and per-user task statistics."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from taskhub.models.base import NotFoundError
from taskhub.models.task import TaskItem
from taskhub.repositories.assignment_repository import AssignmentRepository, CompletionRepository
from taskhub.repositories.task_repository import TaskRepository
from taskhub.repositories.user_repository import UserRepository
from taskhub.services.base import BaseService
from taskhub.utils.logging import get_logger
from taskhub.utils.temporal import days_ago, from_db

logger = get_logger(__name__)

ACTIVITY_LIMIT = 20
OUTSTANDING_LIMIT = 10

@dataclass
class ActivityEntry:
    kind: str  # 'created' or 'completed'
    task_id: int
    title: str
    timestamp: datetime
    username: Optional[str] = None
    project_id: Optional[int] = None

@dataclass
class Dashboard:
    user_id: str
    assigned_count: int = 0
    completed_count: int = 0
    completion_percentage: float = 0.0
    recent_activity: List[ActivityEntry] = field(default_factory=list)
    outstanding_tasks: List[TaskItem] = field(default_factory=list)

class DashboardService(BaseService):

    def __init__(self, db_manager, config: Dict[str, Any] = None):
        super().__init__(db_manager, config)
        self.activity_window_days = int(self.config.get('activity_window_days', 30))

    def get_dashboard(self, user_id: str) -> Dashboard:
        """
        Summary for one user's landing page.

        Recent activity covers tasks created or completed within the activity
        window, newest first. Outstanding tasks are the user's assigned and not
        yet completed tasks, soonest due first.

        Raises:
            NotFoundError: If the user does not exist
        """
        since = days_ago(self.activity_window_days)
        with self._reading() as conn:
            if not UserRepository(conn).exists(user_id):
                raise NotFoundError('User', user_id)

            task_repo = TaskRepository(conn)
            completion_repo = CompletionRepository(conn)

            activity = [
                self._entry('created', row) for row in task_repo.list_recently_created(since, ACTIVITY_LIMIT)
            ] + [
                self._entry('completed', row) for row in completion_repo.list_recent(since, ACTIVITY_LIMIT)
            ]
            activity.sort(key=lambda entry: (entry.timestamp, entry.task_id), reverse=True)

            assigned = AssignmentRepository(conn).count_for_user(user_id)
            completed = completion_repo.count_for_user(user_id)
            outstanding = task_repo.list_outstanding_for_user(user_id, OUTSTANDING_LIMIT)

        percentage = min(100.0, round(completed / assigned * 100, 1)) if assigned else 0.0
        logger.debug(f"Dashboard for {user_id}: {assigned} assigned, {completed} completed")

        return Dashboard(
            user_id=user_id,
            assigned_count=assigned,
            completed_count=completed,
            completion_percentage=percentage,
            recent_activity=activity[:ACTIVITY_LIMIT],
            outstanding_tasks=outstanding
        )

    @staticmethod
    def _entry(kind: str, row: Dict[str, Any]) -> ActivityEntry:
        return ActivityEntry(
            kind=kind,
            task_id=row['task_id'],
            title=row['title'],
            timestamp=from_db(row['timestamp']),
            username=row['username'],
            project_id=row['project_id']
        )
