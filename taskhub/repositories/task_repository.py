"""
Task repository: SQL access for the ``tasks`` table.

Subtrees are loaded with a recursive CTE. ``UNION`` (not ``UNION ALL``)
discards already-visited ids, so the walk is unbounded in depth and still
terminates on a corrupt parent cycle.
"""

import sqlite3
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence

from taskhub.models.task import TaskItem, TaskStatus
from taskhub.repositories.base import BaseRepository, placeholders
from taskhub.utils.logging import get_logger
from taskhub.utils.temporal import to_db

logger = get_logger(__name__)

TASK_COLUMNS = """
    t.id, t.title, t.description, t.created_at, t.due_date, t.status, t.priority,
    t.project_id, t.parent_task_id, t.created_by_id, t.version
"""

class TaskRepository(BaseRepository):
    """Reads and writes task rows on one connection."""

    def get(self, task_id: int) -> Optional[TaskItem]:
        row = self._fetch_one(f"SELECT {TASK_COLUMNS} FROM tasks t WHERE t.id = ?", (task_id,))
        return TaskItem.from_row(row) if row else None

    def exists(self, task_id: int) -> bool:
        return self._fetch_one("SELECT 1 FROM tasks WHERE id = ?", (task_id,)) is not None

    def list_by_project(self, project_id: Optional[int]) -> List[TaskItem]:
        """All tasks of a project, or all project-less tasks when ``project_id`` is None."""
        if project_id is None:
            rows = self._fetch_all(f"SELECT {TASK_COLUMNS} FROM tasks t WHERE t.project_id IS NULL")
        else:
            rows = self._fetch_all(f"SELECT {TASK_COLUMNS} FROM tasks t WHERE t.project_id = ?", (project_id,))
        return [TaskItem.from_row(row) for row in rows]

    def list_subtree(self, root_task_id: int) -> List[TaskItem]:
        """The task ``root_task_id`` and every transitive descendant."""
        rows = self._fetch_all(f"""
            WITH RECURSIVE subtree(id) AS (
                SELECT id FROM tasks WHERE id = ?
                UNION
                SELECT c.id FROM tasks c JOIN subtree s ON c.parent_task_id = s.id
            )
            SELECT {TASK_COLUMNS} FROM tasks t JOIN subtree s ON t.id = s.id
        """, (root_task_id,))
        return [TaskItem.from_row(row) for row in rows]

    def list_with_descendants_for_projects(self, project_ids: Sequence[int]) -> List[TaskItem]:
        """
        Every task of the given projects plus all of their descendants.

        Descendants are included even when they were moved into another project,
        since the parent key would otherwise block deleting their ancestors.
        """
        if not project_ids:
            return []
        rows = self._fetch_all(f"""
            WITH RECURSIVE doomed(id) AS (
                SELECT id FROM tasks WHERE project_id IN ({placeholders(project_ids)})
                UNION
                SELECT c.id FROM tasks c JOIN doomed d ON c.parent_task_id = d.id
            )
            SELECT {TASK_COLUMNS} FROM tasks t JOIN doomed d ON t.id = d.id
        """, project_ids)
        return [TaskItem.from_row(row) for row in rows]

    def has_children(self, task_id: int) -> bool:
        return self._fetch_one("SELECT 1 FROM tasks WHERE parent_task_id = ? LIMIT 1", (task_id,)) is not None

    def insert(self, task: TaskItem) -> int:
        """
        Insert a task and record its new id on the object.

        Returns:
            The new task id
        """
        try:
            cursor = self._execute("""
                INSERT INTO tasks (
                    title, description, created_at, due_date, status, priority,
                    project_id, parent_task_id, created_by_id, version
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, 1)
            """, (
                task.title,
                task.description,
                to_db(task.created_at),
                to_db(task.due_date),
                task.status.value,
                task.priority.value,
                task.project_id,
                task.parent_task_id,
                task.created_by_id
            ))
        except sqlite3.Error as e:
            logger.error(f"Error inserting task '{task.title}': {str(e)}")
            raise

        task.id = cursor.lastrowid
        task.version = 1
        return task.id

    def update(self, task: TaskItem, expected_version: int) -> bool:
        """
        Write the editable fields of ``task`` if the stored version still matches.

        Returns:
            False when no row had ``expected_version``
        """
        cursor = self._execute("""
            UPDATE tasks
            SET title = ?, description = ?, due_date = ?, status = ?, priority = ?,
                project_id = ?, version = version + 1
            WHERE id = ? AND version = ?
        """, (
            task.title,
            task.description,
            to_db(task.due_date),
            task.status.value,
            task.priority.value,
            task.project_id,
            task.id,
            expected_version
        ))
        return cursor.rowcount == 1

    def update_text(self, task_id: int, title: str, description: Optional[str]) -> bool:
        cursor = self._execute(
            "UPDATE tasks SET title = ?, description = ?, version = version + 1 WHERE id = ?",
            (title, description, task_id)
        )
        return cursor.rowcount == 1

    def update_status(self, task_id: int, status: TaskStatus, expected_version: int) -> bool:
        cursor = self._execute(
            "UPDATE tasks SET status = ?, version = version + 1 WHERE id = ? AND version = ?",
            (status.value, task_id, expected_version)
        )
        return cursor.rowcount == 1

    def delete(self, task_id: int) -> bool:
        cursor = self._execute("DELETE FROM tasks WHERE id = ?", (task_id,))
        return cursor.rowcount == 1

    def list_recently_created(self, since: datetime, limit: int) -> List[Dict]:
        rows = self._fetch_all("""
            SELECT t.id AS task_id, t.title, t.created_at AS timestamp, t.project_id,
                   u.username
            FROM tasks t LEFT JOIN users u ON u.id = t.created_by_id
            WHERE t.created_at >= ?
            ORDER BY t.created_at DESC, t.id DESC
            LIMIT ?
        """, (to_db(since), limit))
        return [dict(row) for row in rows]

    def list_outstanding_for_user(self, user_id: str, limit: int) -> List[TaskItem]:
        """Assigned tasks the user has not completed, soonest due first and undated last."""
        rows = self._fetch_all(f"""
            SELECT {TASK_COLUMNS} FROM tasks t
            JOIN task_assignments a ON a.task_id = t.id AND a.user_id = ?
            WHERE t.status NOT IN ('Completed', 'Cancelled')
              AND NOT EXISTS (
                  SELECT 1 FROM task_completions c WHERE c.task_id = t.id AND c.user_id = ?
              )
            ORDER BY t.due_date IS NULL, t.due_date, t.id
            LIMIT ?
        """, (user_id, user_id, limit))
        return [TaskItem.from_row(row) for row in rows]

    def attach_people(self, tasks: Iterable[TaskItem]) -> None:
        """Fill ``assigned_user_ids`` and ``completed_user_ids`` for loaded tasks."""
        by_id = {task.id: task for task in tasks}
        if not by_id:
            return
        ids = list(by_id)
        for task in by_id.values():
            task.assigned_user_ids = set()
            task.completed_user_ids = set()

        for row in self._fetch_all(
            f"SELECT task_id, user_id FROM task_assignments WHERE task_id IN ({placeholders(ids)})", ids
        ):
            by_id[row['task_id']].assigned_user_ids.add(row['user_id'])

        for row in self._fetch_all(
            f"SELECT task_id, user_id FROM task_completions WHERE task_id IN ({placeholders(ids)})", ids
        ):
            by_id[row['task_id']].completed_user_ids.add(row['user_id'])
