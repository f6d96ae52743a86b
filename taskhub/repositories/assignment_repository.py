"""
Assignment and completion repositories.

Both tables are keyed by ``(task_id, user_id)``. They are always cleared
explicitly before their task is deleted.
"""

import sqlite3
from datetime import datetime
from typing import Dict, List, Sequence, Set

from taskhub.repositories.base import BaseRepository, placeholders
from taskhub.utils.logging import get_logger
from taskhub.utils.temporal import to_db, utc_now

logger = get_logger(__name__)

class AssignmentRepository(BaseRepository):
    """Rows of ``task_assignments``."""

    def user_ids_for_task(self, task_id: int) -> Set[str]:
        rows = self._fetch_all("SELECT user_id FROM task_assignments WHERE task_id = ?", (task_id,))
        return {row['user_id'] for row in rows}

    def is_assigned(self, task_id: int, user_id: str) -> bool:
        row = self._fetch_one(
            "SELECT 1 FROM task_assignments WHERE task_id = ? AND user_id = ?", (task_id, user_id)
        )
        return row is not None

    def count_for_user(self, user_id: str) -> int:
        return self._scalar("SELECT COUNT(*) FROM task_assignments WHERE user_id = ?", (user_id,))

    def assign(self, task_id: int, user_id: str) -> None:
        try:
            self._execute("INSERT INTO task_assignments (task_id, user_id) VALUES (?, ?)", (task_id, user_id))
        except sqlite3.Error as e:
            logger.error(f"Error assigning user {user_id} to task {task_id}: {str(e)}")
            raise

    def unassign(self, task_id: int, user_id: str) -> None:
        self._execute("DELETE FROM task_assignments WHERE task_id = ? AND user_id = ?", (task_id, user_id))

    def delete_for_tasks(self, task_ids: Sequence[int]) -> int:
        if not task_ids:
            return 0
        cursor = self._execute(
            f"DELETE FROM task_assignments WHERE task_id IN ({placeholders(task_ids)})", task_ids
        )
        return cursor.rowcount

class CompletionRepository(BaseRepository):
    """Rows of ``task_completions``: one per user who finished a task."""

    def has_completed(self, task_id: int, user_id: str) -> bool:
        row = self._fetch_one(
            "SELECT 1 FROM task_completions WHERE task_id = ? AND user_id = ?", (task_id, user_id)
        )
        return row is not None

    def count_for_user(self, user_id: str) -> int:
        return self._scalar("SELECT COUNT(*) FROM task_completions WHERE user_id = ?", (user_id,))

    def add(self, task_id: int, user_id: str, completion_date: datetime = None) -> None:
        try:
            self._execute(
                "INSERT INTO task_completions (task_id, user_id, completion_date) VALUES (?, ?, ?)",
                (task_id, user_id, to_db(completion_date or utc_now()))
            )
        except sqlite3.Error as e:
            logger.error(f"Error recording completion of task {task_id} by {user_id}: {str(e)}")
            raise

    def delete_for_tasks(self, task_ids: Sequence[int]) -> int:
        if not task_ids:
            return 0
        cursor = self._execute(
            f"DELETE FROM task_completions WHERE task_id IN ({placeholders(task_ids)})", task_ids
        )
        return cursor.rowcount

    def list_recent(self, since: datetime, limit: int) -> List[Dict]:
        rows = self._fetch_all("""
            SELECT c.task_id, t.title, c.completion_date AS timestamp, t.project_id,
                   u.username
            FROM task_completions c
            JOIN tasks t ON t.id = c.task_id
            LEFT JOIN users u ON u.id = c.user_id
            WHERE c.completion_date >= ?
            ORDER BY c.completion_date DESC, c.id DESC
            LIMIT ?
        """, (to_db(since), limit))
        return [dict(row) for row in rows]
