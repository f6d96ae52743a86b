"""Project repository: SQL access for the ``projects`` table."""

import sqlite3
from typing import List, Optional

from taskhub.models.project import Project
from taskhub.repositories.base import BaseRepository
from taskhub.utils.logging import get_logger
from taskhub.utils.temporal import to_db

logger = get_logger(__name__)

class ProjectRepository(BaseRepository):

    def get(self, project_id: int) -> Optional[Project]:
        row = self._fetch_one("SELECT * FROM projects WHERE id = ?", (project_id,))
        return Project.from_row(row) if row else None

    def exists(self, project_id: int) -> bool:
        return self._fetch_one("SELECT 1 FROM projects WHERE id = ?", (project_id,)) is not None

    def list_all(self) -> List[Project]:
        rows = self._fetch_all("SELECT * FROM projects ORDER BY created_at DESC, id DESC")
        return [Project.from_row(row) for row in rows]

    def insert(self, project: Project) -> int:
        try:
            cursor = self._execute("""
                INSERT INTO projects (name, description, is_public, created_at, version)
                VALUES (?, ?, ?, ?, 1)
            """, (
                project.name,
                project.description,
                int(project.is_public),
                to_db(project.created_at)
            ))
        except sqlite3.Error as e:
            logger.error(f"Error inserting project '{project.name}': {str(e)}")
            raise

        project.id = cursor.lastrowid
        project.version = 1
        return project.id

    def update(self, project: Project, expected_version: int) -> bool:
        cursor = self._execute("""
            UPDATE projects
            SET name = ?, description = ?, is_public = ?, version = version + 1
            WHERE id = ? AND version = ?
        """, (project.name, project.description, int(project.is_public), project.id, expected_version))
        return cursor.rowcount == 1

    def delete(self, project_id: int) -> bool:
        cursor = self._execute("DELETE FROM projects WHERE id = ?", (project_id,))
        return cursor.rowcount == 1
