"""User repository: SQL access for ``users`` and ``user_roles``."""

import sqlite3
from typing import List, Optional, Set

from taskhub.models.user import ApplicationUser, UserRole
from taskhub.repositories.base import BaseRepository
from taskhub.utils.logging import get_logger
from taskhub.utils.temporal import to_db

logger = get_logger(__name__)

class UserRepository(BaseRepository):

    def get(self, user_id: str) -> Optional[ApplicationUser]:
        row = self._fetch_one("SELECT * FROM users WHERE id = ?", (user_id,))
        return ApplicationUser.from_row(row) if row else None

    def get_by_username(self, username: str) -> Optional[ApplicationUser]:
        row = self._fetch_one("SELECT * FROM users WHERE username = ?", (username,))
        return ApplicationUser.from_row(row) if row else None

    def exists(self, user_id: str) -> bool:
        return self._fetch_one("SELECT 1 FROM users WHERE id = ?", (user_id,)) is not None

    def identity_taken(self, username: str, email: str) -> bool:
        row = self._fetch_one("SELECT 1 FROM users WHERE username = ? OR email = ?", (username, email))
        return row is not None

    def list_all(self) -> List[ApplicationUser]:
        rows = self._fetch_all("SELECT * FROM users ORDER BY last_name, first_name, username")
        return [ApplicationUser.from_row(row) for row in rows]

    def all_ids(self) -> List[str]:
        return [row['id'] for row in self._fetch_all("SELECT id FROM users ORDER BY id")]

    def insert(self, user: ApplicationUser) -> str:
        try:
            self._execute("""
                INSERT INTO users (id, username, email, first_name, last_name, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
            """, (user.id, user.username, user.email, user.first_name, user.last_name, to_db(user.created_at)))
        except sqlite3.Error as e:
            logger.error(f"Error inserting user '{user.username}': {str(e)}")
            raise
        return user.id

    def add_role(self, user_id: str, role: UserRole) -> None:
        self._execute(
            "INSERT OR IGNORE INTO user_roles (user_id, role) VALUES (?, ?)", (user_id, role.value)
        )

    def has_role(self, user_id: str, role: UserRole) -> bool:
        row = self._fetch_one(
            "SELECT 1 FROM user_roles WHERE user_id = ? AND role = ?", (user_id, role.value)
        )
        return row is not None

    def roles(self, user_id: str) -> Set[UserRole]:
        rows = self._fetch_all("SELECT role FROM user_roles WHERE user_id = ?", (user_id,))
        return {UserRole(row['role']) for row in rows}
