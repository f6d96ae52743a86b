"""
Shared plumbing for the per-entity repositories.

A repository is bound to one open connection and never commits: the caller
owns the transaction (see ``DatabaseManager.transaction``). Statement timing is
reported through ``log_database_operation``.
"""

import sqlite3
import time
from typing import Any, Iterable, List, Optional, Sequence

from taskhub.utils.logging import get_logger, log_database_operation

logger = get_logger(__name__)

def placeholders(values: Sequence[Any]) -> str:
    """``?, ?, ?`` for an IN clause over ``values``."""
    return ', '.join('?' for _ in values)

class BaseRepository:
    """Connection-bound SQL accessor."""

    def __init__(self, db_conn: sqlite3.Connection):
        self.db_conn = db_conn

    def _execute(self, query: str, params: Iterable[Any] = ()) -> sqlite3.Cursor:
        start_time = time.time()
        cursor = self.db_conn.execute(query, tuple(params))
        operation = query.lstrip().split(None, 1)[0].upper()
        log_database_operation(operation, query, duration=time.time() - start_time)
        return cursor

    def _fetch_all(self, query: str, params: Iterable[Any] = ()) -> List[sqlite3.Row]:
        return self._execute(query, params).fetchall()

    def _fetch_one(self, query: str, params: Iterable[Any] = ()) -> Optional[sqlite3.Row]:
        return self._execute(query, params).fetchone()

    def _scalar(self, query: str, params: Iterable[Any] = ()) -> Any:
        row = self._fetch_one(query, params)
        return row[0] if row is not None else None
