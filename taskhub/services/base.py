"""
Common base for the services.

Every compound mutation runs inside ``_atomic``: one ``BEGIN IMMEDIATE``
transaction that commits on success. On failure the transaction is rolled back
and any other failure comes out as ``TransactionFailureError``. Domain errors
(``NotFoundError``, ``InvalidOperationError`` and friends) pass through
unchanged.
"""

import sqlite3
from contextlib import contextmanager
from typing import Any, Dict, Iterator

from taskhub.models.base import (
    ConcurrencyConflictError,
    NotFoundError,
    TaskHubError,
    TransactionFailureError,
)
from taskhub.utils.database import DatabaseManager
from taskhub.utils.logging import get_logger

logger = get_logger(__name__)

class BaseService:
    """Holds the database manager and configuration shared by every service."""

    def __init__(self, db_manager: DatabaseManager, config: Dict[str, Any] = None):
        self.db = db_manager
        self.config = config or {}

    @contextmanager
    def _atomic(self, name: str) -> Iterator[sqlite3.Connection]:
        try:
            with self.db.transaction(name) as conn:
                yield conn
        except TaskHubError:
            raise
        except sqlite3.Error as e:
            raise TransactionFailureError(f"{name} failed and was rolled back: {str(e)}") from e
        except Exception as e:
            # Already rolled back and logged with its traceback by the transaction
            raise TransactionFailureError(
                f"{name} failed and was rolled back: {type(e).__name__}: {str(e)}"
            ) from e

    @contextmanager
    def _reading(self) -> Iterator[sqlite3.Connection]:
        with self.db.connection() as conn:
            yield conn

    def _stale_write(self, still_exists: bool, entity: str, entity_id: Any):
        """
        Explain an optimistic update that matched no row.

        Raises:
            NotFoundError: If the row has been deleted meanwhile
            ConcurrencyConflictError: If it still exists with a newer version
        """
        if not still_exists:
            logger.warning(f"{entity} {entity_id} disappeared before it could be saved")
            raise NotFoundError(entity, entity_id)
        logger.warning(f"{entity} {entity_id} was modified concurrently")
        raise ConcurrencyConflictError(entity, entity_id)
