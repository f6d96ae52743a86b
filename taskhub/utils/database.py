"""
Database utility module for SQLite operations behind the task management services.
This module provides connection management, schema initialization, transaction handling,
and lightweight performance tracking for the repositories.

The utility is designed to be:
- Reliable: Retries transient connection failures and wraps mutations in transactions
- Safe: Enforces foreign keys on every connection and rolls back on any failure
- Configurable: Adjustable timeouts and retry parameters
- Observable: Detailed logging for schema setup, transactions and query timing
"""

import logging
import sqlite3
import time
from contextlib import contextmanager
from pathlib import Path
from typing import List, Dict, Optional, Any, Tuple, Iterator

from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from taskhub.utils.logging import get_logger, log_database_operation

logger = get_logger(__name__)

class DatabaseManager:
    """
    Database manager for SQLite operations.

    This class handles:
    1. Connection lifecycle management with retry logic
    2. Schema initialization
    3. Explicit transactions (``BEGIN IMMEDIATE`` / ``COMMIT`` / ``ROLLBACK``)
    4. Read helpers returning plain dictionaries
    5. Table statistics and operation timing

    Connections are opened in autocommit mode so that a transaction only
    exists where ``transaction()`` opens one.
    """

    def __init__(self, database_path: str, config: Dict[str, Any] = None):
        """
        Initialize the database manager.

        Args:
            database_path: Path to SQLite database file
            config: Configuration dictionary with database settings
        """
        self.database_path = str(database_path)
        self.config = config or {}

        self.connection_timeout = int(self.config.get('connection_timeout', 30))
        self.retry_attempts = int(self.config.get('retry_attempts', 3))
        self.retry_delay = float(self.config.get('retry_delay', 1.0))

        # Performance tracking
        self.operation_times = {}
        self.total_operations = 0

        db_dir = Path(self.database_path).parent
        if db_dir and not db_dir.exists():
            db_dir.mkdir(parents=True, exist_ok=True)
            logger.info(f"Created database directory: {db_dir}")

    def _open_connection(self, timeout: int) -> sqlite3.Connection:
        conn = sqlite3.connect(
            self.database_path,
            timeout=timeout,
            isolation_level=None,
            check_same_thread=False
        )
        conn.row_factory = sqlite3.Row
        self._configure_connection(conn)
        return conn

    def _get_connection(self, timeout: int = None) -> sqlite3.Connection:
        """
        Get a database connection with retry logic.

        Args:
            timeout: Connection timeout in seconds

        Returns:
            SQLite database connection

        Raises:
            sqlite3.OperationalError: If connection fails after retries
        """
        timeout = timeout or self.connection_timeout

        retryer = Retrying(
            stop=stop_after_attempt(max(1, self.retry_attempts)),
            wait=wait_exponential(multiplier=self.retry_delay, max=10),
            retry=retry_if_exception_type(sqlite3.OperationalError),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True
        )

        try:
            conn = retryer(self._open_connection, timeout)
        except sqlite3.Error:
            logger.error(f"Failed to connect to database after {self.retry_attempts} attempts")
            raise

        logger.debug(f"Database connection established: {self.database_path}")
        return conn

    def _configure_connection(self, conn: sqlite3.Connection):
        """
        Configure a fresh connection.

        Args:
            conn: SQLite database connection
        """
        cursor = conn.cursor()

        try:
            cursor.execute("PRAGMA journal_mode = WAL;")
            cursor.execute("PRAGMA synchronous = NORMAL;")
        except sqlite3.Error as e:
            logger.warning(f"Error configuring database connection: {str(e)}")

        # Referential integrity is not optional
        cursor.execute("PRAGMA foreign_keys = ON;")

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        """
        Open a connection for read-only work and close it afterwards.

        Yields:
            SQLite database connection in autocommit mode
        """
        conn = self._get_connection()
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def transaction(self, name: str = 'transaction') -> Iterator[sqlite3.Connection]:
        """
        Run a block of statements as one atomic unit.

        Every write made through the yielded connection is committed when the
        block exits normally and rolled back when it raises. The original
        exception is re-raised after the rollback.

        Args:
            name: Label used in log messages

        Yields:
            SQLite database connection with an open write transaction
        """
        conn = self._get_connection()
        start_time = time.time()
        try:
            conn.execute("BEGIN IMMEDIATE")
            logger.debug(f"Began {name}")
            yield conn
            conn.execute("COMMIT")
            elapsed = time.time() - start_time
            self._track_operation(name, elapsed)
            logger.debug(f"Committed {name} in {elapsed:.3f}s")
        except Exception:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            logger.error(f"Rolled back {name}", exc_info=True)
            raise
        finally:
            conn.close()

    def initialize_database(self, schema_file: str = 'schema.sql'):
        """
        Initialize database with schema from SQL file.

        Args:
            schema_file: Path to SQL schema file

        Raises:
            FileNotFoundError: If schema file not found
            sqlite3.Error: If schema execution fails
        """
        logger.info(f"Initializing database schema from {schema_file}")

        schema_path = Path(schema_file)
        if not schema_path.exists():
            possible_paths = [
                Path.cwd() / schema_file,
                Path.cwd().parent / schema_file,
                Path(__file__).parent.parent.parent / schema_file
            ]

            for path in possible_paths:
                if path.exists():
                    schema_path = path
                    break

            if not schema_path.exists():
                logger.error(f"Schema file not found at {schema_file} or common locations")
                raise FileNotFoundError(f"Schema file not found at {schema_file} or common locations")

        with open(schema_path, 'r', encoding='utf-8') as f:
            schema_sql = f.read()

        statements = self._split_statements(schema_sql)

        try:
            with self.transaction('schema initialization') as conn:
                for stmt in statements:
                    start_time = time.time()
                    conn.execute(stmt)
                    log_database_operation('DDL', stmt, duration=time.time() - start_time)
        except sqlite3.Error as e:
            logger.error(f"Database schema initialization error: {str(e)}")
            raise

        logger.info(f"Successfully initialized database schema with {len(statements)} statements")

    @staticmethod
    def _split_statements(schema_sql: str) -> List[str]:
        """Split a SQL script on semicolons that sit outside string literals."""
        statements = []
        current_stmt = []
        in_string = False

        for line in schema_sql.splitlines():
            if not in_string and line.strip().startswith('--'):
                continue
            for char in line:
                if char == "'":
                    in_string = not in_string
                if char == ';' and not in_string:
                    stmt = ''.join(current_stmt).strip()
                    if stmt:
                        statements.append(stmt)
                    current_stmt = []
                else:
                    current_stmt.append(char)
            current_stmt.append('\n')

        tail = ''.join(current_stmt).strip()
        if tail:
            statements.append(tail)
        return statements

    def fetch_all(self, query: str, params: Tuple = None) -> List[Dict[str, Any]]:
        """
        Fetch all rows from a query as dictionaries.

        Args:
            query: SQL query
            params: Query parameters

        Returns:
            List of dictionaries with column names as keys

        Raises:
            sqlite3.Error: If query execution fails
        """
        with self.connection() as conn:
            start_time = time.time()
            try:
                rows = conn.execute(query, params or ()).fetchall()
            except sqlite3.Error as e:
                logger.error(f"Query execution error: {str(e)}")
                raise

            results = [dict(row) for row in rows]
            elapsed = time.time() - start_time
            self._track_operation('fetch_all', elapsed, len(results))
            log_database_operation('SELECT', query, duration=elapsed)
            return results

    def fetch_one(self, query: str, params: Tuple = None) -> Optional[Dict[str, Any]]:
        """
        Fetch a single row from a query as a dictionary.

        Returns:
            Dictionary with column names as keys, or None if no row found
        """
        with self.connection() as conn:
            start_time = time.time()
            try:
                row = conn.execute(query, params or ()).fetchone()
            except sqlite3.Error as e:
                logger.error(f"Query execution error: {str(e)}")
                raise

            elapsed = time.time() - start_time
            self._track_operation('fetch_one', elapsed)
            log_database_operation('SELECT', query, duration=elapsed)
            return dict(row) if row else None

    def get_table_stats(self) -> Dict[str, Dict[str, Any]]:
        """
        Get statistics for all tables in the database.

        Returns:
            Dictionary with table names as keys and stats as values
        """
        stats = {}
        with self.connection() as conn:
            tables = [
                row['name'] for row in conn.execute("""
                    SELECT name FROM sqlite_master
                    WHERE type='table' AND name NOT LIKE 'sqlite_%'
                    ORDER BY name
                """)
            ]

            for table in tables:
                row_count = conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
                columns = conn.execute(f"PRAGMA table_info({table})").fetchall()
                index_count = conn.execute(
                    "SELECT COUNT(*) FROM sqlite_master WHERE type='index' AND tbl_name=?",
                    (table,)
                ).fetchone()[0]

                stats[table] = {
                    'row_count': row_count,
                    'column_count': len(columns),
                    'index_count': index_count,
                    'columns': [col['name'] for col in columns]
                }

        logger.info(f"Retrieved stats for {len(stats)} tables")
        return stats

    def _track_operation(self, operation_name: str, duration: float, count: int = 1):
        """
        Track operation performance metrics.

        Args:
            operation_name: Name of the operation
            duration: Duration in seconds
            count: Number of items processed
        """
        if operation_name not in self.operation_times:
            self.operation_times[operation_name] = {'total_time': 0.0, 'count': 0, 'total_items': 0}

        stats = self.operation_times[operation_name]
        stats['total_time'] += duration
        stats['count'] += 1
        stats['total_items'] += count

        self.total_operations += 1

    def get_performance_stats(self) -> Dict[str, Any]:
        """
        Get database performance statistics.

        Returns:
            Dictionary with performance metrics
        """
        stats = {
            'total_operations': self.total_operations,
            'operations': {}
        }

        for op_name, op_stats in self.operation_times.items():
            avg_time = op_stats['total_time'] / op_stats['count'] if op_stats['count'] > 0 else 0
            stats['operations'][op_name] = {
                'count': op_stats['count'],
                'total_time': op_stats['total_time'],
                'average_time': avg_time,
                'total_items': op_stats['total_items']
            }

        return stats
