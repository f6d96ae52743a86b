"""
Validation utility module for checking the integrity of a live task database.
This module inspects referential and structural integrity of the stored task and
template trees, plus the consistency of assignment and completion records.

The utility is designed to be:
- Comprehensive: Covers storage-level keys and the tree invariants the services maintain
- Observable: Every check is logged through ``log_validation_result``
- Reportable: Results render into a human-readable report
"""

import sqlite3
from datetime import datetime
from typing import Any, Dict, List, Optional, Set

from taskhub.utils.logging import get_logger, log_validation_result

logger = get_logger(__name__)

TABLES = (
    'users', 'user_roles', 'projects', 'project_templates', 'template_sections',
    'tasks', 'task_assignments', 'task_completions'
)

class DataValidator:
    """
    Integrity checker for the task database.

    This class handles:
    1. Row counts per table
    2. SQLite foreign key checks
    3. Dangling parent links for tasks and template sections
    4. Parent cycles for tasks and template sections
    5. Completions recorded by users who are not assigned
    6. Tasks whose assignees have all completed but that are not Completed

    Checks 5 and 6 report warnings only: admins may complete tasks they are
    not assigned to, and the automatic completion is never re-evaluated when
    assignees change.
    """

    def __init__(self, config: Dict[str, Any] = None):
        """
        Initialize the data validator.

        Args:
            config: Configuration dictionary with validation settings
        """
        self.config = config or {}
        self.sample_size = int(self.config.get('validation_sample_size', 10))

    def validate_database_integrity(self, conn: sqlite3.Connection) -> Dict[str, Any]:
        """
        Run every integrity check.

        Args:
            conn: Database connection

        Returns:
            Dictionary with one result per check plus ``overall_status``
        """
        logger.info("Starting database integrity validation")

        results = {
            'table_counts': self._count_rows(conn),
            'foreign_keys': self._check_foreign_keys(conn),
            'task_parents': self._check_dangling(conn, 'tasks', 'parent_task_id'),
            'section_parents': self._check_dangling(conn, 'template_sections', 'parent_section_id'),
            'task_cycles': self._check_cycles(conn, 'tasks', 'parent_task_id'),
            'section_cycles': self._check_cycles(conn, 'template_sections', 'parent_section_id'),
            'unassigned_completions': self._check_unassigned_completions(conn),
            'completion_coverage': self._check_completion_coverage(conn),
            'overall_status': 'success'
        }

        failed_categories = [
            category for category, result in results.items()
            if category != 'overall_status' and result.get('status') == 'failure'
        ]

        if failed_categories:
            results['overall_status'] = 'failure'
            results['failed_categories'] = failed_categories
            logger.error(f"Database validation failed for categories: {failed_categories}")
        else:
            logger.info("Database validation passed all checks")

        return results

    def _result(self, check: str, offending: List[Any], message_ok: str, message_bad: str,
                bad_status: str = 'failure') -> Dict[str, Any]:
        if offending:
            result = {
                'status': bad_status,
                'message': message_bad.format(count=len(offending)),
                'details': offending[:self.sample_size]
            }
            log_validation_result(check, 'database', False, [result['message']])
        else:
            result = {'status': 'success', 'message': message_ok}
            log_validation_result(check, 'database', True)
        return result

    def _count_rows(self, conn: sqlite3.Connection) -> Dict[str, Any]:
        counts = {}
        for table in TABLES:
            counts[table] = conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
        return {
            'status': 'success',
            'message': f"{sum(counts.values())} rows across {len(counts)} tables",
            'details': counts
        }

    def _check_foreign_keys(self, conn: sqlite3.Connection) -> Dict[str, Any]:
        violations = [tuple(row) for row in conn.execute("PRAGMA foreign_key_check;").fetchall()]
        return self._result(
            'foreign_keys', violations,
            'No foreign key violations found',
            '{count} foreign key violations found'
        )

    def _check_dangling(self, conn: sqlite3.Connection, table: str, parent_column: str) -> Dict[str, Any]:
        rows = conn.execute(f"""
            SELECT c.id, c.{parent_column} FROM {table} c
            LEFT JOIN {table} p ON p.id = c.{parent_column}
            WHERE c.{parent_column} IS NOT NULL AND p.id IS NULL
        """).fetchall()
        dangling = [{'id': row[0], 'parent_id': row[1]} for row in rows]
        return self._result(
            f'{table}.{parent_column}', dangling,
            f'Every {table} parent reference resolves',
            '{count} rows reference a missing parent'
        )

    def _check_cycles(self, conn: sqlite3.Connection, table: str, parent_column: str) -> Dict[str, Any]:
        parent_map = {row[0]: row[1] for row in conn.execute(f"SELECT id, {parent_column} FROM {table}")}
        in_cycle = sorted(self.find_cycle_members(parent_map))
        return self._result(
            f'{table} cycles', in_cycle,
            f'No parent cycles in {table}',
            '{count} rows are part of a parent cycle'
        )

    @staticmethod
    def find_cycle_members(parent_map: Dict[Any, Optional[Any]]) -> Set[Any]:
        """
        Ids that sit on a parent cycle.

        Args:
            parent_map: ``id -> parent_id`` for every node

        Returns:
            Ids of nodes that are their own ancestor
        """
        in_cycle = set()
        settled = set()
        for start in parent_map:
            path = []
            on_path = set()
            current = start
            while current is not None and current not in settled and current not in in_cycle:
                if current in on_path:
                    in_cycle.update(path[path.index(current):])
                    break
                on_path.add(current)
                path.append(current)
                current = parent_map.get(current)
            settled.update(path)
        return in_cycle

    def _check_unassigned_completions(self, conn: sqlite3.Connection) -> Dict[str, Any]:
        rows = conn.execute("""
            SELECT c.task_id, c.user_id FROM task_completions c
            WHERE NOT EXISTS (
                SELECT 1 FROM task_assignments a WHERE a.task_id = c.task_id AND a.user_id = c.user_id
            )
        """).fetchall()
        orphans = [{'task_id': row[0], 'user_id': row[1]} for row in rows]
        return self._result(
            'unassigned_completions', orphans,
            'Every completion belongs to an assignee',
            '{count} completions were recorded by users not assigned to the task',
            bad_status='warning'
        )

    def _check_completion_coverage(self, conn: sqlite3.Connection) -> Dict[str, Any]:
        rows = conn.execute("""
            SELECT t.id FROM tasks t
            WHERE t.status NOT IN ('Completed', 'Cancelled')
              AND EXISTS (SELECT 1 FROM task_assignments a WHERE a.task_id = t.id)
              AND NOT EXISTS (
                  SELECT 1 FROM task_assignments a
                  WHERE a.task_id = t.id
                    AND NOT EXISTS (
                        SELECT 1 FROM task_completions c
                        WHERE c.task_id = t.id AND c.user_id = a.user_id
                    )
              )
        """).fetchall()
        task_ids = [row[0] for row in rows]
        return self._result(
            'completion_coverage', task_ids,
            'No open task is fully completed by its assignees',
            '{count} open tasks have been completed by all current assignees',
            bad_status='warning'
        )

    def generate_validation_report(self, validation_results: Dict[str, Any]) -> str:
        """
        Generate a human-readable validation report from validation results.

        Args:
            validation_results: Dictionary with validation results

        Returns:
            Formatted report string
        """
        report_lines = []
        report_lines.append("=" * 80)
        report_lines.append("DATABASE INTEGRITY REPORT")
        report_lines.append("=" * 80)
        report_lines.append(f"Generated: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
        report_lines.append(f"Overall Status: {validation_results['overall_status'].upper()}")
        report_lines.append("-" * 80)

        for category, results in validation_results.items():
            if category in ('overall_status', 'failed_categories'):
                continue

            status = results.get('status', 'unknown')
            message = results.get('message', 'No details available')

            report_lines.append(f"\n{category.replace('_', ' ').title()}: {status.upper()}")
            report_lines.append(f"  {message}")

            details = results.get('details')
            if isinstance(details, dict):
                for key, value in details.items():
                    report_lines.append(f"  - {key}: {value}")
            elif isinstance(details, list) and details:
                shown = details[:3]
                for item in shown:
                    report_lines.append(f"    • {item}")
                if len(details) > len(shown):
                    report_lines.append(f"    • ... and {len(details) - len(shown)} more")

        if validation_results.get('failed_categories'):
            report_lines.append("\n" + "-" * 80)
            report_lines.append("FAILED CATEGORIES:")
            for cat in validation_results['failed_categories']:
                report_lines.append(f"  • {cat.replace('_', ' ').title()}")

        report_lines.append("\n" + "=" * 80)
        return "\n".join(report_lines)
