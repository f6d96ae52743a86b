"""
Template repository: SQL access for ``project_templates`` and ``template_sections``.

Sections reference their parent with a restrict-on-delete key, so callers
delete them leaf-first.
"""

import sqlite3
from typing import Dict, List, Optional

from taskhub.models.project import ProjectTemplate, TemplateSection
from taskhub.repositories.base import BaseRepository
from taskhub.utils.logging import get_logger
from taskhub.utils.temporal import to_db, utc_now

logger = get_logger(__name__)

class TemplateRepository(BaseRepository):
    """Reads and writes templates and their sections on one connection."""

    # Templates

    def get(self, template_id: int) -> Optional[ProjectTemplate]:
        row = self._fetch_one("SELECT * FROM project_templates WHERE id = ?", (template_id,))
        return ProjectTemplate.from_row(row) if row else None

    def exists(self, template_id: int) -> bool:
        return self._fetch_one("SELECT 1 FROM project_templates WHERE id = ?", (template_id,)) is not None

    def list_all(self) -> List[ProjectTemplate]:
        rows = self._fetch_all("SELECT * FROM project_templates ORDER BY name, id")
        return [ProjectTemplate.from_row(row) for row in rows]

    def insert(self, template: ProjectTemplate) -> int:
        try:
            cursor = self._execute("""
                INSERT INTO project_templates (name, description, template_version, last_modified, version)
                VALUES (?, ?, ?, ?, 1)
            """, (template.name, template.description, template.template_version, to_db(template.last_modified)))
        except sqlite3.Error as e:
            logger.error(f"Error inserting template '{template.name}': {str(e)}")
            raise

        template.id = cursor.lastrowid
        template.version = 1
        return template.id

    def update(self, template: ProjectTemplate, expected_version: int) -> bool:
        cursor = self._execute("""
            UPDATE project_templates
            SET name = ?, description = ?, template_version = ?, last_modified = ?, version = version + 1
            WHERE id = ? AND version = ?
        """, (
            template.name,
            template.description,
            template.template_version,
            to_db(template.last_modified),
            template.id,
            expected_version
        ))
        return cursor.rowcount == 1

    def touch(self, template_id: int) -> None:
        """Stamp ``last_modified`` after a section change."""
        self._execute(
            "UPDATE project_templates SET last_modified = ? WHERE id = ?",
            (to_db(utc_now()), template_id)
        )

    def delete(self, template_id: int) -> bool:
        cursor = self._execute("DELETE FROM project_templates WHERE id = ?", (template_id,))
        return cursor.rowcount == 1

    # Sections

    def get_section(self, section_id: int) -> Optional[TemplateSection]:
        row = self._fetch_one("SELECT * FROM template_sections WHERE id = ?", (section_id,))
        return TemplateSection.from_row(row) if row else None

    def list_sections(self, template_id: int) -> List[TemplateSection]:
        rows = self._fetch_all(
            "SELECT * FROM template_sections WHERE project_template_id = ? ORDER BY sort_order, id",
            (template_id,)
        )
        return [TemplateSection.from_row(row) for row in rows]

    def section_parent_map(self, template_id: int) -> Dict[int, Optional[int]]:
        rows = self._fetch_all(
            "SELECT id, parent_section_id FROM template_sections WHERE project_template_id = ?",
            (template_id,)
        )
        return {row['id']: row['parent_section_id'] for row in rows}

    def insert_section(self, section: TemplateSection) -> int:
        try:
            cursor = self._execute("""
                INSERT INTO template_sections (
                    title, description, priority, due_date_offset_days, sort_order,
                    project_template_id, parent_section_id, version
                ) VALUES (?, ?, ?, ?, ?, ?, ?, 1)
            """, (
                section.title,
                section.description,
                section.priority.value,
                section.due_date_offset_days,
                section.order,
                section.project_template_id,
                section.parent_section_id
            ))
        except sqlite3.Error as e:
            logger.error(f"Error inserting section '{section.title}': {str(e)}")
            raise

        section.id = cursor.lastrowid
        section.version = 1
        return section.id

    def update_section(self, section: TemplateSection, expected_version: int) -> bool:
        cursor = self._execute("""
            UPDATE template_sections
            SET title = ?, description = ?, priority = ?, due_date_offset_days = ?,
                sort_order = ?, parent_section_id = ?, version = version + 1
            WHERE id = ? AND version = ?
        """, (
            section.title,
            section.description,
            section.priority.value,
            section.due_date_offset_days,
            section.order,
            section.parent_section_id,
            section.id,
            expected_version
        ))
        return cursor.rowcount == 1

    def move_section(self, section_id: int, parent_section_id: Optional[int], order: int) -> None:
        self._execute("""
            UPDATE template_sections
            SET parent_section_id = ?, sort_order = ?, version = version + 1
            WHERE id = ?
        """, (parent_section_id, order, section_id))

    def delete_section(self, section_id: int) -> bool:
        cursor = self._execute("DELETE FROM template_sections WHERE id = ?", (section_id,))
        return cursor.rowcount == 1
