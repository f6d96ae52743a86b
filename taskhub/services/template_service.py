"""
Template service: project templates, their section trees and template expansion.

A template is a forest of sections. Expanding it into a project produces one
task per section with the same parent/child shape:

- title, description and priority are copied verbatim
- the due date is ``now + due_date_offset_days`` when an offset is set, else empty
- every task starts Pending, inside the target project

Expansion is all-or-nothing. ``ProjectService.create_project`` calls
``expand_into`` on its own connection so that the project row and its tasks
are committed together.

Section parents are restrict-on-delete in storage. Deleting a section or a
template therefore removes the affected sections leaf-first.
"""

import sqlite3
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Union

from taskhub.models.base import InvalidOperationError, NotFoundError
from taskhub.models.project import ProjectTemplate, SectionMove, TemplateSection
from taskhub.models.task import TaskItem, TaskStatus
from taskhub.repositories.project_repository import ProjectRepository
from taskhub.repositories.task_repository import TaskRepository
from taskhub.repositories.template_repository import TemplateRepository
from taskhub.services.base import BaseService
from taskhub.utils.hierarchy import (
    build_section_hierarchy,
    descendant_ids,
    flatten_hierarchy,
    leaf_first,
    would_create_cycle,
)
from taskhub.utils.logging import get_logger, log_function_call
from taskhub.utils.temporal import due_date_from_offset, utc_now

logger = get_logger(__name__)

class TemplateService(BaseService):
    """Template and section management plus the template expander."""

    # Templates

    def list_templates(self) -> List[ProjectTemplate]:
        with self._reading() as conn:
            return TemplateRepository(conn).list_all()

    def get_template(self, template_id: int) -> ProjectTemplate:
        with self._reading() as conn:
            template = TemplateRepository(conn).get(template_id)
        if template is None:
            raise NotFoundError('ProjectTemplate', template_id)
        return template

    def create_template(self, template: ProjectTemplate) -> ProjectTemplate:
        template.ensure_valid()
        template.last_modified = utc_now()
        with self._atomic('create template') as conn:
            TemplateRepository(conn).insert(template)
        logger.info(f"Created template {template.id} '{template.name}'")
        return template

    def update_template(self, template: ProjectTemplate) -> ProjectTemplate:
        """
        Save edited template fields.

        Raises:
            NotFoundError: If the template no longer exists
            ConcurrencyConflictError: If someone else saved it first
        """
        template.ensure_valid()
        template.last_modified = utc_now()
        with self._atomic('update template') as conn:
            repo = TemplateRepository(conn)
            if not repo.update(template, template.version):
                self._stale_write(repo.exists(template.id), 'ProjectTemplate', template.id)
        template.version += 1
        return template

    def delete_template(self, template_id: int) -> int:
        """
        Delete a template together with all of its sections.

        Returns:
            Number of sections removed
        """
        with self._atomic('delete template') as conn:
            repo = TemplateRepository(conn)
            if not repo.exists(template_id):
                raise NotFoundError('ProjectTemplate', template_id)
            sections = repo.list_sections(template_id)
            for section in leaf_first(sections):
                repo.delete_section(section.id)
            repo.delete(template_id)

        logger.info(f"Deleted template {template_id} with {len(sections)} sections")
        return len(sections)

    # Sections

    def get_sections(self, template_id: int) -> List[TemplateSection]:
        """Root sections of a template, each with its children in ``order``."""
        with self._reading() as conn:
            repo = TemplateRepository(conn)
            if not repo.exists(template_id):
                raise NotFoundError('ProjectTemplate', template_id)
            return build_section_hierarchy(repo.list_sections(template_id))

    def get_sections_json(self, template_id: int) -> List[Dict[str, Any]]:
        """Flat section list in the shape the structure editor consumes."""
        with self._reading() as conn:
            repo = TemplateRepository(conn)
            if not repo.exists(template_id):
                raise NotFoundError('ProjectTemplate', template_id)
            sections = repo.list_sections(template_id)
        return [
            {'id': section.id, 'title': section.title, 'parentSectionId': section.parent_section_id}
            for section in sections
        ]

    def get_section(self, section_id: int) -> TemplateSection:
        with self._reading() as conn:
            section = TemplateRepository(conn).get_section(section_id)
        if section is None:
            raise NotFoundError('TemplateSection', section_id)
        return section

    def create_section(self, section: TemplateSection) -> TemplateSection:
        """
        Add a section to a template.

        Raises:
            NotFoundError: If the template or the parent section does not exist
            InvalidOperationError: If the parent belongs to another template
        """
        section.ensure_valid()
        with self._atomic('create section') as conn:
            repo = TemplateRepository(conn)
            if not repo.exists(section.project_template_id):
                raise NotFoundError('ProjectTemplate', section.project_template_id)
            self._check_parent(repo, section.project_template_id, section.parent_section_id)
            repo.insert_section(section)
            repo.touch(section.project_template_id)

        logger.debug(f"Created section {section.id} in template {section.project_template_id}")
        return section

    def update_section(self, section: TemplateSection) -> TemplateSection:
        """
        Save an edited section, including a possible move to another parent.

        The section stays in its template. The new parent must be in the same
        template and must not be the section itself or one of its descendants.

        Raises:
            NotFoundError: If the section or the new parent does not exist
            InvalidOperationError: If the move is not allowed
            ConcurrencyConflictError: If someone else saved the section first
        """
        section.ensure_valid()
        with self._atomic('update section') as conn:
            repo = TemplateRepository(conn)
            stored = repo.get_section(section.id)
            if stored is None:
                raise NotFoundError('TemplateSection', section.id)

            section.project_template_id = stored.project_template_id
            self._check_parent(repo, stored.project_template_id, section.parent_section_id)
            if section.parent_section_id is not None:
                parent_map = repo.section_parent_map(stored.project_template_id)
                if would_create_cycle(parent_map, section.id, section.parent_section_id):
                    raise InvalidOperationError(
                        f"Section {section.id} cannot be moved under itself or one of its descendants"
                    )

            if not repo.update_section(section, section.version):
                self._stale_write(repo.get_section(section.id) is not None, 'TemplateSection', section.id)
            repo.touch(stored.project_template_id)

        section.version += 1
        return section

    def delete_section(self, section_id: int) -> int:
        """
        Delete a section and every section below it.

        Returns:
            Number of sections removed
        """
        with self._atomic('delete section') as conn:
            repo = TemplateRepository(conn)
            section = repo.get_section(section_id)
            if section is None:
                raise NotFoundError('TemplateSection', section_id)

            doomed = {section_id} | descendant_ids(repo.section_parent_map(section.project_template_id), section_id)
            sections = [s for s in repo.list_sections(section.project_template_id) if s.id in doomed]
            for node in leaf_first(sections):
                repo.delete_section(node.id)
            repo.touch(section.project_template_id)

        logger.info(f"Deleted section {section_id} and {len(doomed) - 1} descendants")
        return len(doomed)

    def update_structure(self, template_id: int, moves: Iterable[Union[SectionMove, Dict[str, Any]]]) -> None:
        """
        Apply a bulk re-parenting and re-ordering from the structure editor.

        Every section named must belong to the template, and so must every new
        parent. The resulting structure must be acyclic. Either all moves are
        applied or none.

        Raises:
            NotFoundError: If the template does not exist
            InvalidOperationError: If a move names a foreign section or forms a cycle
        """
        moves = [m if isinstance(m, SectionMove) else SectionMove.from_dict(m) for m in moves]

        with self._atomic('update template structure') as conn:
            repo = TemplateRepository(conn)
            if not repo.exists(template_id):
                raise NotFoundError('ProjectTemplate', template_id)

            parent_map = repo.section_parent_map(template_id)
            for move in moves:
                if move.id not in parent_map:
                    raise InvalidOperationError(f"Section {move.id} does not belong to template {template_id}")
                if move.parent_section_id is not None and move.parent_section_id not in parent_map:
                    raise InvalidOperationError(
                        f"Parent section {move.parent_section_id} does not belong to template {template_id}"
                    )

            proposed = dict(parent_map)
            for move in moves:
                proposed[move.id] = move.parent_section_id
            for section_id, parent_id in proposed.items():
                if would_create_cycle(proposed, section_id, parent_id):
                    raise InvalidOperationError(f"Moving section {section_id} would create a cycle")

            for move in moves:
                repo.move_section(move.id, move.parent_section_id, move.order)
            repo.touch(template_id)

        logger.info(f"Updated structure of template {template_id} ({len(moves)} sections)")

    def get_template_preview(self, template_id: int) -> List[Dict[str, Any]]:
        """Nested ``{title, description, priority, dueDateOffsetDays, children}`` list."""
        return [root.to_preview() for root in self.get_sections(template_id)]

    def _check_parent(self, repo: TemplateRepository, template_id: int, parent_section_id: Optional[int]):
        if parent_section_id is None:
            return
        parent = repo.get_section(parent_section_id)
        if parent is None:
            raise NotFoundError('TemplateSection', parent_section_id)
        if parent.project_template_id != template_id:
            raise InvalidOperationError(
                f"Parent section {parent_section_id} belongs to another template"
            )

    # Expansion

    @log_function_call
    def expand_template(self, template_id: int, project_id: int, created_by_id: Optional[str] = None) -> List[TaskItem]:
        """
        Instantiate a template's section tree as tasks of an existing project.

        Args:
            template_id: Template to expand
            project_id: Project receiving the tasks
            created_by_id: User recorded as creator of every task

        Returns:
            Root tasks of the new forest with ``children`` populated

        Raises:
            NotFoundError: If the template or the project does not exist
            TransactionFailureError: If persisting fails; no task is kept
        """
        with self._atomic('expand template') as conn:
            if not ProjectRepository(conn).exists(project_id):
                raise NotFoundError('Project', project_id)
            return self.expand_into(conn, template_id, project_id, created_by_id)

    def expand_into(self, conn: sqlite3.Connection, template_id: int, project_id: int,
                    created_by_id: Optional[str] = None, now: datetime = None) -> List[TaskItem]:
        """
        Expansion on a caller-owned transaction.

        Returns:
            Root tasks of the new forest with ``children`` populated
        """
        template_repo = TemplateRepository(conn)
        if not template_repo.exists(template_id):
            raise NotFoundError('ProjectTemplate', template_id)

        now = now or utc_now()
        roots = build_section_hierarchy(template_repo.list_sections(template_id))
        task_repo = TaskRepository(conn)

        created = {}
        task_roots = []
        for section, _depth in flatten_hierarchy(roots):
            parent_task = created.get(section.parent_section_id)
            task = TaskItem(
                title=section.title,
                description=section.description,
                created_at=now,
                due_date=due_date_from_offset(section.due_date_offset_days, now),
                status=TaskStatus.PENDING,
                priority=section.priority,
                project_id=project_id,
                parent_task_id=parent_task.id if parent_task else None,
                created_by_id=created_by_id
            )
            task_repo.insert(task)
            created[section.id] = task
            if parent_task:
                parent_task.children.append(task)
            else:
                task_roots.append(task)

        logger.info(f"Expanded template {template_id} into project {project_id}: {len(created)} tasks")
        return task_roots
