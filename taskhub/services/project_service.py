"""
Project service: project CRUD, creation from a template, whole-project cloning
and the deletion cascade.

Deleting projects removes, inside one transaction and in this order:
1. assignments of every affected task
2. completions of every affected task
3. the tasks themselves, leaf-first, including descendants that were moved
   into other projects
4. the project rows

Any failure rolls back the whole transaction. The caller is told that nothing
was deleted.
"""

from typing import Any, Dict, Iterable, List, Optional

from taskhub.models.base import NotFoundError, OperationResult, TransactionFailureError
from taskhub.models.project import Project
from taskhub.repositories.assignment_repository import AssignmentRepository, CompletionRepository
from taskhub.repositories.project_repository import ProjectRepository
from taskhub.repositories.task_repository import TaskRepository
from taskhub.repositories.user_repository import UserRepository
from taskhub.services.base import BaseService
from taskhub.services.task_service import TaskService
from taskhub.services.template_service import TemplateService
from taskhub.utils.hierarchy import build_task_hierarchy, leaf_first
from taskhub.utils.logging import get_logger, log_function_call
from taskhub.utils.temporal import utc_now

logger = get_logger(__name__)

PROJECT_DELETED_MESSAGE = "Project deleted successfully."
PROJECT_DELETE_FAILED_MESSAGE = "An error occurred while deleting the project. Nothing was deleted."
PROJECTS_DELETE_FAILED_MESSAGE = "An error occurred while deleting the selected projects. No project was deleted."

class ProjectService(BaseService):
    """Projects and the operations that create or remove whole task forests."""

    def __init__(self, db_manager, config: Dict[str, Any] = None):
        super().__init__(db_manager, config)
        self.templates = TemplateService(db_manager, config)
        self.tasks = TaskService(db_manager, config)

    def list_projects(self) -> List[Project]:
        with self._reading() as conn:
            return ProjectRepository(conn).list_all()

    def get_project(self, project_id: int) -> Project:
        with self._reading() as conn:
            project = ProjectRepository(conn).get(project_id)
        if project is None:
            raise NotFoundError('Project', project_id)
        return project

    def project_exists(self, project_id: int) -> bool:
        with self._reading() as conn:
            return ProjectRepository(conn).exists(project_id)

    @log_function_call
    def create_project(self, project: Project, template_id: Optional[int] = None,
                       created_by_id: Optional[str] = None) -> Project:
        """
        Create a project, optionally seeded from a template.

        The project row and every task expanded from the template are
        committed together.

        Raises:
            ValidationError: If the project is invalid
            NotFoundError: If the template does not exist; no project is created
        """
        project.ensure_valid()
        with self._atomic('create project') as conn:
            ProjectRepository(conn).insert(project)
            if template_id is not None:
                self.templates.expand_into(conn, template_id, project.id, created_by_id)

        logger.info(f"Created project {project.id} '{project.name}'"
                    + (f" from template {template_id}" if template_id is not None else ""))
        return project

    def update_project(self, project: Project) -> Project:
        """
        Save edited project fields.

        Raises:
            NotFoundError: If the project no longer exists
            ConcurrencyConflictError: If someone else saved it first
        """
        project.ensure_valid()
        with self._atomic('update project') as conn:
            repo = ProjectRepository(conn)
            if not repo.update(project, project.version):
                self._stale_write(repo.exists(project.id), 'Project', project.id)
        project.version += 1
        return project

    @log_function_call
    def clone_project(self, source_project_id: int, name: str, description: Optional[str],
                      acting_user_id: str, excluded_task_ids: Iterable[int] = ()) -> Project:
        """
        Copy a project and its task forest.

        The new project inherits the source's visibility. Every top-level task
        that is not excluded is cloned with the same exclusion set, so excluded
        tasks deeper down are dropped with their branches.

        Returns:
            The new project

        Raises:
            NotFoundError: If the source project or the user does not exist
            TransactionFailureError: If persisting fails; nothing is kept
        """
        excluded = set(excluded_task_ids)
        with self._atomic('clone project') as conn:
            source = ProjectRepository(conn).get(source_project_id)
            if source is None:
                raise NotFoundError('Project', source_project_id)
            if not UserRepository(conn).exists(acting_user_id):
                raise NotFoundError('User', acting_user_id)

            clone = Project(name=name, description=description, is_public=source.is_public, created_at=utc_now())
            clone.ensure_valid()
            ProjectRepository(conn).insert(clone)

            roots = build_task_hierarchy(TaskRepository(conn).list_by_project(source_project_id))
            cloned_roots = 0
            for root in roots:
                if root.id in excluded:
                    continue
                self.tasks.clone_into(
                    conn, root.id, acting_user_id, target_project_id=clone.id, excluded_ids=excluded
                )
                cloned_roots += 1

        logger.info(f"Cloned project {source_project_id} as {clone.id} ({cloned_roots} top-level tasks)")
        return clone

    def delete_project(self, project_id: int) -> OperationResult:
        """Delete one project with everything under it."""
        return self._delete([project_id], PROJECT_DELETED_MESSAGE, PROJECT_DELETE_FAILED_MESSAGE, project_id)

    def delete_projects(self, project_ids: Iterable[int]) -> OperationResult:
        """
        Delete several projects with everything under them, all or nothing.

        Returns:
            Success, or an aggregate failure when any project is missing or any
            step fails
        """
        project_ids = list(dict.fromkeys(project_ids))
        if not project_ids:
            return OperationResult(False, "No projects were selected.")
        return self._delete(project_ids, f"Deleted {len(project_ids)} project(s).", PROJECTS_DELETE_FAILED_MESSAGE)

    @log_function_call
    def _delete(self, project_ids: List[int], success_message: str, failure_message: str,
                project_id: Optional[int] = None) -> OperationResult:
        try:
            with self._atomic("delete projects") as conn:
                counts = self._cascade_delete(conn, project_ids)
        except NotFoundError as e:
            logger.warning(f"Project deletion refused: {str(e)}")
            return OperationResult(False, f"{str(e)}. Nothing was deleted.", project_id)
        except TransactionFailureError:
            logger.error(f"Deleting projects {project_ids} failed; all changes rolled back", exc_info=True)
            return OperationResult(False, failure_message, project_id)

        logger.info(
            f"Deleted {len(project_ids)} projects: {counts['tasks']} tasks, "
            f"{counts['assignments']} assignments, {counts['completions']} completions"
        )
        return OperationResult(True, success_message, project_id)

    def _cascade_delete(self, conn, project_ids: List[int]) -> Dict[str, int]:
        project_repo = ProjectRepository(conn)
        for project_id in project_ids:
            if not project_repo.exists(project_id):
                raise NotFoundError('Project', project_id)

        task_repo = TaskRepository(conn)
        tasks = task_repo.list_with_descendants_for_projects(project_ids)
        task_ids = [task.id for task in tasks]

        counts = {
            'assignments': AssignmentRepository(conn).delete_for_tasks(task_ids),
            'completions': CompletionRepository(conn).delete_for_tasks(task_ids),
            'tasks': 0
        }
        for task in leaf_first(tasks):
            task_repo.delete(task.id)
            counts['tasks'] += 1

        for project_id in project_ids:
            project_repo.delete(project_id)
        return counts
