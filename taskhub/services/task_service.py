"""
Task service: task CRUD, assignment and completion, subtree cloning and bulk
tree reconciliation.

Cloning copies a task subtree into a project and/or under a new parent:
- an excluded task is dropped together with its whole branch
- every copy starts Pending with no due date, no assignees and no completions
- the acting user becomes the creator and the creation time is now
- depth is unbounded unless ``max_clone_depth`` is configured

Reconciliation applies an edited, flattened subtree back onto storage:
- a stored task missing from the submission, or marked deleted, is deleted
- deletion cascades to every descendant, whether the client marked it or not
- survivors get their title and description overwritten
- the root of the edited subtree is never deleted

Every multi-row mutation is one transaction: a failure leaves storage as it was.
"""

import sqlite3
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Set, Union

from taskhub.models.base import (
    InvalidOperationError,
    NotFoundError,
    OperationResult,
    TransactionFailureError,
    ValidationError,
)
from taskhub.models.task import (
    AssignmentType,
    CreateTaskRequest,
    EditTaskRequest,
    TaskEditItem,
    TaskItem,
    TaskStatus,
    TaskTreeEdit,
    can_transition,
)
from taskhub.models.user import AccessContext
from taskhub.repositories.assignment_repository import AssignmentRepository, CompletionRepository
from taskhub.repositories.project_repository import ProjectRepository
from taskhub.repositories.task_repository import TaskRepository
from taskhub.repositories.user_repository import UserRepository
from taskhub.services.base import BaseService
from taskhub.utils.hierarchy import build_task_hierarchy, flatten_hierarchy, leaf_first
from taskhub.utils.logging import get_logger, log_function_call
from taskhub.utils.temporal import utc_now

logger = get_logger(__name__)

NOT_FOUND_MESSAGE = "Task not found."
NOT_ASSIGNED_MESSAGE = "You are not assigned to this task."
ALREADY_COMPLETED_MESSAGE = "You have already marked this task as completed."
COMPLETED_MESSAGE = "Task marked as completed!"
COMPLETION_FAILED_MESSAGE = "An error occurred while completing the task."
ALREADY_ASSIGNED_MESSAGE = "You are already assigned to this task."
JOINED_MESSAGE = "You have joined the task."
HAS_SUBTASKS_MESSAGE = "Cannot delete task because it has existing sub-tasks."

class TaskService(BaseService):
    """Task operations, the clone engine and the tree reconciler."""

    def __init__(self, db_manager, config: Dict[str, Any] = None):
        super().__init__(db_manager, config)
        max_depth = self.config.get('max_clone_depth')
        self.max_clone_depth = int(max_depth) if max_depth is not None else None

    # Reads

    def get_tasks(self, project_id: Optional[int] = None) -> List[TaskItem]:
        """
        Task forest of a project, or of all project-less tasks when ``project_id`` is None.

        Roots and children are ordered newest first. Every node carries its
        assigned and completed user ids.
        """
        with self._reading() as conn:
            repo = TaskRepository(conn)
            tasks = repo.list_by_project(project_id)
            repo.attach_people(tasks)
        return build_task_hierarchy(tasks)

    def get_task(self, task_id: int) -> TaskItem:
        """
        One task with its whole subtree populated.

        Raises:
            NotFoundError: If the task does not exist
        """
        with self._reading() as conn:
            repo = TaskRepository(conn)
            subtree = repo.list_subtree(task_id)
            repo.attach_people(subtree)
        if not subtree:
            raise NotFoundError('TaskItem', task_id)

        lookup = {task.id: task for task in subtree}
        build_task_hierarchy(subtree, expected_roots=[task_id])
        return lookup[task_id]

    def get_tree_edit_items(self, root_task_id: int) -> TaskTreeEdit:
        """
        Depth-annotated preorder flattening of a subtree for the bulk editor.

        Raises:
            NotFoundError: If the root task does not exist
        """
        root = self.get_task(root_task_id)
        items = [
            TaskEditItem(
                id=node.id,
                title=node.title,
                description=node.description,
                parent_task_id=node.parent_task_id,
                depth=depth
            )
            for node, depth in flatten_hierarchy([root])
        ]
        return TaskTreeEdit(root_task_id=root.id, root_task_title=root.title, tasks=items)

    # Writes

    def create_task(self, request: CreateTaskRequest, created_by_id: Optional[str] = None) -> TaskItem:
        """
        Create a task and its assignments in one transaction.

        A child task inherits its parent's project when the request names none.

        Raises:
            ValidationError: If the request is invalid
            NotFoundError: If the parent, project, creator or an assignee does not exist
        """
        request.ensure_valid()
        with self._atomic('create task') as conn:
            task_repo = TaskRepository(conn)
            user_repo = UserRepository(conn)

            project_id = request.project_id
            if request.parent_task_id is not None:
                parent = task_repo.get(request.parent_task_id)
                if parent is None:
                    raise NotFoundError('TaskItem', request.parent_task_id)
                if project_id is None:
                    project_id = parent.project_id
            if project_id is not None and not ProjectRepository(conn).exists(project_id):
                raise NotFoundError('Project', project_id)
            if created_by_id is not None and not user_repo.exists(created_by_id):
                raise NotFoundError('User', created_by_id)

            if request.assignment_type == AssignmentType.ALL_USERS:
                assignees = user_repo.all_ids()
            else:
                assignees = list(dict.fromkeys(request.selected_user_ids))
                for user_id in assignees:
                    if not user_repo.exists(user_id):
                        raise NotFoundError('User', user_id)

            task = TaskItem(
                title=request.title,
                description=request.description,
                created_at=utc_now(),
                due_date=request.due_date,
                status=TaskStatus.PENDING,
                priority=request.priority,
                project_id=project_id,
                parent_task_id=request.parent_task_id,
                created_by_id=created_by_id
            )
            task_repo.insert(task)

            assignment_repo = AssignmentRepository(conn)
            for user_id in assignees:
                assignment_repo.assign(task.id, user_id)
            task.assigned_user_ids = set(assignees)

        logger.info(f"Created task {task.id} '{task.title}' with {len(assignees)} assignees")
        return task

    def update_task(self, request: EditTaskRequest) -> TaskItem:
        """
        Save edited task fields and replace the assignment set.

        Assignees missing from ``selected_user_ids`` are removed and new ones
        added. Existing completions are kept, and a Completed task stays Completed.

        Raises:
            NotFoundError: If the task, project or an assignee does not exist
            InvalidOperationError: If the status change is not allowed
            ConcurrencyConflictError: If someone else saved the task first
        """
        request.ensure_valid()
        with self._atomic('update task') as conn:
            task_repo = TaskRepository(conn)
            stored = task_repo.get(request.id)
            if stored is None:
                raise NotFoundError('TaskItem', request.id)
            if request.project_id is not None and not ProjectRepository(conn).exists(request.project_id):
                raise NotFoundError('Project', request.project_id)
            if not can_transition(stored.status, request.status):
                raise InvalidOperationError(
                    f"Cannot change status from {stored.status.value} to {request.status.value}"
                )

            expected_version = request.version if request.version is not None else stored.version
            stored.title = request.title
            stored.description = request.description
            stored.due_date = request.due_date
            stored.status = request.status
            stored.priority = request.priority
            stored.project_id = request.project_id
            if not task_repo.update(stored, expected_version):
                self._stale_write(task_repo.exists(request.id), 'TaskItem', request.id)
            stored.version = expected_version + 1

            stored.assigned_user_ids = self._sync_assignments(conn, request.id, request.selected_user_ids)

        logger.info(f"Updated task {request.id}")
        return stored

    def _sync_assignments(self, conn: sqlite3.Connection, task_id: int, selected_user_ids: Iterable[str]) -> Set[str]:
        assignment_repo = AssignmentRepository(conn)
        user_repo = UserRepository(conn)
        desired = set(selected_user_ids)
        current = assignment_repo.user_ids_for_task(task_id)

        for user_id in sorted(desired - current):
            if not user_repo.exists(user_id):
                raise NotFoundError('User', user_id)
            assignment_repo.assign(task_id, user_id)
        for user_id in sorted(current - desired):
            assignment_repo.unassign(task_id, user_id)

        logger.debug(f"Task {task_id}: +{len(desired - current)} / -{len(current - desired)} assignees")
        return desired

    def delete_task(self, task_id: int) -> Optional[int]:
        """
        Delete a task that has no sub-tasks.

        Returns:
            The project the task belonged to

        Raises:
            NotFoundError: If the task does not exist
            InvalidOperationError: If the task still has sub-tasks
        """
        with self._atomic('delete task') as conn:
            task_repo = TaskRepository(conn)
            task = task_repo.get(task_id)
            if task is None:
                raise NotFoundError('TaskItem', task_id)
            if task_repo.has_children(task_id):
                raise InvalidOperationError(HAS_SUBTASKS_MESSAGE)

            AssignmentRepository(conn).delete_for_tasks([task_id])
            CompletionRepository(conn).delete_for_tasks([task_id])
            task_repo.delete(task_id)

        logger.info(f"Deleted task {task_id}")
        return task.project_id

    def change_status(self, task_id: int, new_status: TaskStatus, access: AccessContext) -> TaskItem:
        """
        Manually move a task to another status.

        Raises:
            NotFoundError: If the task does not exist
            InvalidOperationError: If the user may not act on the task or the transition is not allowed
            ConcurrencyConflictError: If the task changed meanwhile
        """
        with self._atomic('change task status') as conn:
            task_repo = TaskRepository(conn)
            task = task_repo.get(task_id)
            if task is None:
                raise NotFoundError('TaskItem', task_id)
            if not access.can_act_on(AssignmentRepository(conn).user_ids_for_task(task_id)):
                raise InvalidOperationError(NOT_ASSIGNED_MESSAGE)
            if not can_transition(task.status, new_status):
                raise InvalidOperationError(
                    f"Cannot change status from {task.status.value} to {new_status.value}"
                )
            if task.status != new_status:
                if not task_repo.update_status(task_id, new_status, task.version):
                    self._stale_write(task_repo.exists(task_id), 'TaskItem', task_id)
                task.version += 1
                task.status = new_status

        logger.info(f"Task {task_id} status set to {new_status.value} by {access.user_id}")
        return task

    def join_task(self, task_id: int, access: AccessContext) -> OperationResult:
        """Assign the acting user to a task."""
        with self._atomic('join task') as conn:
            task = TaskRepository(conn).get(task_id)
            if task is None:
                logger.warning(f"Join requested for missing task {task_id}")
                return OperationResult(False, NOT_FOUND_MESSAGE)

            assignment_repo = AssignmentRepository(conn)
            if assignment_repo.is_assigned(task_id, access.user_id):
                return OperationResult(False, ALREADY_ASSIGNED_MESSAGE, task.project_id)
            if not UserRepository(conn).exists(access.user_id):
                raise NotFoundError('User', access.user_id)
            assignment_repo.assign(task_id, access.user_id)

        logger.info(f"User {access.user_id} joined task {task_id}")
        return OperationResult(True, JOINED_MESSAGE, task.project_id)

    def mark_task_completed(self, task_id: int, access: AccessContext) -> OperationResult:
        """
        Record the acting user's completion of a task.

        The task itself becomes Completed once every assignee has completed it.
        That transition is one-way: adding assignees later does not reopen the
        task. A Cancelled task is never completed automatically.
        """
        try:
            with self._atomic('mark task completed') as conn:
                task_repo = TaskRepository(conn)
                task = task_repo.get(task_id)
                if task is None:
                    logger.warning(f"Completion requested for missing task {task_id}")
                    return OperationResult(False, NOT_FOUND_MESSAGE)

                assigned = AssignmentRepository(conn).user_ids_for_task(task_id)
                if not access.can_act_on(assigned):
                    return OperationResult(False, NOT_ASSIGNED_MESSAGE, task.project_id)

                completion_repo = CompletionRepository(conn)
                if completion_repo.has_completed(task_id, access.user_id):
                    return OperationResult(False, ALREADY_COMPLETED_MESSAGE, task.project_id)
                completion_repo.add(task_id, access.user_id)

                task_repo.attach_people([task])
                if task.status not in (TaskStatus.COMPLETED, TaskStatus.CANCELLED) and self._all_assignees_done(task):
                    if not task_repo.update_status(task_id, TaskStatus.COMPLETED, task.version):
                        self._stale_write(task_repo.exists(task_id), 'TaskItem', task_id)
                    logger.info(f"Task {task_id} completed by all {len(task.assigned_user_ids)} assignees")

        except TransactionFailureError:
            logger.error(f"Failed to record completion of task {task_id} by {access.user_id}", exc_info=True)
            return OperationResult(False, COMPLETION_FAILED_MESSAGE)

        return OperationResult(True, COMPLETED_MESSAGE, task.project_id)

    @staticmethod
    def _all_assignees_done(task: TaskItem) -> bool:
        # Completions by users who are no longer assigned do not count
        covered = task.assigned_user_ids & task.completed_user_ids
        return 0 < len(task.assigned_user_ids) <= len(covered)

    # Cloning

    @log_function_call
    def clone_subtree(self, source_task_id: int, acting_user_id: str, target_project_id: Optional[int] = None,
                      excluded_ids: Iterable[int] = (), new_parent_id: Optional[int] = None) -> int:
        """
        Deep-copy a task subtree.

        Args:
            source_task_id: Root of the subtree to copy
            acting_user_id: User recorded as creator of every copy
            target_project_id: Project for the copies (default: each source task's own)
            excluded_ids: Tasks dropped together with their descendants
            new_parent_id: Parent of the copied root (default: none)

        Returns:
            Id of the new root task

        Raises:
            NotFoundError: If the source, target project, new parent or user does not exist
            InvalidOperationError: If the root itself is excluded or the depth bound is exceeded
            TransactionFailureError: If persisting fails; nothing is kept
        """
        with self._atomic('clone subtree') as conn:
            new_root = self.clone_into(
                conn, source_task_id, acting_user_id, target_project_id, excluded_ids, new_parent_id
            )
        return new_root.id

    def clone_into(self, conn: sqlite3.Connection, source_task_id: int, acting_user_id: str,
                   target_project_id: Optional[int] = None, excluded_ids: Iterable[int] = (),
                   new_parent_id: Optional[int] = None, now: datetime = None) -> TaskItem:
        """
        Clone on a caller-owned transaction.

        Returns:
            The new root task with ``children`` populated
        """
        excluded = set(excluded_ids)
        task_repo = TaskRepository(conn)

        subtree = task_repo.list_subtree(source_task_id)
        if not subtree:
            raise NotFoundError('TaskItem', source_task_id)
        if source_task_id in excluded:
            raise InvalidOperationError(f"Task {source_task_id} cannot be excluded from its own clone")
        if target_project_id is not None and not ProjectRepository(conn).exists(target_project_id):
            raise NotFoundError('Project', target_project_id)
        if new_parent_id is not None and not task_repo.exists(new_parent_id):
            raise NotFoundError('TaskItem', new_parent_id)
        if not UserRepository(conn).exists(acting_user_id):
            raise NotFoundError('User', acting_user_id)

        lookup = {task.id: task for task in subtree}
        build_task_hierarchy(subtree, expected_roots=[source_task_id])

        now = now or utc_now()
        plan = self._plan_clone(lookup[source_task_id], excluded, acting_user_id, target_project_id, now)

        new_ids = {}
        for source, clone in plan:
            if source.id == source_task_id:
                clone.parent_task_id = new_parent_id
            else:
                clone.parent_task_id = new_ids[source.parent_task_id]
            task_repo.insert(clone)
            new_ids[source.id] = clone.id

        new_root = plan[0][1]
        logger.info(
            f"Cloned task {source_task_id} as {new_root.id}: {len(plan)} of {len(subtree)} tasks copied"
        )
        return new_root

    def _plan_clone(self, root: TaskItem, excluded: Set[int], acting_user_id: str,
                    target_project_id: Optional[int], now: datetime) -> List:
        """
        Build the in-memory copy of a subtree.

        Returns:
            ``(source, clone)`` pairs in preorder, parents before children
        """
        plan = []
        pairs = {}
        for source, depth in flatten_hierarchy([root]):
            if source.id in excluded:
                continue
            if source.id != root.id and source.parent_task_id not in pairs:
                # An ancestor was excluded, so the whole branch goes
                continue
            if self.max_clone_depth is not None and depth >= self.max_clone_depth:
                raise InvalidOperationError(
                    f"Task {root.id} is deeper than the configured clone depth of {self.max_clone_depth}"
                )

            clone = TaskItem(
                title=source.title,
                description=source.description,
                created_at=now,
                due_date=None,
                status=TaskStatus.PENDING,
                priority=source.priority,
                project_id=target_project_id if target_project_id is not None else source.project_id,
                created_by_id=acting_user_id
            )
            pairs[source.id] = clone
            if source.id != root.id:
                pairs[source.parent_task_id].children.append(clone)
            plan.append((source, clone))
        return plan

    # Reconciliation

    @log_function_call
    def reconcile(self, root_task_id: int, submitted: Iterable[Union[TaskEditItem, Dict[str, Any]]]) -> Dict[str, List[int]]:
        """
        Apply an edited flattened subtree.

        Args:
            root_task_id: Root of the edited subtree
            submitted: Rows from the editor; ``is_deleted`` marks removed rows

        Returns:
            ``{'deleted': [...], 'updated': [...]}`` task ids

        Raises:
            NotFoundError: If the root task does not exist
            ValidationError: If a surviving row has an empty title
            TransactionFailureError: If persisting fails; nothing is changed
        """
        items = [i if isinstance(i, TaskEditItem) else TaskEditItem.from_dict(i) for i in submitted]

        with self._atomic('reconcile task tree') as conn:
            task_repo = TaskRepository(conn)
            persisted = {task.id: task for task in task_repo.list_subtree(root_task_id)}
            if not persisted:
                raise NotFoundError('TaskItem', root_task_id)

            by_id = {}
            for item in items:
                if item.id in persisted:
                    by_id[item.id] = item
                else:
                    logger.warning(f"Ignoring task {item.id}: not part of the subtree of {root_task_id}")
            if by_id.get(root_task_id) is not None and by_id[root_task_id].is_deleted:
                logger.warning(f"Root task {root_task_id} cannot be deleted through the tree editor")

            doomed = self._deletion_set(root_task_id, persisted, by_id)
            for item in by_id.values():
                if item.id not in doomed and not (item.title and item.title.strip()):
                    raise ValidationError(f"Task {item.id} needs a title", "title")

            doomed_ids = [task.id for task in leaf_first(persisted[i] for i in doomed)]
            AssignmentRepository(conn).delete_for_tasks(doomed_ids)
            CompletionRepository(conn).delete_for_tasks(doomed_ids)
            for task_id in doomed_ids:
                task_repo.delete(task_id)

            updated = []
            for item in by_id.values():
                if item.id in doomed:
                    continue
                task_repo.update_text(item.id, item.title, item.description)
                updated.append(item.id)

        logger.info(
            f"Reconciled subtree {root_task_id}: {len(doomed_ids)} deleted, {len(updated)} updated"
        )
        return {'deleted': doomed_ids, 'updated': updated}

    @staticmethod
    def _deletion_set(root_task_id: int, persisted: Dict[int, TaskItem], submitted: Dict[int, TaskEditItem]) -> Set[int]:
        survivors = {item.id for item in submitted.values() if not item.is_deleted}
        survivors.add(root_task_id)
        doomed = {task_id for task_id in persisted if task_id not in survivors}

        # A kept row under a deleted parent goes too, by declared or stored parent
        changed = True
        while changed:
            changed = False
            for item in submitted.values():
                if item.id in doomed or item.id == root_task_id:
                    continue
                stored_parent = persisted[item.id].parent_task_id
                if item.parent_task_id in doomed or stored_parent in doomed:
                    doomed.add(item.id)
                    changed = True
        return doomed
