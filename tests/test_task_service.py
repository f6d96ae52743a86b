# tests/test_task_service.py
from __future__ import annotations

import pytest

from taskhub.models.base import (
    ConcurrencyConflictError,
    InvalidOperationError,
    NotFoundError,
    ValidationError,
)
from taskhub.models.task import AssignmentType, CreateTaskRequest, EditTaskRequest, TaskStatus
from taskhub.models.user import AccessContext
from taskhub.services.task_service import (
    ALREADY_ASSIGNED_MESSAGE,
    ALREADY_COMPLETED_MESSAGE,
    COMPLETED_MESSAGE,
    HAS_SUBTASKS_MESSAGE,
    JOINED_MESSAGE,
    NOT_ASSIGNED_MESSAGE,
    NOT_FOUND_MESSAGE,
)


@pytest.fixture()
def pair(make_user):
    return make_user("ann"), make_user("bob")


def test_auto_completion_after_last_assignee(tasks, make_task, project, pair):
    ann, bob = pair
    task = make_task("Ship it", project.id, assignees=[ann.id, bob.id])

    first = tasks.mark_task_completed(task.id, AccessContext(ann.id))
    assert first.success and first.message == COMPLETED_MESSAGE
    assert first.project_id == project.id
    assert tasks.get_task(task.id).status == TaskStatus.PENDING

    assert tasks.mark_task_completed(task.id, AccessContext(bob.id))
    stored = tasks.get_task(task.id)
    assert stored.status == TaskStatus.COMPLETED
    assert stored.completed_user_ids == {ann.id, bob.id}


def test_completion_is_one_way(tasks, make_task, make_user, project, pair):
    ann, bob = pair
    task = make_task("Solo", project.id, assignees=[ann.id])
    tasks.mark_task_completed(task.id, AccessContext(ann.id))
    assert tasks.get_task(task.id).status == TaskStatus.COMPLETED

    stored = tasks.get_task(task.id)
    tasks.update_task(EditTaskRequest(
        id=task.id, title="Solo", status=stored.status, project_id=project.id,
        selected_user_ids=[ann.id, bob.id],
    ))
    assert tasks.get_task(task.id).status == TaskStatus.COMPLETED


def test_completion_rules(tasks, make_task, project, pair, admin):
    ann, bob = pair
    task = make_task("Review", project.id, assignees=[ann.id])

    result = tasks.mark_task_completed(task.id, AccessContext(bob.id))
    assert not result and result.message == NOT_ASSIGNED_MESSAGE

    assert tasks.mark_task_completed(task.id, AccessContext(ann.id))
    result = tasks.mark_task_completed(task.id, AccessContext(ann.id))
    assert not result and result.message == ALREADY_COMPLETED_MESSAGE

    result = tasks.mark_task_completed(424242, AccessContext(ann.id))
    assert not result and result.message == NOT_FOUND_MESSAGE

    other = make_task("Admin only", project.id, assignees=[ann.id])
    assert tasks.mark_task_completed(other.id, admin)
    # an admin who is not assigned does not complete the task for the assignees
    assert tasks.get_task(other.id).status == TaskStatus.PENDING


def test_cancelled_task_is_not_auto_completed(tasks, make_task, project, pair):
    ann, _ = pair
    task = make_task("Dropped", project.id, assignees=[ann.id])
    tasks.change_status(task.id, TaskStatus.CANCELLED, AccessContext(ann.id))

    assert tasks.mark_task_completed(task.id, AccessContext(ann.id))
    assert tasks.get_task(task.id).status == TaskStatus.CANCELLED


def test_completion_by_removed_assignee_does_not_count(tasks, make_task, project, pair):
    ann, bob = pair
    task = make_task("Pair", project.id, assignees=[ann.id, bob.id])
    tasks.mark_task_completed(task.id, AccessContext(ann.id))

    tasks.update_task(EditTaskRequest(
        id=task.id, title="Pair", project_id=project.id, selected_user_ids=[bob.id],
    ))
    stored = tasks.get_task(task.id)
    assert stored.assigned_user_ids == {bob.id}
    assert stored.completed_user_ids == {ann.id}
    assert stored.status == TaskStatus.PENDING

    tasks.mark_task_completed(task.id, AccessContext(bob.id))
    assert tasks.get_task(task.id).status == TaskStatus.COMPLETED


def test_create_task_for_all_users(tasks, project, pair, admin):
    task = tasks.create_task(CreateTaskRequest(
        title="Everyone", project_id=project.id, assignment_type=AssignmentType.ALL_USERS,
    ))
    assert tasks.get_task(task.id).assigned_user_ids == {pair[0].id, pair[1].id, admin.user_id}


def test_create_task_validation_and_references(tasks, project):
    with pytest.raises(ValidationError):
        tasks.create_task(CreateTaskRequest(title=""))
    with pytest.raises(NotFoundError):
        tasks.create_task(CreateTaskRequest(title="x", parent_task_id=424242))
    with pytest.raises(NotFoundError):
        tasks.create_task(CreateTaskRequest(title="x", project_id=424242))
    with pytest.raises(NotFoundError):
        tasks.create_task(CreateTaskRequest(title="x", project_id=project.id, selected_user_ids=["ghost"]))
    assert tasks.get_tasks(project.id) == []


def test_child_inherits_parent_project(tasks, make_task, project):
    parent = make_task("parent", project.id)
    child = make_task("child", parent_task_id=parent.id)
    assert child.project_id == project.id

    forest = tasks.get_tasks(project.id)
    assert [t.id for t in forest] == [parent.id]
    assert [c.id for c in forest[0].children] == [child.id]


def test_get_tasks_without_project(tasks, make_task, project):
    loose = make_task("loose")
    make_task("inside", project.id)
    assert [t.id for t in tasks.get_tasks()] == [loose.id]


def test_tasks_are_listed_newest_first(tasks, make_task, project):
    older = make_task("older", project.id)
    newer = make_task("newer", project.id)
    assert [t.id for t in tasks.get_tasks(project.id)] == [newer.id, older.id]


def test_delete_task_with_children_is_rejected(tasks, make_task, project, pair, count_rows):
    parent = make_task("parent", project.id)
    child = make_task("child", parent_task_id=parent.id, assignees=[pair[0].id])

    with pytest.raises(InvalidOperationError, match=HAS_SUBTASKS_MESSAGE):
        tasks.delete_task(parent.id)

    tasks.mark_task_completed(child.id, AccessContext(pair[0].id))
    assert tasks.delete_task(child.id) == project.id
    assert count_rows("task_assignments") == 0
    assert count_rows("task_completions") == 0
    assert tasks.delete_task(parent.id) == project.id

    with pytest.raises(NotFoundError):
        tasks.delete_task(parent.id)


def test_update_task_detects_stale_version(tasks, make_task, project):
    task = make_task("draft", project.id)
    loaded = tasks.get_task(task.id)

    tasks.update_task(EditTaskRequest(id=task.id, title="first", project_id=project.id, version=loaded.version))

    with pytest.raises(ConcurrencyConflictError):
        tasks.update_task(EditTaskRequest(id=task.id, title="second", project_id=project.id, version=loaded.version))
    assert tasks.get_task(task.id).title == "first"

    with pytest.raises(NotFoundError):
        tasks.update_task(EditTaskRequest(id=424242, title="none"))


def test_update_task_enforces_transitions(tasks, make_task, project, pair):
    task = make_task("flow", project.id, assignees=[pair[0].id])
    tasks.change_status(task.id, TaskStatus.CANCELLED, AccessContext(pair[0].id))

    with pytest.raises(InvalidOperationError):
        tasks.update_task(EditTaskRequest(id=task.id, title="flow", status=TaskStatus.PENDING, project_id=project.id))


def test_change_status_rules(tasks, make_task, project, pair, admin):
    ann, bob = pair
    task = make_task("status", project.id, assignees=[ann.id])

    with pytest.raises(InvalidOperationError, match=NOT_ASSIGNED_MESSAGE):
        tasks.change_status(task.id, TaskStatus.IN_PROGRESS, AccessContext(bob.id))

    assert tasks.change_status(task.id, TaskStatus.IN_PROGRESS, AccessContext(ann.id)).status == TaskStatus.IN_PROGRESS
    with pytest.raises(InvalidOperationError):
        tasks.change_status(task.id, TaskStatus.PENDING, AccessContext(ann.id))

    assert tasks.change_status(task.id, TaskStatus.COMPLETED, admin).status == TaskStatus.COMPLETED
    assert tasks.change_status(task.id, TaskStatus.CANCELLED, admin).status == TaskStatus.CANCELLED
    with pytest.raises(InvalidOperationError):
        tasks.change_status(task.id, TaskStatus.IN_PROGRESS, admin)

    with pytest.raises(NotFoundError):
        tasks.change_status(424242, TaskStatus.IN_PROGRESS, admin)


def test_join_task(tasks, make_task, project, pair):
    ann, _ = pair
    task = make_task("open", project.id)

    result = tasks.join_task(task.id, AccessContext(ann.id))
    assert result.success and result.message == JOINED_MESSAGE
    assert result.project_id == project.id

    result = tasks.join_task(task.id, AccessContext(ann.id))
    assert not result and result.message == ALREADY_ASSIGNED_MESSAGE

    result = tasks.join_task(424242, AccessContext(ann.id))
    assert not result and result.message == NOT_FOUND_MESSAGE


def test_get_task_missing(tasks):
    with pytest.raises(NotFoundError):
        tasks.get_task(424242)
