# tests/test_template_service.py
from __future__ import annotations

import sqlite3
from datetime import timedelta

import pytest

from taskhub.models.base import (
    ConcurrencyConflictError,
    InvalidOperationError,
    NotFoundError,
    TransactionFailureError,
    ValidationError,
)
from taskhub.models.project import Project, ProjectTemplate, TaskPriority, TemplateSection
from taskhub.models.task import TaskStatus
from taskhub.repositories.task_repository import TaskRepository
from taskhub.utils.hierarchy import flatten_hierarchy


@pytest.fixture()
def template(templates) -> ProjectTemplate:
    return templates.create_template(ProjectTemplate(name="Onboarding", description="New hire checklist"))


def _section(templates, template, title, parent=None, offset=None, order=0, priority=TaskPriority.MEDIUM):
    return templates.create_section(TemplateSection(
        title=title,
        project_template_id=template.id,
        parent_section_id=parent.id if parent else None,
        due_date_offset_days=offset,
        order=order,
        priority=priority,
    ))


def test_onboarding_template_expands_into_project(templates, tasks, project, template):
    a = _section(templates, template, "A", offset=3, priority=TaskPriority.HIGH)
    _section(templates, template, "B", parent=a)

    roots = templates.expand_template(template.id, project.id)

    stored = tasks.get_tasks(project.id)
    flat = [t for t, _ in flatten_hierarchy(stored)]
    assert len(flat) == 2

    task_a, task_b = flat
    assert task_a.title == "A" and task_b.title == "B"
    assert task_b.parent_task_id == task_a.id
    assert task_a.due_date == task_a.created_at + timedelta(days=3)
    assert task_b.due_date is None
    assert task_a.priority == TaskPriority.HIGH
    assert all(t.status == TaskStatus.PENDING and t.project_id == project.id for t in flat)

    assert [r.id for r in roots] == [task_a.id]
    assert [c.id for c in roots[0].children] == [task_b.id]


def test_expansion_creates_one_task_per_section(templates, tasks, project, template):
    first = _section(templates, template, "Plan", offset=1, order=0)
    second = _section(templates, template, "Build", order=1)
    _section(templates, template, "Design", parent=first, offset=2)
    deep = _section(templates, template, "Review", parent=second)
    _section(templates, template, "Sign-off", parent=deep, offset=10)

    templates.expand_template(template.id, project.id)

    flat = [t for t, _ in flatten_hierarchy(tasks.get_tasks(project.id))]
    assert len(flat) == 5
    by_title = {t.title: t for t in flat}
    assert by_title["Sign-off"].parent_task_id == by_title["Review"].id
    assert by_title["Review"].parent_task_id == by_title["Build"].id
    assert by_title["Design"].parent_task_id == by_title["Plan"].id
    assert {t.title for t in flat if t.due_date is not None} == {"Plan", "Design", "Sign-off"}


def test_expanding_empty_template_creates_nothing(templates, tasks, project, template):
    assert templates.expand_template(template.id, project.id) == []
    assert tasks.get_tasks(project.id) == []


def test_expansion_requires_existing_template_and_project(templates, project, template):
    with pytest.raises(NotFoundError):
        templates.expand_template(9999, project.id)
    with pytest.raises(NotFoundError):
        templates.expand_template(template.id, 9999)


def test_create_project_from_template_is_atomic(projects, tasks, templates, template, count_rows):
    _section(templates, template, "Kickoff", offset=0)

    created = projects.create_project(Project(name="Seeded"), template_id=template.id)
    assert len(tasks.get_tasks(created.id)) == 1

    with pytest.raises(NotFoundError):
        projects.create_project(Project(name="Orphan"), template_id=9999)
    assert count_rows("projects", "name = ?", ("Orphan",)) == 0


def test_preview_is_nested(templates, template):
    a = _section(templates, template, "A", offset=3)
    _section(templates, template, "B", parent=a)

    preview = templates.get_template_preview(template.id)
    assert preview == [{
        "title": "A",
        "description": None,
        "priority": "Medium",
        "dueDateOffsetDays": 3,
        "children": [{
            "title": "B",
            "description": None,
            "priority": "Medium",
            "dueDateOffsetDays": None,
            "children": [],
        }],
    }]


def test_sections_json_is_flat(templates, template):
    a = _section(templates, template, "A")
    b = _section(templates, template, "B", parent=a)
    assert templates.get_sections_json(template.id) == [
        {"id": a.id, "title": "A", "parentSectionId": None},
        {"id": b.id, "title": "B", "parentSectionId": a.id},
    ]


def test_parent_must_belong_to_same_template(templates, template):
    other = templates.create_template(ProjectTemplate(name="Other"))
    foreign = _section(templates, other, "Foreign")

    with pytest.raises(InvalidOperationError):
        _section(templates, template, "Child", parent=foreign)
    with pytest.raises(NotFoundError):
        templates.create_section(TemplateSection(title="X", project_template_id=template.id, parent_section_id=424242))


def test_section_cannot_move_under_its_descendant(templates, template):
    a = _section(templates, template, "A")
    b = _section(templates, template, "B", parent=a)
    c = _section(templates, template, "C", parent=b)

    a.parent_section_id = c.id
    with pytest.raises(InvalidOperationError):
        templates.update_section(a)

    a.parent_section_id = a.id
    with pytest.raises(ValidationError):
        templates.update_section(a)


def test_update_section_detects_stale_version(templates, template):
    section = _section(templates, template, "A")
    first = templates.get_section(section.id)
    second = templates.get_section(section.id)

    first.title = "A1"
    templates.update_section(first)

    second.title = "A2"
    with pytest.raises(ConcurrencyConflictError):
        templates.update_section(second)
    assert templates.get_section(section.id).title == "A1"


def test_delete_section_removes_its_subtree(templates, template):
    a = _section(templates, template, "A")
    b = _section(templates, template, "B", parent=a)
    _section(templates, template, "C", parent=b)
    keep = _section(templates, template, "Keep")

    assert templates.delete_section(a.id) == 3
    assert [s["id"] for s in templates.get_sections_json(template.id)] == [keep.id]


def test_delete_template_removes_all_sections(templates, template, count_rows):
    a = _section(templates, template, "A")
    _section(templates, template, "B", parent=a)

    assert templates.delete_template(template.id) == 2
    assert count_rows("template_sections") == 0
    with pytest.raises(NotFoundError):
        templates.get_template(template.id)


def test_update_structure_reparents_and_reorders(templates, template):
    a = _section(templates, template, "A", order=0)
    b = _section(templates, template, "B", order=1)
    c = _section(templates, template, "C", order=2)

    templates.update_structure(template.id, [
        {"id": c.id, "parentSectionId": None, "order": 0},
        {"id": a.id, "parentSectionId": c.id, "order": 1},
        {"id": b.id, "parentSectionId": c.id, "order": 0},
    ])

    roots = templates.get_sections(template.id)
    assert [r.id for r in roots] == [c.id]
    assert [child.id for child in roots[0].children] == [b.id, a.id]


def test_update_structure_rejects_cycles_without_changes(templates, template):
    a = _section(templates, template, "A")
    b = _section(templates, template, "B", parent=a)

    with pytest.raises(InvalidOperationError):
        templates.update_structure(template.id, [{"id": a.id, "parentSectionId": b.id}])
    assert templates.get_section(a.id).parent_section_id is None


def test_update_structure_rejects_foreign_sections(templates, template):
    other = templates.create_template(ProjectTemplate(name="Other"))
    foreign = _section(templates, other, "Foreign")
    mine = _section(templates, template, "Mine")

    with pytest.raises(InvalidOperationError):
        templates.update_structure(template.id, [{"id": foreign.id, "parentSectionId": None}])
    with pytest.raises(InvalidOperationError):
        templates.update_structure(template.id, [{"id": mine.id, "parentSectionId": foreign.id}])


def test_section_changes_touch_the_template(templates, template):
    before = templates.get_template(template.id).last_modified
    _section(templates, template, "A")
    assert templates.get_template(template.id).last_modified >= before


def test_failed_expansion_leaves_no_tasks(templates, project, template, count_rows, monkeypatch):
    a = _section(templates, template, "A")
    b = _section(templates, template, "B", parent=a)
    _section(templates, template, "C", parent=b)
    before = count_rows("tasks")

    original_insert = TaskRepository.insert
    calls = []

    def flaky_insert(self, task):
        calls.append(task.title)
        if len(calls) == 3:
            raise sqlite3.OperationalError("database is locked")
        return original_insert(self, task)

    monkeypatch.setattr(TaskRepository, "insert", flaky_insert)

    with pytest.raises(TransactionFailureError):
        templates.expand_template(template.id, project.id)

    assert len(calls) == 3
    assert count_rows("tasks") == before
    assert count_rows("tasks", "project_id = ?", (project.id,)) == 0
