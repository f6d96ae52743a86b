"""Pytest fixtures for taskhub: a fresh file-backed database per test."""
from __future__ import annotations

import itertools
from pathlib import Path

import pytest

from taskhub.models.project import Project
from taskhub.models.task import CreateTaskRequest
from taskhub.models.user import AccessContext, ApplicationUser, UserRole
from taskhub.services.dashboard_service import DashboardService
from taskhub.services.project_service import ProjectService
from taskhub.services.task_service import TaskService
from taskhub.services.template_service import TemplateService
from taskhub.services.user_service import UserService
from taskhub.utils.database import DatabaseManager

ROOT = Path(__file__).resolve().parents[1]
SCHEMA_SQL = ROOT / "schema.sql"


@pytest.fixture()
def config(tmp_path: Path) -> dict:
    return {
        "database_path": str(tmp_path / "taskhub.sqlite"),
        "schema_file": str(SCHEMA_SQL),
        "connection_timeout": 5,
        "retry_attempts": 1,
        "retry_delay": 0,
        "activity_window_days": 30,
    }


@pytest.fixture()
def db(config):
    manager = DatabaseManager(config["database_path"], config)
    manager.initialize_database(config["schema_file"])
    return manager


@pytest.fixture()
def users(db, config) -> UserService:
    return UserService(db, config)


@pytest.fixture()
def templates(db, config) -> TemplateService:
    return TemplateService(db, config)


@pytest.fixture()
def tasks(db, config) -> TaskService:
    return TaskService(db, config)


@pytest.fixture()
def projects(db, config) -> ProjectService:
    return ProjectService(db, config)


@pytest.fixture()
def dashboard(db, config) -> DashboardService:
    return DashboardService(db, config)


@pytest.fixture()
def make_user(users):
    counter = itertools.count(1)

    def _make(username: str | None = None, *roles: UserRole) -> ApplicationUser:
        n = next(counter)
        username = username or f"user{n}"
        user = ApplicationUser(
            username=username,
            email=f"{username}@example.com",
            first_name="Test",
            last_name=f"User{n}",
        )
        return users.create_user(user, roles or (UserRole.USER,))

    return _make


@pytest.fixture()
def admin(make_user) -> AccessContext:
    user = make_user("boss", UserRole.ADMIN)
    return AccessContext(user_id=user.id, is_admin=True)


@pytest.fixture()
def project(projects) -> Project:
    return projects.create_project(Project(name="Apollo", description="Moonshot"))


@pytest.fixture()
def make_task(tasks):
    def _make(title: str, project_id: int | None = None, parent_task_id: int | None = None,
              assignees=(), created_by_id: str | None = None):
        request = CreateTaskRequest(
            title=title,
            project_id=project_id,
            parent_task_id=parent_task_id,
            selected_user_ids=list(assignees),
        )
        return tasks.create_task(request, created_by_id=created_by_id)

    return _make


@pytest.fixture()
def count_rows(db):
    def _count(table: str, where: str = "", params: tuple = ()) -> int:
        query = f"SELECT COUNT(*) AS n FROM {table}" + (f" WHERE {where}" if where else "")
        return db.fetch_one(query, params)["n"]

    return _count
