"""
Task model module for task items, their assignment and completion records, and
the request objects used to create, edit and restructure tasks.

The models are designed to be:
- Validatable: Built-in validation logic for field formats and business rules
- Hierarchical: Tasks expose a derived ``children`` list that is rebuilt on every read
- Serializable: Easy JSON/database serialization

Status lifecycle:
    Pending -> InProgress -> Completed -> Cancelled

``Completed`` is reached manually or automatically once every assignee has
recorded a completion. It is never reverted automatically. ``Cancelled`` is
terminal.
"""

import sqlite3
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, auto
from typing import Optional, Dict, List, Any, Set

from taskhub.models.base import BaseModel, ValidationError, ValidationLevel
from taskhub.models.project import TaskPriority
from taskhub.utils.logging import get_logger
from taskhub.utils.temporal import utc_now, from_db

logger = get_logger(__name__)

class TaskStatus(Enum):
    """Task status values as stored."""
    PENDING = 'Pending'
    IN_PROGRESS = 'InProgress'
    COMPLETED = 'Completed'
    CANCELLED = 'Cancelled'

STATUS_TRANSITIONS = {
    TaskStatus.PENDING: {TaskStatus.IN_PROGRESS, TaskStatus.COMPLETED, TaskStatus.CANCELLED},
    TaskStatus.IN_PROGRESS: {TaskStatus.COMPLETED, TaskStatus.CANCELLED},
    TaskStatus.COMPLETED: {TaskStatus.CANCELLED},
    TaskStatus.CANCELLED: set()  # Terminal
}

def can_transition(current: TaskStatus, new_status: TaskStatus) -> bool:
    """Whether a manual status change from ``current`` to ``new_status`` is allowed."""
    if current == new_status:
        return True
    return new_status in STATUS_TRANSITIONS.get(current, set())

class AssignmentType(Enum):
    """How the assignees of a new task are chosen."""
    SPECIFIC_USERS = auto()  # The users listed in the request
    ALL_USERS = auto()       # Every known user

@dataclass
class TaskItem(BaseModel):
    """
    A task, optionally inside a project and optionally under a parent task.

    ``assigned_user_ids`` and ``completed_user_ids`` are loaded alongside the
    row for display; they are persisted through their own tables.
    """
    title: str
    description: Optional[str] = None
    created_at: datetime = field(default_factory=utc_now)
    due_date: Optional[datetime] = None
    status: TaskStatus = TaskStatus.PENDING
    priority: TaskPriority = TaskPriority.MEDIUM
    project_id: Optional[int] = None
    parent_task_id: Optional[int] = None
    created_by_id: Optional[str] = None
    id: Optional[int] = None
    version: int = 1
    assigned_user_ids: Set[str] = field(default_factory=set, compare=False)
    completed_user_ids: Set[str] = field(default_factory=set, compare=False)
    children: List['TaskItem'] = field(default_factory=list, repr=False, compare=False)

    @property
    def parent_id(self) -> Optional[int]:
        return self.parent_task_id

    def _validate_fields(self):
        """Validate individual fields."""
        if not self.title or not self.title.strip():
            raise ValidationError("Task title is required", "title")

        if not isinstance(self.status, TaskStatus):
            raise ValidationError(f"Invalid status: {self.status}", "status")

        if not isinstance(self.priority, TaskPriority):
            raise ValidationError(f"Invalid priority: {self.priority}", "priority")

    def _validate_business_rules(self):
        """Validate business rules."""
        if self.id is not None and self.parent_task_id == self.id:
            raise ValidationError("A task cannot be its own parent", "parent_task_id")

        if self.due_date and self.created_at and self.due_date < self.created_at:
            raise ValidationError("Due date is before the creation date", "due_date", ValidationLevel.WARNING)

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> 'TaskItem':
        return cls(
            id=row['id'],
            title=row['title'],
            description=row['description'],
            created_at=from_db(row['created_at']),
            due_date=from_db(row['due_date']),
            status=TaskStatus(row['status']),
            priority=TaskPriority(row['priority']),
            project_id=row['project_id'],
            parent_task_id=row['parent_task_id'],
            created_by_id=row['created_by_id'],
            version=row['version']
        )

    def __str__(self):
        return f"TaskItem(id={self.id}, title='{self.title}', status={self.status.value})"

@dataclass
class TaskEditItem:
    """
    One row of a flattened, depth-annotated task tree.

    This is both what the tree editor is given and what it submits back;
    ``is_deleted`` marks rows the editor removed.
    """
    id: int
    title: str
    description: Optional[str] = None
    parent_task_id: Optional[int] = None
    depth: int = 0
    is_deleted: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TaskEditItem':
        """Build an item from a submitted mapping (snake_case, camelCase or PascalCase keys)."""
        def pick(*keys, default=None):
            for key in keys:
                if key in data:
                    return data[key]
            return default

        return cls(
            id=int(pick('id', 'Id')),
            title=pick('title', 'Title', default=''),
            description=pick('description', 'Description'),
            parent_task_id=pick('parent_task_id', 'parentTaskId', 'ParentTaskId', 'parent_id', 'parentId', 'ParentId'),
            depth=int(pick('depth', 'Depth', default=0)),
            is_deleted=bool(pick('is_deleted', 'isDeleted', 'IsDeleted', default=False))
        )

@dataclass
class TaskTreeEdit:
    """A subtree prepared for bulk editing."""
    root_task_id: int
    root_task_title: str
    tasks: List[TaskEditItem] = field(default_factory=list)

@dataclass
class CreateTaskRequest(BaseModel):
    """Input for creating a single task together with its assignments."""
    title: str
    description: Optional[str] = None
    due_date: Optional[datetime] = None
    priority: TaskPriority = TaskPriority.MEDIUM
    project_id: Optional[int] = None
    parent_task_id: Optional[int] = None
    assignment_type: AssignmentType = AssignmentType.SPECIFIC_USERS
    selected_user_ids: List[str] = field(default_factory=list)

    def _validate_fields(self):
        """Validate individual fields."""
        if not self.title or not self.title.strip():
            raise ValidationError("Task title is required", "title")

        if not isinstance(self.assignment_type, AssignmentType):
            raise ValidationError(f"Invalid assignment type: {self.assignment_type}", "assignment_type")

    def _validate_business_rules(self):
        """Validate business rules."""
        if self.assignment_type == AssignmentType.ALL_USERS and self.selected_user_ids:
            logger.warning("selected_user_ids is ignored when assigning all users")

@dataclass
class EditTaskRequest(BaseModel):
    """
    Input for editing a task's fields and replacing its assignment set.

    ``version`` is the version the caller loaded; when omitted the current
    stored version is used.
    """
    id: int
    title: str
    description: Optional[str] = None
    due_date: Optional[datetime] = None
    status: TaskStatus = TaskStatus.PENDING
    priority: TaskPriority = TaskPriority.MEDIUM
    project_id: Optional[int] = None
    selected_user_ids: List[str] = field(default_factory=list)
    version: Optional[int] = None

    def _validate_fields(self):
        """Validate individual fields."""
        if not self.title or not self.title.strip():
            raise ValidationError("Task title is required", "title")

        if not isinstance(self.status, TaskStatus):
            raise ValidationError(f"Invalid status: {self.status}", "status")

    def _validate_business_rules(self):
        """Validate business rules."""
        pass
