"""
Project model module for projects, reusable project templates and their sections.
This module defines the data models that describe a project and the hierarchical
blueprint it can be seeded from, with validation logic for field formats and
structural business rules.

The models are designed to be:
- Validatable: Built-in validation logic for business rules
- Hierarchical: Sections expose a derived ``children`` list filled by the hierarchy builder
- Serializable: Easy JSON/database serialization
"""

import sqlite3
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Dict, List, Any

from taskhub.models.base import BaseModel, ValidationError, ValidationLevel
from taskhub.utils.logging import get_logger
from taskhub.utils.temporal import utc_now, from_db

logger = get_logger(__name__)

TEMPLATE_VERSION_MAX_LENGTH = 20

class TaskPriority(Enum):
    """Priority levels for template sections and tasks."""
    LOW = 'Low'
    MEDIUM = 'Medium'
    HIGH = 'High'

@dataclass
class Project(BaseModel):
    """
    A project owning a forest of tasks.

    ``is_public`` is the visibility flag; a cloned project inherits it from
    its source.
    """
    name: str
    description: Optional[str] = None
    is_public: bool = True
    created_at: datetime = field(default_factory=utc_now)
    id: Optional[int] = None
    version: int = 1

    def _validate_fields(self):
        """Validate individual fields."""
        if not self.name or not self.name.strip():
            raise ValidationError("Project name is required", "name")

        if len(self.name) > 200:
            raise ValidationError("Project name cannot exceed 200 characters", "name")

    def _validate_business_rules(self):
        """Validate business rules."""
        if self.description and len(self.description) > 4000:
            raise ValidationError("Project description is unusually long", "description", ValidationLevel.WARNING)

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> 'Project':
        return cls(
            id=row['id'],
            name=row['name'],
            description=row['description'],
            is_public=bool(row['is_public']),
            created_at=from_db(row['created_at']),
            version=row['version']
        )

    def __str__(self):
        return f"Project(id={self.id}, name='{self.name}')"

@dataclass
class ProjectTemplate(BaseModel):
    """
    A reusable blueprint for the task tree of a new project.

    ``template_version`` is a free-form label such as "1.0"; ``version`` is the
    optimistic concurrency counter.
    """
    name: str
    description: Optional[str] = None
    template_version: str = '1.0'
    last_modified: datetime = field(default_factory=utc_now)
    id: Optional[int] = None
    version: int = 1

    def _validate_fields(self):
        """Validate individual fields."""
        if not self.name or not self.name.strip():
            raise ValidationError("Template name is required", "name")

        if not self.template_version or len(self.template_version) > TEMPLATE_VERSION_MAX_LENGTH:
            raise ValidationError(
                f"Template version must be 1-{TEMPLATE_VERSION_MAX_LENGTH} characters",
                "template_version"
            )

    def _validate_business_rules(self):
        """Validate business rules."""
        pass

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> 'ProjectTemplate':
        return cls(
            id=row['id'],
            name=row['name'],
            description=row['description'],
            template_version=row['template_version'],
            last_modified=from_db(row['last_modified']),
            version=row['version']
        )

    def __str__(self):
        return f"ProjectTemplate(id={self.id}, name='{self.name}', version='{self.template_version}')"

@dataclass
class TemplateSection(BaseModel):
    """
    One node of a template. Expanding a template produces one task per section.

    The parent link is restrict-on-delete in storage, so removing a section
    that still has children must go through the leaf-first cascade.
    """
    title: str
    project_template_id: int
    description: Optional[str] = None
    priority: TaskPriority = TaskPriority.MEDIUM
    due_date_offset_days: Optional[int] = None
    order: int = 0
    parent_section_id: Optional[int] = None
    id: Optional[int] = None
    version: int = 1
    children: List['TemplateSection'] = field(default_factory=list, repr=False, compare=False)

    @property
    def parent_id(self) -> Optional[int]:
        return self.parent_section_id

    def _validate_fields(self):
        """Validate individual fields."""
        if not self.title or not self.title.strip():
            raise ValidationError("Section title is required", "title")

        if not isinstance(self.priority, TaskPriority):
            raise ValidationError(f"Invalid priority: {self.priority}", "priority")

        if self.due_date_offset_days is not None and self.due_date_offset_days < 0:
            raise ValidationError("Due date offset cannot be negative", "due_date_offset_days")

    def _validate_business_rules(self):
        """Validate business rules."""
        if self.id is not None and self.parent_section_id == self.id:
            raise ValidationError("A section cannot be its own parent", "parent_section_id")

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> 'TemplateSection':
        return cls(
            id=row['id'],
            title=row['title'],
            description=row['description'],
            priority=TaskPriority(row['priority']),
            due_date_offset_days=row['due_date_offset_days'],
            order=row['sort_order'],
            project_template_id=row['project_template_id'],
            parent_section_id=row['parent_section_id'],
            version=row['version']
        )

    def to_preview(self) -> Dict[str, Any]:
        """Nested preview node as served to the template preview endpoint."""
        root = None
        stack = [(self, None)]

        while stack:
            section, parent_preview = stack.pop()
            preview = {
                'title': section.title,
                'description': section.description,
                'priority': section.priority.value,
                'dueDateOffsetDays': section.due_date_offset_days,
                'children': []
            }
            if parent_preview is None:
                root = preview
            else:
                parent_preview['children'].append(preview)
            # Reversed so siblings are popped, and appended, in their stored order
            for child in reversed(section.children):
                stack.append((child, preview))

        return root

    def __str__(self):
        return f"TemplateSection(id={self.id}, title='{self.title}', parent={self.parent_section_id})"

@dataclass
class SectionMove:
    """One entry of a bulk structure update from the section editor."""
    id: int
    parent_section_id: Optional[int] = None
    order: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SectionMove':
        parent = data.get('parent_section_id', data.get('parentSectionId'))
        return cls(
            id=int(data['id']),
            parent_section_id=int(parent) if parent is not None else None,
            order=int(data.get('order', 0))
        )
