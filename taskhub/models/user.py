"""
User model module for application users, their roles and the access context
handed to the services.

The services never see credentials: an operation receives an ``AccessContext``
carrying the acting user id and whether that user is an administrator.
"""

import re
import sqlite3
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from taskhub.models.base import BaseModel, ValidationError
from taskhub.utils.logging import get_logger
from taskhub.utils.temporal import utc_now, from_db

logger = get_logger(__name__)

EMAIL_PATTERN = r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$'

class UserRole(Enum):
    """Role memberships known to the identity provider."""
    ADMIN = 'Admin'     # Full administrative access
    USER = 'User'       # Regular team member
    CLIENT = 'Client'   # External client with limited access

@dataclass
class ApplicationUser(BaseModel):
    """
    An application user.

    Ids are opaque strings issued by the identity provider; a fresh UUID is
    generated when none is supplied.
    """
    username: str
    email: str
    first_name: str
    last_name: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=utc_now)

    def _validate_fields(self):
        """Validate individual fields."""
        if not self.username or len(self.username) < 2:
            raise ValidationError("Username must be at least 2 characters", "username")

        if not self.email or not re.match(EMAIL_PATTERN, self.email):
            raise ValidationError("Invalid email format", "email")

        if not self.first_name:
            raise ValidationError("First name is required", "first_name")

        if not self.last_name:
            raise ValidationError("Last name is required", "last_name")

    def _validate_business_rules(self):
        """Validate business rules."""
        pass

    def get_full_name(self) -> str:
        """Get user's full name."""
        return f"{self.first_name} {self.last_name}"

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> 'ApplicationUser':
        return cls(
            id=row['id'],
            username=row['username'],
            email=row['email'],
            first_name=row['first_name'],
            last_name=row['last_name'],
            created_at=from_db(row['created_at'])
        )

    def __str__(self):
        return f"ApplicationUser(username='{self.username}')"

@dataclass(frozen=True)
class AccessContext:
    """Capability check passed into the services in place of ad hoc role lookups."""
    user_id: str
    is_admin: bool = False

    def can_act_on(self, assigned_user_ids) -> bool:
        """True when the user is an administrator or one of the assignees."""
        return self.is_admin or self.user_id in assigned_user_ids
