"""
Base data models module for type safety and validation across the task management services.
This module provides the foundational model class, validation types, the error taxonomy
shared by every service, and the result object returned by report-style operations.

The models are designed to be:
- Validatable: Built-in validation logic for field formats and business rules
- Serializable: Easy JSON/database serialization
- Extensible: Base classes that concrete entities inherit from
"""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, asdict
from datetime import datetime, date
from enum import Enum, auto
from typing import Optional, Dict, List, Any

from taskhub.utils.logging import get_logger

logger = get_logger(__name__)

class ValidationLevel(Enum):
    """Validation severity levels."""
    CRITICAL = auto()    # Will raise exception
    WARNING = auto()     # Will log warning but continue
    INFO = auto()        # Will log informational message

class TaskHubError(Exception):
    """Root of every error raised by the services."""

class ValidationError(TaskHubError):
    """Base exception for validation errors."""
    def __init__(self, message: str, field: str = None, level: ValidationLevel = ValidationLevel.CRITICAL):
        self.message = message
        self.field = field
        self.level = level
        super().__init__(message)

class NotFoundError(TaskHubError):
    """A referenced project, template, section, task or user does not exist."""
    def __init__(self, entity: str, entity_id: Any):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")

class InvalidOperationError(TaskHubError):
    """The operation is rejected by a business rule and has no effect."""

class ConcurrencyConflictError(TaskHubError):
    """The row was modified by someone else between load and save."""
    def __init__(self, entity: str, entity_id: Any):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"An unexpected error occurred while updating {entity} {entity_id}. "
                         f"It was modified by another user.")

class TransactionFailureError(TaskHubError):
    """A compound mutation failed and was rolled back as a whole."""

@dataclass
class OperationResult:
    """
    Outcome of an operation that reports rather than raises.

    Attributes:
        success: Whether the operation took effect
        message: Human-readable reason
        project_id: Project the affected task belongs to, where relevant
    """
    success: bool
    message: str
    project_id: Optional[int] = None

    def __bool__(self):
        return self.success

class BaseModel(ABC):
    """
    Base model class with validation and serialization capabilities.

    All domain models inherit from this class to ensure:
    - Consistent validation
    - JSON serialization
    - Error handling
    """

    def validate(self) -> List[Dict[str, Any]]:
        """
        Validate the model instance.

        Returns:
            List of validation results (empty if valid)
        """
        results = []
        try:
            self._validate_fields()
            self._validate_business_rules()
        except ValidationError as e:
            results.append({
                'field': e.field,
                'message': e.message,
                'level': e.level.name,
                'success': False
            })

        return results

    def is_valid(self) -> bool:
        """
        Check if the model is valid.

        Returns:
            True if valid, False otherwise
        """
        validation_results = self.validate()
        return not any(result['level'] == 'CRITICAL' for result in validation_results)

    def ensure_valid(self):
        """
        Raise the first critical validation failure, if any.

        Raises:
            ValidationError: If the model breaks a field or business rule
        """
        for result in self.validate():
            if result['level'] == 'CRITICAL':
                raise ValidationError(result['message'], result['field'])
            logger.warning(f"{type(self).__name__}: {result['message']}")

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert model to dictionary.

        Returns:
            Dictionary representation of the model
        """
        return asdict(self)

    def to_json(self) -> str:
        """
        Convert model to JSON string.

        Returns:
            JSON string representation
        """
        return json.dumps(self.to_dict(), default=self._json_default)

    @staticmethod
    def _json_default(obj: Any) -> Any:
        """Default JSON serializer for non-serializable objects."""
        if isinstance(obj, (datetime, date)):
            return obj.isoformat()
        if isinstance(obj, Enum):
            return obj.value
        if isinstance(obj, (set, frozenset)):
            return sorted(obj)
        if hasattr(obj, 'to_dict'):
            return obj.to_dict()
        raise TypeError(f"Object of type {type(obj)} is not JSON serializable")

    @abstractmethod
    def _validate_fields(self):
        """Validate individual fields."""
        pass

    @abstractmethod
    def _validate_business_rules(self):
        """Validate business rules and relationships."""
        pass
