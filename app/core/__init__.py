"""
Core Application - Infrastructure & Base Classes

Generic, reusable building blocks shared by the orders, payments and
disputes apps. No settlement logic lives here.

Models (import from core.models):
    - BaseModel: Abstract model with timestamps (created_at, updated_at)

Model Mixins (import from core.model_mixins):
    - UUIDPrimaryKeyMixin: UUID as primary key
    - VersionedMixin: Optimistic locking version column
    - AppendOnlyMixin: Rows that refuse updates and deletes

Services (import from core.services):
    - BaseService: Base class for service layer (logger, atomic, clock)
    - ServiceResult: Standard result wrapper for success/failure handling

Exceptions (import from core.exceptions):
    - BaseApplicationError: Base exception with error codes
    - ValidationError, NotFoundError, PermissionDeniedError,
      ConflictError, ExternalServiceError

Protocols (import from core.protocols):
    - Clock, SystemClock, FixedClock

Views (import from core.views):
    - health_check, failure_response, error_response

Note:
    Django models and model mixins are NOT imported here to avoid
    AppRegistryNotReady errors. Import them directly from their modules.
"""

from .exceptions import (
    BaseApplicationError,
    ConflictError,
    ExternalServiceError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from .protocols import Clock, FixedClock, SystemClock
from .services import BaseService, ServiceResult

__all__ = [
    # Services
    "BaseService",
    "ServiceResult",
    # Exceptions
    "BaseApplicationError",
    "ValidationError",
    "NotFoundError",
    "PermissionDeniedError",
    "ConflictError",
    "ExternalServiceError",
    # Protocols
    "Clock",
    "FixedClock",
    "SystemClock",
]
