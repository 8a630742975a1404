"""
Core Application - Infrastructure & Base Classes

Shared building blocks for the orders and payments apps.

Models (import from core.models):
    - BaseModel: Abstract model with timestamps (created_at, updated_at)

Model Mixins (import from core.model_mixins):
    - UUIDPrimaryKeyMixin: UUID as primary key
    - VersionedMixin: Optimistic locking version column

Services (import from core.services):
    - BaseService: Base class for service layer
    - ServiceResult: Standard result wrapper for success/failure handling

Locks (import from core.locks):
    - DistributedLock: Redis lock with TTL
    - lock_row / check_version: row locks with version checks

Exceptions (import from core.exceptions):
    - BaseApplicationError and its subclasses

Helpers (import from core.helpers):
    - format_minor_units: Integer cents to decimal string
    - generate_reference_number: Merchant order/refund numbers
    - get_client_ip: Client IP extraction from request
    - to_minor_units: Decimal string to integer cents

Note:
    Django models, model mixins and locks are NOT imported here to avoid
    AppRegistryNotReady errors. Import them directly from their modules.
"""

# Services
from .services import BaseService, ServiceResult

# Exceptions (no Django dependencies)
from .exceptions import (
    BaseApplicationError,
    ConflictError,
    ExternalServiceError,
    InvalidStateTransitionError,
    LockAcquisitionError,
    NotFoundError,
    StaleRecordError,
    ValidationError,
)

# Helpers
from .helpers import (
    format_minor_units,
    generate_reference_number,
    get_client_ip,
    to_minor_units,
)

__all__ = [
    # Services
    "BaseService",
    "ServiceResult",
    # Exceptions
    "BaseApplicationError",
    "ValidationError",
    "NotFoundError",
    "ConflictError",
    "ExternalServiceError",
    "StaleRecordError",
    "LockAcquisitionError",
    "InvalidStateTransitionError",
    # Helpers
    "format_minor_units",
    "generate_reference_number",
    "get_client_ip",
    "to_minor_units",
]
