"""
Core Application - Infrastructure & Base Classes

Generic, reusable base classes with no billing-specific logic.

Models (import from core.models):
    - BaseModel: Abstract model with timestamps (created_at, updated_at)

Model Mixins (import from core.model_mixins):
    - UUIDPrimaryKeyMixin: UUID as primary key
    - VersionedMixin: Row version incremented on every save

Services (import from core.services):
    - BaseService: Base class for service layer
    - ServiceResult: Standard result wrapper for success/failure handling

Exceptions (import from core.exceptions):
    - BaseApplicationError: Base exception with error codes
    - NotFoundError, ConflictError, ExternalServiceError

Resilience (import from core.circuit_breaker):
    - CircuitBreaker: Cache-backed circuit breaker shared across workers
"""
