"""
Error taxonomy for the maintenance engine.

Every error carries a stable code, an HTTP status used by the REST layer,
and an optional details dict that is returned to the caller verbatim.
"""

from typing import Any, Dict, Optional


class MaintenanceEngineError(Exception):
    """Base class for all engine errors"""

    code = "ENGINE_ERROR"
    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            'code': self.code,
            'message': self.message,
            'details': self.details
        }


class NotFoundError(MaintenanceEngineError):
    """Schedule, asset, execution, prediction or model is absent"""

    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, entity: str, entity_id: Any):
        super().__init__(
            f"{entity} with ID '{entity_id}' not found",
            {'entity': entity, 'id': entity_id}
        )
        self.entity = entity
        self.entity_id = entity_id


class InvalidConfigurationError(MaintenanceEngineError):
    """Schedule or model definition cannot be evaluated"""

    code = "INVALID_CONFIGURATION"
    status_code = 400


class ConflictError(MaintenanceEngineError):
    """Operation rejected by the current state (dedup window, inactive, terminal)"""

    code = "CONFLICT"
    status_code = 409


class InsufficientDataError(MaintenanceEngineError):
    """Too few data points for the requested computation"""

    code = "INSUFFICIENT_DATA"
    status_code = 422

    def __init__(self, message: str, minimum_required: int, found: int):
        super().__init__(message, {'minimum_required': minimum_required, 'found': found})
        self.minimum_required = minimum_required
        self.found = found


class TransientCollaboratorError(MaintenanceEngineError):
    """An external collaborator (asset directory, work-order service) failed"""

    code = "COLLABORATOR_UNAVAILABLE"
    status_code = 503

    def __init__(self, collaborator: str, message: str):
        super().__init__(f"{collaborator} unavailable: {message}", {'collaborator': collaborator})
        self.collaborator = collaborator
