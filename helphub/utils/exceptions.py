class ServiceError(Exception):
    status = 400

    def __init__(self, code="SERVICE_ERROR", message="Service error", details=None, status=None):
        self.code = code
        self.message = message
        self.details = details or {}
        if status is not None:
            self.status = status
        super().__init__(message)


class ValidationError(ServiceError):
    status = 400

    def __init__(self, message="Validation failed", details=None, code="VALIDATION_ERROR"):
        super().__init__(code, message, details)


class ForbiddenError(ServiceError):
    status = 403

    def __init__(self, message="Access denied", details=None, code="FORBIDDEN"):
        super().__init__(code, message, details)


class NotFoundError(ServiceError):
    status = 404

    def __init__(self, message="Resource not found", details=None, code="NOT_FOUND"):
        super().__init__(code, message, details)


class ConflictError(ServiceError):
    """Operation is not allowed in the current state (transition or duplicate)."""

    status = 409

    def __init__(self, code="INVALID_TRANSITION", message="Invalid state transition", details=None):
        super().__init__(code, message, details)
