"""Service error taxonomy.

Every error raised by the domain modules carries the HTTP status it maps
to and a stable machine-readable code. ``main`` renders them into the
response envelope.
"""


class ServiceError(Exception):
    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(ServiceError):
    status_code = 400
    code = "VALIDATION_FAILED"


class NotFoundError(ServiceError):
    status_code = 404
    code = "NOT_FOUND"


class ConsistencyError(ServiceError):
    status_code = 400
    code = "MIXED_RESTAURANTS"


class AvailabilityError(ServiceError):
    status_code = 400
    code = "ITEMS_UNAVAILABLE"

    def __init__(self, item_names):
        self.item_names = list(item_names)
        super().__init__(f"Some items are unavailable: {', '.join(self.item_names)}")


class StateError(ServiceError):
    status_code = 400
    code = "INVALID_STATE"


class ConflictError(ServiceError):
    status_code = 400
    code = "CONFLICT"


class SignatureError(ServiceError):
    status_code = 400
    code = "PAYMENT_VERIFICATION_FAILED"

    def __init__(self):
        super().__init__("Payment verification failed")


class AuthError(ServiceError):
    status_code = 401
    code = "UNAUTHENTICATED"


class ForbiddenError(ServiceError):
    status_code = 403
    code = "FORBIDDEN"


class GatewayError(ServiceError):
    status_code = 502
    code = "PAYMENT_GATEWAY_ERROR"
