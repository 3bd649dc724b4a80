from typing import Any, Dict

# Status classes let automated callers decide what to do next
RETRY = "retry"
FIX_REQUEST = "fix_request"
NOT_ALLOWED = "not_allowed"
SERVER_ERROR = "server_error"

class DeliveryError(Exception):
    """
    Base class for every domain failure raised by the services.
    Rendered by a single handler in main as
    {"error": kind, "detail": ..., "status_class": ..., **extra}.
    """
    kind = "delivery_error"
    status_code = 400
    status_class = FIX_REQUEST

    def __init__(self, detail: str = "", **extra: Any):
        super().__init__(detail or self.kind)
        self.detail = detail or self.kind
        self.extra = extra

    def to_dict(self) -> Dict[str, Any]:
        body = {
            "error": self.kind,
            "detail": self.detail,
            "status_class": self.status_class,
        }
        body.update(self.extra)
        return body

class NotFoundOrDenied(DeliveryError):
    # Absent and forbidden look identical to the caller
    kind = "not_found_or_denied"
    status_code = 404
    status_class = NOT_ALLOWED

    def __init__(self, detail: str = "Not found or access denied", **extra: Any):
        super().__init__(detail, **extra)

class SessionNotFound(NotFoundOrDenied):
    def __init__(self, detail: str = "Upload session not found", **extra: Any):
        super().__init__(detail, **extra)

class InvalidState(DeliveryError):
    kind = "invalid_state"
    status_code = 409
    status_class = NOT_ALLOWED

class IncompleteUpload(InvalidState):
    pass

class InvalidInput(DeliveryError):
    kind = "invalid_input"
    status_code = 400
    status_class = FIX_REQUEST

class InvalidChunkIndex(InvalidInput):
    pass

class MissingRequiredInputs(DeliveryError):
    kind = "missing_inputs"
    status_code = 422
    status_class = FIX_REQUEST

class Conflict(DeliveryError):
    kind = "conflict"
    status_code = 409
    status_class = NOT_ALLOWED

class Expired(DeliveryError):
    kind = "expired"
    status_code = 410
    status_class = NOT_ALLOWED

class KeyExpired(Expired):
    def __init__(self, detail: str = "Key envelope expired, request a new grant", **extra: Any):
        super().__init__(detail, **extra)

class TransientStoreError(DeliveryError):
    kind = "transient_store_error"
    status_code = 503
    status_class = RETRY

class ConfigurationError(DeliveryError):
    kind = "configuration_error"
    status_code = 500
    status_class = SERVER_ERROR

class ChunkIntegrityError(DeliveryError):
    kind = "integrity_error"
    status_code = 500
    status_class = SERVER_ERROR

class BlobStoreUnavailable(Exception):
    """Raised by blob store backends when the backing service cannot be reached."""
