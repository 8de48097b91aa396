class FileStoreError(Exception):
    """Base for failures the HTTP layer knows how to translate.

    ``message`` is always safe to show to a client; anything sensitive
    belongs in the log, not here.
    """

    code = "error"
    message = "request failed"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.message)
        if message:
            self.message = message


class InvalidInput(FileStoreError):
    code = "bad_request"
    message = "invalid input"


class SecurityViolation(FileStoreError):
    code = "security_violation"
    message = "invalid file path"


class NotFound(FileStoreError):
    code = "not_found"
    message = "not found"


class Forbidden(FileStoreError):
    code = "forbidden"
    message = "forbidden"


class Expired(FileStoreError):
    code = "expired"
    message = "refresh token expired, please login again"


class StorageIOFailure(FileStoreError):
    code = "storage_error"
    message = "storage operation failed"


class Unauthenticated(FileStoreError):
    code = "unauthorized"
    message = "authentication required"


class Conflict(FileStoreError):
    code = "conflict"
    message = "resource already exists"


class PayloadTooLarge(FileStoreError):
    code = "payload_too_large"
    message = "file exceeds max upload size"
