"""Error types for the intake and matching pipeline.

Each error carries a stable ``code`` so the API layer can map it to a
response without string matching on messages.
"""


class IntakeError(Exception):
    """Base class for expected, user-facing pipeline failures."""

    code = "intake_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(IntakeError):
    """Upload rejected before parsing (bad extension, empty, oversize)."""

    code = "validation_error"


class FileTooLargeError(ValidationError):
    code = "file_too_large"


class ParseError(IntakeError):
    """Uploaded content could not be decoded into an activity."""

    code = "parse_error"


class NotFoundError(IntakeError):
    code = "not_found"


class ActivityNotFoundError(NotFoundError):
    """No completed activity for this upload, or it belongs to another user."""

    code = "activity_not_found"

    def __init__(self, message: str = "Activity not found"):
        super().__init__(message)


class PlannedSessionNotFoundError(NotFoundError):
    code = "planned_session_not_found"

    def __init__(self, message: str = "Planned session not found"):
        super().__init__(message)


class UploadNotFoundError(NotFoundError):
    code = "upload_not_found"

    def __init__(self, message: str = "Upload not found"):
        super().__init__(message)


class PersistenceError(IntakeError):
    """Storage write failed; state remains at the last committed write."""

    code = "persistence_error"
