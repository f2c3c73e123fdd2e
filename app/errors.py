"""
Domain errors raised by the services layer.

Each error has a stable machine-readable kind and a default human-readable
message. Services never deal in HTTP status codes; main.py maps these
classes to responses in one place.
"""


class DriveError(Exception):
    """Base class for all domain errors."""

    kind = "internal_error"
    default_message = "Internal server error"

    def __init__(self, msg: str | None = None):
        self.msg = msg or self.default_message
        super().__init__(self.msg)


class Unauthenticated(DriveError):
    """Missing, malformed, unknown or expired credentials."""

    kind = "unauthenticated"
    default_message = "Not authenticated"


class InvalidCredentials(Unauthenticated):
    """Wrong email/password pair; the only 401 that says why."""

    kind = "invalid_credentials"
    default_message = "Invalid email or password"


class Forbidden(DriveError):
    kind = "forbidden"
    default_message = "You do not have access to this resource"


class NotFound(DriveError):
    kind = "not_found"
    default_message = "Resource not found"


class ValidationError(DriveError):
    kind = "validation_error"
    default_message = "Invalid request"


class InvalidName(ValidationError):
    kind = "invalid_name"
    default_message = "Name is empty or too long"


class InvalidParent(ValidationError):
    """Target folder does not exist or is not owned by the caller."""

    kind = "invalid_parent"
    default_message = "Parent folder does not exist"


class ForeignParent(InvalidParent):
    """Target folder exists but belongs to another user."""

    kind = "forbidden"
    default_message = "Parent folder belongs to another user"


class Conflict(DriveError):
    kind = "conflict"
    default_message = "Conflict"


class EmailTaken(Conflict):
    kind = "email_taken"
    default_message = "Email is already registered"


class CycleDetected(Conflict):
    """A folder would become its own ancestor, or a stored chain loops."""

    kind = "cycle_detected"
    default_message = "Folder cannot be moved into itself or its descendants"


class FolderNotEmpty(Conflict):
    kind = "folder_not_empty"
    default_message = "Folder is not empty"


class FileTooLarge(DriveError):
    kind = "file_too_large"
    default_message = "File exceeds the maximum upload size"


class TooManyUploads(DriveError):
    kind = "too_many_uploads"
    default_message = "Too many uploads in progress; try again later"


class StorageFailure(DriveError):
    """Blob or metadata store unreachable; callers may retry with backoff."""

    kind = "storage_failure"
    default_message = "Storage is temporarily unavailable"


class LengthRequired(DriveError):
    """Upload sent without a Content-Length, so its size cannot be checked up front."""

    kind = "length_required"
    default_message = "Uploads must declare a Content-Length"
