"""Exception classes shared by the upload, share and delivery components."""


class SendFileError(Exception):
    """
    Base exception for every client-facing failure.

    `status_code` is the HTTP status the routes answer with; the message is
    safe to show to the client.
    """

    status_code = 500
    default_message = "Internal error"

    def __init__(self, message=None):
        super().__init__(message or self.default_message)

    @property
    def message(self) -> str:
        return str(self)

    def to_dict(self) -> dict:
        return {"ok": False, "error": self.message}


class ValidationError(SendFileError):
    """
    Raised when request parameters are missing or malformed.
    """
    status_code = 400
    default_message = "Missing or invalid parameters"


class PathViolation(SendFileError):
    """
    Raised when an identifier would resolve outside its confinement root.
    """
    status_code = 400
    default_message = "Invalid path"


class ChunkError(SendFileError):
    """
    Raised when a chunk payload is absent or truncated, or a session is unknown.
    """
    status_code = 400
    default_message = "Chunk upload error"


class MissingChunk(ChunkError):
    """
    Raised by finalize when an expected chunk slot is absent.
    """
    status_code = 409

    def __init__(self, index: int):
        self.index = index
        super().__init__(f"Missing chunk {index}")

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["missing"] = self.index
        return data


class TypeRejected(SendFileError):
    """
    Raised when the assembled artifact is not an allowed archive type.
    """
    status_code = 415
    default_message = "Invalid file type"


class SizeExceeded(SendFileError):
    """
    Raised when the assembled artifact is larger than the configured maximum.
    """
    status_code = 413
    default_message = "File too large"


class NotFound(SendFileError):
    """
    Raised for unknown or expired shares and unknown files.
    """
    status_code = 404
    default_message = "Share not found"


class RangeError(SendFileError):
    """
    Raised when a requested chunk starts at or past the end of the file.
    """
    status_code = 416
    default_message = "Chunk out of range"


class StorageError(SendFileError):
    """
    Raised when a filesystem operation (mkdir, write, rename) fails.
    """
    status_code = 500
    default_message = "Storage error"
