"""
Exceptions raised by the object store and its backend.
"""


class ObjectStoreError(Exception):
    """Base class for every error raised by the object store."""


class InvalidIdentifier(ObjectStoreError):
    """Raised when an object id does not match the identifier syntax."""

    def __init__(self, object_id: str):
        self.object_id = object_id
        super().__init__("Incorrect ID: wrong ID syntax")


class IdentifierTooLong(ObjectStoreError):
    """Raised when an object id exceeds the maximum length."""

    def __init__(self, object_id: str, max_length: int):
        self.object_id = object_id
        self.max_length = max_length
        super().__init__(f"Incorrect ID: identifier exceeds {max_length} characters")


class PayloadTooLarge(ObjectStoreError):
    """Raised when a payload exceeds the maximum size."""

    def __init__(self, size: int, max_size: int):
        self.size = size
        self.max_size = max_size
        super().__init__(f"Content cannot exceeds {max_size} bytes")


class MissingContentType(ObjectStoreError):
    """Raised when a write carries no content type."""

    def __init__(self):
        super().__init__("Content-Type cannot be empty")


class ObjectNotFound(ObjectStoreError):
    """Raised when no record is stored under the requested id."""

    def __init__(self, object_id: str, message: str | None = None):
        self.object_id = object_id
        super().__init__(message or f"{object_id} does not exist")


class BodyReadError(ObjectStoreError):
    """Raised when the request payload could not be read from the transport."""


class CodecError(ObjectStoreError):
    """Raised when a record cannot be encoded or decoded."""


class BackendError(ObjectStoreError):
    """
    Raised when the key-value backend fails.

    Covers open failures (locked or unreadable file) as well as
    failed transactions.
    """


class BucketNotFound(BackendError):
    """Raised when a transaction addresses a bucket that was never created."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"bucket not found: {name}")


class TransactionError(BackendError):
    """Raised when a transaction is used in a way its scope does not allow."""
