from typing import Any, Optional


class MalformedIdentifierException(ValueError):
    """Exception raised when an identifier cannot be converted to its native form."""

    def __init__(
        self,
        message: str = "The identifier is not a valid encoding.",
        value: Any = None,
    ):
        super().__init__(message)
        self.value = value


class DecodeException(ValueError):
    """Exception raised when a stored document cannot be mapped onto the entity type."""

    def __init__(
        self,
        message: str = "The document could not be decoded.",
        document: Optional[dict] = None,
    ):
        super().__init__(message)
        self.document = document


class StoreException(Exception):
    """Exception raised when the document store driver reports a failure."""

    def __init__(
        self,
        message: str = "The document store reported an error.",
        error: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.error = error


class KeyAlreadyExistsException(StoreException):
    """Exception raised when trying to insert an entity that would violate a unique constraint."""

    def __init__(
        self,
        message: str = "An object with the same key already exists.",
        error: Optional[BaseException] = None,
    ):
        super().__init__(message, error)
