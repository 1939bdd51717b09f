"""Error definitions for s3odm."""


class S3ODMError(Exception):
    """Base class for every error raised by s3odm.

    Attributes:
        message: Human-readable error description.
        status: The HTTP status code that caused the error, if any.
    """

    def __init__(self, message: str, status: int | None = None) -> None:
        """Initialize the error.

        Args:
            message: Error description.
            status: HTTP status code returned by the store, if any.
        """
        super().__init__(message)
        self.message = message
        self.status = status


# -- Transport errors ----------------------------------------------------------


class AuthenticationError(S3ODMError):
    """The store rejected the credentials or the request signature."""

    def __init__(self, message: str = "Access Denied") -> None:
        super().__init__(message, status=403)


class NotFoundError(S3ODMError):
    """The addressed object does not exist."""

    def __init__(self, key: str = "") -> None:
        message = f"The specified key does not exist: {key}" if key else "Not Found"
        super().__init__(message, status=404)
        self.key = key


class ConflictError(S3ODMError):
    """The store reported a conflicting operation."""

    def __init__(self, body: str = "") -> None:
        super().__init__(f"Conflict: {body}" if body else "Conflict", status=409)
        self.body = body


class UnhandledStatusError(S3ODMError):
    """The store answered with a status code the caller did not expect."""

    def __init__(self, status: int) -> None:
        super().__init__(f"HTTP Error {status}", status=status)


class MalformedResponseError(S3ODMError):
    """A listing response could not be parsed as XML."""

    def __init__(self, message: str = "The listing response is not well-formed XML.") -> None:
        super().__init__(message)


# -- Signing errors ------------------------------------------------------------


class InvalidBodyType(S3ODMError):
    """The request body cannot be hashed for signing."""

    def __init__(
        self,
        message: str = (
            "body must be a str, bytes, bytearray or memoryview, "
            "unless you include the x-amz-content-sha256 header"
        ),
    ) -> None:
        super().__init__(message)


# -- Repository errors ---------------------------------------------------------


class RecordExistsError(S3ODMError):
    """A record with the same identifier is already stored."""

    def __init__(self, _id: str) -> None:
        super().__init__(f"Record with _id [{_id}] already exists")
        self.id = _id


class RecordNotFoundError(S3ODMError):
    """The record to update is not stored."""

    def __init__(self, _id: str) -> None:
        super().__init__(f"Record with _id [{_id}] does not exist")
        self.id = _id
