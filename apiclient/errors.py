"""
apiclient.errors - Error taxonomy for API requests

Every terminal failure delivered in a ``Failure`` result carries one of the
exceptions below. Each exception exposes an ``ErrorKind`` and, for transport
and HTTP status failures, a numeric ``code``.

Example:
    >>> result = await client.request("/users/1", response_model=User)
    >>> if isinstance(result, Failure) and result.error.kind is ErrorKind.HTTP_STATUS_ERROR:
    ...     print(result.error.code)
"""

from enum import Enum

# Transport error codes (URL loading system numbering)
CODE_UNKNOWN = -1
CODE_CANCELLED = -999
CODE_TIMED_OUT = -1001
CODE_CANNOT_CONNECT_TO_HOST = -1004
CODE_NOT_CONNECTED_TO_INTERNET = -1009


class ErrorKind(str, Enum):
    """Kinds of terminal request failures."""

    BAD_REQUEST = "bad_request"
    RESPONSE_NOT_VALID_JSON = "response_not_valid_json"
    NO_DATA_RETURNED = "no_data_returned"
    UNKNOWN_ERROR = "unknown_error"
    TRANSPORT_ERROR = "transport_error"
    HTTP_STATUS_ERROR = "http_status_error"


class ApiClientError(Exception):
    """Base exception for all API client errors."""

    kind: ErrorKind = ErrorKind.UNKNOWN_ERROR

    def __init__(self, message: str = "", code: int | None = None) -> None:
        super().__init__(message or self.__class__.__name__)
        self.code = code


class BadRequestError(ApiClientError):
    """Raised when a request cannot be built (bad URL, unsupported parameters)."""

    kind = ErrorKind.BAD_REQUEST


class ResponseNotValidJSONError(ApiClientError):
    """Raised when the response body does not decode into the expected type."""

    kind = ErrorKind.RESPONSE_NOT_VALID_JSON


class NoDataReturnedError(ApiClientError):
    """Raised when a successful response carries no body."""

    kind = ErrorKind.NO_DATA_RETURNED


class UnknownApiError(ApiClientError):
    """Raised for failures that fit no other category."""

    kind = ErrorKind.UNKNOWN_ERROR


class TransportError(ApiClientError):
    """
    Raised when no HTTP response was received.

    Attributes:
        code: Transport error code (e.g. -1009 offline, -1001 timed out)
    """

    kind = ErrorKind.TRANSPORT_ERROR

    def __init__(self, code: int, message: str = "") -> None:
        super().__init__(message or f"Transport error {code}", code=code)


class OfflineError(TransportError):
    """Raised before sending when the network is known to be unreachable."""

    def __init__(self, message: str = "The Internet connection appears to be offline") -> None:
        super().__init__(CODE_NOT_CONNECTED_TO_INTERNET, message)


class HTTPStatusError(ApiClientError):
    """Raised when the server answers with a status outside [200, 300)."""

    kind = ErrorKind.HTTP_STATUS_ERROR

    def __init__(self, status_code: int, message: str = "") -> None:
        super().__init__(message or f"Status code: {status_code}", code=status_code)

    @property
    def status_code(self) -> int:
        return self.code  # type: ignore[return-value]


class RefreshError(ApiClientError):
    """Raised when the identity provider fails to refresh the credential."""


class RequestCancelledError(TransportError):
    """Raised by ``Cancelled.unwrap()`` for a superseded or cancelled request."""

    def __init__(self, message: str = "Request was cancelled") -> None:
        super().__init__(CODE_CANCELLED, message)
