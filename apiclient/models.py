"""
Shared request and result models.

This module defines the request description handed to the transport and the
result union delivered to callers.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from apiclient.errors import ApiClientError, RequestCancelledError

T = TypeVar("T")


class HTTPMethod(str, Enum):
    """Supported HTTP methods."""

    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"
    DELETE = "DELETE"
    HEAD = "HEAD"
    OPTIONS = "OPTIONS"


class ParameterEncoding(str, Enum):
    """How request parameters are placed on the wire."""

    URL = "url"  # query string for GET/HEAD/DELETE, form body otherwise
    QUERY_STRING = "query_string"
    HTTP_BODY = "http_body"
    JSON = "json"


_QUERY_METHODS = frozenset({HTTPMethod.GET, HTTPMethod.HEAD, HTTPMethod.DELETE})


class ApiRequest(BaseModel):
    """Immutable description of one outbound request."""

    model_config = ConfigDict(frozen=True)

    method: HTTPMethod = HTTPMethod.GET
    url: str
    parameters: dict[str, Any] | None = None
    encoding: ParameterEncoding = ParameterEncoding.URL
    headers: dict[str, str] = Field(default_factory=dict)

    def with_header(self, name: str, value: str) -> "ApiRequest":
        """Return a copy of this request with one header replaced."""
        headers = {k: v for k, v in self.headers.items() if k.lower() != name.lower()}
        headers[name] = value
        return self.model_copy(update={"headers": headers})

    def transport_kwargs(self) -> dict[str, Any]:
        """
        Map parameters and encoding onto httpx request keyword arguments.

        Returns:
            Dict with ``params``, ``data`` or ``json`` set as appropriate
        """
        if not self.parameters:
            return {}

        encoding = self.encoding
        if encoding is ParameterEncoding.URL:
            encoding = (
                ParameterEncoding.QUERY_STRING
                if self.method in _QUERY_METHODS
                else ParameterEncoding.HTTP_BODY
            )

        if encoding is ParameterEncoding.QUERY_STRING:
            return {"params": self.parameters}
        if encoding is ParameterEncoding.HTTP_BODY:
            return {"data": self.parameters}
        return {"json": self.parameters}

    def identity(self) -> tuple[str, str, str]:
        """Key identifying requests that supersede one another."""
        return (self.method.value, self.url, repr(sorted((self.parameters or {}).items())))


class EmptyResponse(BaseModel):
    """Marker type for endpoints that return no body."""

    model_config = ConfigDict(extra="ignore")


@dataclass(frozen=True)
class Success(Generic[T]):
    """Request completed and the body decoded into ``value``."""

    value: T

    @property
    def is_success(self) -> bool:
        return True

    def unwrap(self) -> T:
        return self.value


@dataclass(frozen=True)
class Failure:
    """Request reached a terminal error."""

    error: ApiClientError

    @property
    def is_success(self) -> bool:
        return False

    def unwrap(self) -> Any:
        raise self.error


@dataclass(frozen=True)
class Cancelled:
    """Request was cancelled or superseded before completing."""

    @property
    def is_success(self) -> bool:
        return False

    def unwrap(self) -> Any:
        raise RequestCancelledError()


Result = Success[T] | Failure | Cancelled
