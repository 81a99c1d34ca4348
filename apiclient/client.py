"""
apiclient.client - Authenticated Request Pipeline

``ApiClient`` is the single entry point for API calls. Each call:

1. Builds an ``ApiRequest`` (base URL + path, default headers merged under
   the caller's headers).
2. Sends it through ``AuthRetryAdapter`` (reachability gate, bearer token,
   refresh-and-retry on 401).
3. Validates the status code, decodes the body into ``response_model``.
4. Returns exactly one ``Result``: ``Success``, ``Failure`` or ``Cancelled``.

User-facing errors are also emitted on the ``NotificationCenter``; the
returned Result never depends on whether a banner was shown.

Usage:
    >>> client = ApiClient(credentials=cache, identity_provider=provider)
    >>> result = await client.request("/users/1", response_model=User)
    >>> if result.is_success:
    ...     user = result.value
"""

import asyncio
import logging
from functools import lru_cache
from typing import Any, TypeVar

import httpx
from pydantic import TypeAdapter, ValidationError

from apiclient.credentials import CredentialCache, InMemoryCredentialStore
from apiclient.errors import (
    CODE_CANCELLED,
    CODE_CANNOT_CONNECT_TO_HOST,
    CODE_NOT_CONNECTED_TO_INTERNET,
    CODE_TIMED_OUT,
    CODE_UNKNOWN,
    ApiClientError,
    BadRequestError,
    HTTPStatusError,
    NoDataReturnedError,
    ResponseNotValidJSONError,
    TransportError,
    UnknownApiError,
)
from apiclient.identity import IdentityProvider
from apiclient.models import (
    ApiRequest,
    Cancelled,
    EmptyResponse,
    Failure,
    HTTPMethod,
    ParameterEncoding,
    Result,
    Success,
)
from apiclient.notifications import (
    BannerNotifier,
    ErrorNotification,
    LoggingBannerPresenter,
    NotificationCenter,
)
from apiclient.reachability import ReachabilityMonitor
from apiclient.retrier import AuthRetryAdapter, RetryState
from apiclient.settings import ApiClientSettings, get_settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

API_ERROR_TITLE = "API Error"
OFFLINE_TITLE = "No internet connection"
OFFLINE_SUBTITLE = "The Internet connection appears to be offline"
NO_DATA_SUBTITLE = "Server returns no data"
NOT_VALID_JSON_SUBTITLE = "Failed to parse server response"


def is_acceptable_status(status_code: int) -> bool:
    """Statuses in [200, 300) count as success."""
    return 200 <= status_code < 300


@lru_cache(maxsize=128)
def _type_adapter(response_model: Any) -> TypeAdapter[Any]:
    return TypeAdapter(response_model)


class ApiClient:
    """
    Authenticated JSON API client.

    Attributes:
        settings: Client configuration
        credentials: Shared credential cache
        adapter: Authorization adapter / 401 retrier
        notifications: Error notification bus

    Example:
        >>> async with ApiClient(identity_provider=provider) as client:
        ...     result = await client.request(
        ...         "/posts",
        ...         method=HTTPMethod.POST,
        ...         parameters={"title": "Hi"},
        ...         encoding=ParameterEncoding.JSON,
        ...         response_model=Post,
        ...     )
    """

    def __init__(
        self,
        credentials: CredentialCache | None = None,
        identity_provider: IdentityProvider | None = None,
        reachability: ReachabilityMonitor | None = None,
        notifications: NotificationCenter | None = None,
        settings: ApiClientSettings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        adapter: AuthRetryAdapter | None = None,
    ) -> None:
        """
        Initialize the client.

        Args:
            credentials: Credential cache (in-memory store if None)
            identity_provider: Token refresher used on 401 responses
            reachability: Network state monitor (unknown/reachable if None)
            notifications: Notification bus (logs banners if None)
            settings: Configuration (uses get_settings() if None)
            transport: httpx transport override (tests, proxies)
            adapter: Custom adapter; built from the arguments above if None
        """
        self.settings = settings or get_settings()
        self.credentials = credentials or CredentialCache(InMemoryCredentialStore())
        self.adapter = adapter or AuthRetryAdapter(
            self.credentials,
            identity_provider=identity_provider,
            reachability=reachability,
            max_retries=self.settings.max_retries,
            retry_delay=self.settings.retry_delay_seconds,
        )

        if notifications is None:
            notifications = NotificationCenter()
            notifications.subscribe(
                BannerNotifier(
                    LoggingBannerPresenter(),
                    duration=self.settings.banner_duration_seconds,
                )
            )
        self.notifications = notifications

        self._http = httpx.AsyncClient(
            timeout=self.settings.timeout_seconds,
            transport=transport,
            follow_redirects=True,
        )
        self._inflight: dict[tuple[str, str, str], asyncio.Task[Any]] = {}

    async def __aenter__(self) -> "ApiClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Cancel in-flight requests and close the HTTP connection pool."""
        self.cancel_all()
        await self._http.aclose()

    @property
    def in_flight(self) -> int:
        """Number of logical requests currently in flight."""
        return sum(1 for task in self._inflight.values() if not task.done())

    def cancel_all(self) -> None:
        """Cancel every in-flight request. Each resolves to ``Cancelled``."""
        for task in list(self._inflight.values()):
            task.cancel()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def request(
        self,
        path: str,
        method: HTTPMethod = HTTPMethod.GET,
        parameters: dict[str, Any] | None = None,
        encoding: ParameterEncoding = ParameterEncoding.URL,
        headers: dict[str, str] | None = None,
        response_model: type[T] = EmptyResponse,  # type: ignore[assignment]
    ) -> Result[T]:
        """
        Perform one logical request.

        Issuing a request identical (method, URL, parameters) to one still in
        flight supersedes the older one, which resolves to ``Cancelled``.

        Args:
            path: Appended to ``settings.base_url``
            method: HTTP method
            parameters: Query/body parameters
            encoding: Where parameters go on the wire
            headers: Extra headers, applied over the defaults
            response_model: Type the JSON body is validated into

        Returns:
            Success(value), Failure(error) or Cancelled()

        Raises:
            asyncio.CancelledError: Only if the calling task itself is cancelled
        """
        try:
            api_request = self.build_request(path, method, parameters, encoding, headers)
        except BadRequestError as e:
            return await self._fail(e, API_ERROR_TITLE, str(e))

        key = api_request.identity()
        method_name = api_request.method.value
        task = asyncio.ensure_future(self._perform(api_request, response_model))
        try:
            previous = self._inflight.get(key)
            self._inflight[key] = task
            if previous is not None and not previous.done():
                logger.debug(
                    f"Superseding in-flight request {method_name} {api_request.url}",
                    extra={"url": api_request.url, "method": method_name},
                )
                previous.cancel()

            return await task
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
            logger.debug(
                f"Request cancelled: {method_name} {api_request.url}",
                extra={"url": api_request.url, "code": CODE_CANCELLED},
            )
            return Cancelled()
        finally:
            if self._inflight.get(key) is task:
                del self._inflight[key]

    def build_request(
        self,
        path: str,
        method: HTTPMethod = HTTPMethod.GET,
        parameters: dict[str, Any] | None = None,
        encoding: ParameterEncoding = ParameterEncoding.URL,
        headers: dict[str, str] | None = None,
    ) -> ApiRequest:
        """
        Build the request for ``path``.

        Raises:
            BadRequestError: If base URL + path is not an absolute http(s) URL,
                or the method, encoding, parameters or headers are invalid
        """
        url = self.settings.base_url + path
        try:
            parsed = httpx.URL(url)
        except httpx.InvalidURL as e:
            raise BadRequestError(f"Invalid request URL: {url}") from e
        if parsed.scheme not in ("http", "https") or not parsed.host:
            raise BadRequestError(f"Request URL must be absolute http(s): {url!r}")

        merged = {
            "Accept": "application/json",
            "User-Agent": self.settings.user_agent,
            **self.credentials.default_headers(),
            **(headers or {}),
        }
        try:
            return ApiRequest(
                method=method,
                url=url,
                parameters=parameters,
                encoding=encoding,
                headers=merged,
            )
        except ValidationError as e:
            raise BadRequestError(f"Invalid request for {url}: {e.error_count()} error(s)") from e

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    async def _perform(self, request: ApiRequest, response_model: Any) -> Result[Any]:
        try:
            return await self._send_with_retries(request, response_model)
        except ApiClientError as e:
            return await self._fail(e, API_ERROR_TITLE, str(e))
        except Exception as e:
            logger.error(
                f"Unexpected error performing {request.method.value} {request.url}: {e}",
                exc_info=True,
                extra={"url": request.url},
            )
            return await self._fail(UnknownApiError(str(e)), API_ERROR_TITLE, str(e))

    async def _send_with_retries(self, request: ApiRequest, response_model: Any) -> Result[Any]:
        state = RetryState()
        while True:
            response: httpx.Response | None = None
            error: TransportError | None = None
            try:
                response = await self._send(self.adapter.adapt(request))
            except TransportError as e:
                error = e

            if response is not None and is_acceptable_status(response.status_code):
                return await self._decode(request, response, response_model)

            decision = await self.adapter.should_retry(request, response, state)
            if decision.retry:
                state.count += 1
                logger.info(
                    f"Retrying {request.method.value} {request.url} (attempt {state.count})",
                    extra={"url": request.url, "retry_count": state.count},
                )
                if decision.delay:
                    await asyncio.sleep(decision.delay)
                continue

            if response is None:
                return await self._transport_failure(request, error or TransportError(CODE_UNKNOWN))
            return await self._status_failure(request, response)

    async def _send(self, request: ApiRequest) -> httpx.Response:
        try:
            http_request = self._http.build_request(
                request.method.value,
                request.url,
                headers=request.headers,
                **request.transport_kwargs(),
            )
        except (TypeError, ValueError) as e:
            raise BadRequestError(f"Cannot encode request parameters: {e}") from e

        try:
            return await self._http.send(http_request)
        except httpx.TimeoutException as e:
            raise TransportError(CODE_TIMED_OUT, str(e) or "The request timed out") from e
        except httpx.ConnectError as e:
            raise TransportError(
                CODE_CANNOT_CONNECT_TO_HOST, str(e) or "Could not connect to the server"
            ) from e
        except httpx.TransportError as e:
            raise TransportError(CODE_UNKNOWN, str(e) or e.__class__.__name__) from e

    async def _decode(
        self,
        request: ApiRequest,
        response: httpx.Response,
        response_model: Any,
    ) -> Result[Any]:
        body = response.content
        if not body:
            if response_model is EmptyResponse:
                return Success(EmptyResponse())
            logger.warning(
                f"No data returned for {request.url}",
                extra={"url": request.url, "status_code": response.status_code},
            )
            return await self._fail(
                NoDataReturnedError(NO_DATA_SUBTITLE), API_ERROR_TITLE, NO_DATA_SUBTITLE
            )

        try:
            value = _type_adapter(response_model).validate_json(body)
        except ValidationError as e:
            logger.warning(
                f"Response from {request.url} does not match "
                f"{getattr(response_model, '__name__', response_model)}",
                extra={"url": request.url, "error_count": e.error_count()},
            )
            return await self._fail(
                ResponseNotValidJSONError(NOT_VALID_JSON_SUBTITLE),
                API_ERROR_TITLE,
                NOT_VALID_JSON_SUBTITLE,
            )

        return Success(value)

    async def _transport_failure(self, request: ApiRequest, error: TransportError) -> Result[Any]:
        logger.warning(
            f"Transport error {error.code} for {request.method.value} {request.url}: {error}",
            extra={"url": request.url, "code": error.code},
        )
        if error.code == CODE_NOT_CONNECTED_TO_INTERNET:
            return await self._fail(error, OFFLINE_TITLE, OFFLINE_SUBTITLE)
        return await self._fail(error, API_ERROR_TITLE, str(error))

    async def _status_failure(self, request: ApiRequest, response: httpx.Response) -> Result[Any]:
        status_code = response.status_code
        logger.warning(
            f"HTTP {status_code} for {request.method.value} {request.url}",
            extra={"url": request.url, "status_code": status_code},
        )
        error = HTTPStatusError(status_code)
        return await self._fail(error, API_ERROR_TITLE, f"Status code: {status_code}")

    async def _fail(self, error: ApiClientError, title: str, subtitle: str) -> Failure:
        await self.notifications.emit(ErrorNotification(title=title, subtitle=subtitle))
        return Failure(error)


# Default instance (can be replaced for testing)
_default_client: ApiClient | None = None


def get_api_client() -> ApiClient:
    """
    Get the process-wide ApiClient.

    Returns:
        ApiClient instance
    """
    global _default_client  # noqa: PLW0603
    if _default_client is None:
        _default_client = ApiClient()
    return _default_client


def set_api_client(client: ApiClient | None) -> None:
    """
    Set the process-wide ApiClient (for testing or custom wiring).

    Args:
        client: ApiClient instance or None to reset
    """
    global _default_client  # noqa: PLW0603
    _default_client = client
