"""
Unit tests for apiclient.client - ApiClient request pipeline.

The wire is replaced with ``httpx.MockTransport``. Tests cover:
- Success decoding and request construction
- 401 refresh-and-retry, retry bound and concurrent 401s
- Offline, transport and HTTP status failures
- Empty and malformed bodies
- Superseded and cancelled requests
- Notification suppression
"""

import asyncio
import json
from collections.abc import Callable
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from pydantic import BaseModel

from apiclient.client import ApiClient, get_api_client, set_api_client
from apiclient.credentials import CredentialCache, InMemoryCredentialStore
from apiclient.errors import (
    CODE_CANNOT_CONNECT_TO_HOST,
    CODE_NOT_CONNECTED_TO_INTERNET,
    CODE_TIMED_OUT,
    BadRequestError,
    ErrorKind,
    HTTPStatusError,
    NoDataReturnedError,
    OfflineError,
    RefreshError,
    ResponseNotValidJSONError,
    TransportError,
)
from apiclient.identity import IdentityProvider
from apiclient.models import (
    Cancelled,
    EmptyResponse,
    Failure,
    HTTPMethod,
    ParameterEncoding,
    Success,
)
from apiclient.notifications import (
    BannerNotifier,
    BannerPresenter,
    ErrorNotification,
    NotificationCenter,
)
from apiclient.reachability import ReachabilityMonitor
from apiclient.settings import ApiClientSettings

BASE_URL = "https://api.example.com"


class User(BaseModel):
    id: int
    name: str


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def settings():
    return ApiClientSettings(_env_file=None, base_url=BASE_URL)


@pytest.fixture
def store():
    return InMemoryCredentialStore("abc")


@pytest.fixture
def identity_provider():
    provider = MagicMock(spec=IdentityProvider)
    provider.refresh_token = AsyncMock(return_value="xyz")
    return provider


@pytest.fixture
def reachability():
    return ReachabilityMonitor(reachable=True)


@pytest.fixture
def notified():
    return []


@pytest.fixture
def make_client(settings, store, identity_provider, reachability, notified):
    """Build an ApiClient whose wire is served by ``handler``."""

    def _make(handler: Callable[[httpx.Request], Any], **overrides: Any) -> ApiClient:
        center = NotificationCenter()

        async def record(notification: ErrorNotification) -> None:
            notified.append(notification)

        center.subscribe(record)
        kwargs: dict[str, Any] = {
            "credentials": CredentialCache(store),
            "identity_provider": identity_provider,
            "reachability": reachability,
            "notifications": center,
            "settings": settings,
            "transport": httpx.MockTransport(handler),
        }
        kwargs.update(overrides)
        return ApiClient(**kwargs)

    return _make


def _user_json(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, json={"id": 1, "name": "A"})


# =============================================================================
# Test: Success path
# =============================================================================


class TestSuccess:
    @pytest.mark.asyncio
    async def test_decodes_typed_value(self, make_client, notified):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return _user_json(request)

        async with make_client(handler) as client:
            result = await client.request("/users/1", response_model=User)

        assert result == Success(User(id=1, name="A"))
        assert str(seen[0].url) == "https://api.example.com/users/1"
        assert seen[0].headers["Authorization"] == "Bearer abc"
        assert seen[0].headers["Accept"] == "application/json"
        assert notified == []

    @pytest.mark.asyncio
    async def test_decodes_list_of_models(self, make_client):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=[{"id": 1, "name": "A"}, {"id": 2, "name": "B"}])

        async with make_client(handler) as client:
            result = await client.request("/users", response_model=list[User])

        assert isinstance(result, Success)
        assert [u.id for u in result.value] == [1, 2]

    @pytest.mark.asyncio
    async def test_caller_headers_override_defaults(self, make_client):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return _user_json(request)

        async with make_client(handler) as client:
            await client.request(
                "/users/1",
                headers={"Accept": "application/vnd.api+json", "X-Trace": "t1"},
                response_model=User,
            )

        assert seen[0].headers["Accept"] == "application/vnd.api+json"
        assert seen[0].headers["X-Trace"] == "t1"

    @pytest.mark.asyncio
    async def test_get_parameters_in_query(self, make_client):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=[])

        async with make_client(handler) as client:
            await client.request("/users", parameters={"page": 2}, response_model=list[User])

        assert seen[0].url.params["page"] == "2"

    @pytest.mark.asyncio
    async def test_json_body(self, make_client):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(201, json={"id": 3, "name": "C"})

        async with make_client(handler) as client:
            result = await client.request(
                "/users",
                method=HTTPMethod.POST,
                parameters={"name": "C"},
                encoding=ParameterEncoding.JSON,
                response_model=User,
            )

        assert result.unwrap() == User(id=3, name="C")
        assert seen[0].method == "POST"
        assert json.loads(seen[0].content) == {"name": "C"}

    @pytest.mark.asyncio
    async def test_empty_response_marker(self, make_client, notified):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(204)

        async with make_client(handler) as client:
            result = await client.request("/users/1", method=HTTPMethod.DELETE)

        assert result == Success(EmptyResponse())
        assert notified == []

    @pytest.mark.asyncio
    async def test_follows_redirects(self, make_client, notified):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/users/1":
                return httpx.Response(301, headers={"Location": "/v2/users/1"})
            return _user_json(request)

        async with make_client(handler) as client:
            result = await client.request("/users/1", response_model=User)

        assert result == Success(User(id=1, name="A"))
        assert notified == []


# =============================================================================
# Test: 401 refresh-and-retry
# =============================================================================


class TestAuthRetry:
    @pytest.mark.asyncio
    async def test_refresh_then_success(self, make_client, store, identity_provider, notified):
        seen: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.headers["Authorization"])
            if request.headers["Authorization"] == "Bearer abc":
                return httpx.Response(401)
            return _user_json(request)

        async with make_client(handler) as client:
            result = await client.request("/users/1", response_model=User)

            assert result == Success(User(id=1, name="A"))
            assert seen == ["Bearer abc", "Bearer xyz"]
            assert store.read() == "xyz"
            assert client.credentials.authorization_header == "Bearer xyz"
            follow_up = client.build_request("/users/2")
            assert follow_up.headers["Authorization"] == "Bearer xyz"

        identity_provider.refresh_token.assert_awaited_once_with(force_refresh=True)
        assert notified == []

    @pytest.mark.asyncio
    async def test_gives_up_after_three_retries(self, make_client, identity_provider, notified):
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(401)

        async with make_client(handler) as client:
            result = await client.request("/users/1", response_model=User)

        assert isinstance(result, Failure)
        assert isinstance(result.error, HTTPStatusError)
        assert result.error.status_code == 401
        assert calls == 4
        assert identity_provider.refresh_token.await_count == 3
        assert notified == [ErrorNotification("API Error", "Status code: 401")]

    @pytest.mark.asyncio
    async def test_degraded_refresh_still_retries(self, make_client, store, identity_provider):
        identity_provider.refresh_token.side_effect = RefreshError("revoked")
        seen: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.headers["Authorization"])
            if len(seen) == 1:
                return httpx.Response(401)
            return _user_json(request)

        async with make_client(handler) as client:
            result = await client.request("/users/1", response_model=User)

        assert result.is_success
        assert [s.strip() for s in seen] == ["Bearer abc", "Bearer"]
        assert store.read() == ""

    @pytest.mark.asyncio
    async def test_concurrent_401s_share_one_refresh(self, make_client):
        gate = asyncio.Event()
        refreshes = 0
        hits = 0

        async def refresh_token(force_refresh: bool = True) -> str:
            nonlocal refreshes
            refreshes += 1
            await gate.wait()
            return "xyz"

        provider = MagicMock(spec=IdentityProvider)
        provider.refresh_token = refresh_token

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal hits
            hits += 1
            if request.headers["Authorization"] == "Bearer abc":
                return httpx.Response(401)
            return httpx.Response(200, json={"id": 1, "name": request.url.path})

        async with make_client(handler, identity_provider=provider) as client:
            first = asyncio.create_task(client.request("/users/1", response_model=User))
            second = asyncio.create_task(client.request("/users/2", response_model=User))
            while hits < 2:
                await asyncio.sleep(0)
            for _ in range(20):
                await asyncio.sleep(0)
            gate.set()
            results = await asyncio.gather(first, second)

        assert all(r.is_success for r in results)
        assert refreshes == 1

    @pytest.mark.asyncio
    async def test_server_error_not_retried(self, make_client, identity_provider, notified):
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(500, json={"detail": "boom"})

        async with make_client(handler) as client:
            result = await client.request("/users/1", response_model=User)

        assert isinstance(result, Failure)
        assert result.error.kind is ErrorKind.HTTP_STATUS_ERROR
        assert result.error.code == 500
        assert calls == 1
        identity_provider.refresh_token.assert_not_called()
        assert notified == [ErrorNotification("API Error", "Status code: 500")]


# =============================================================================
# Test: Transport failures
# =============================================================================


class TestTransportFailures:
    @pytest.mark.asyncio
    async def test_offline_never_reaches_transport(self, make_client, reachability, notified):
        handler = MagicMock(side_effect=_user_json)
        reachability.update(False)

        async with make_client(handler) as client:
            result = await client.request("/users/1", response_model=User)

        assert isinstance(result, Failure)
        assert isinstance(result.error, OfflineError)
        assert result.error.code == CODE_NOT_CONNECTED_TO_INTERNET
        handler.assert_not_called()
        assert notified == [
            ErrorNotification("No internet connection", "The Internet connection appears to be offline")
        ]

    @pytest.mark.asyncio
    async def test_connect_error(self, make_client, identity_provider, notified):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        async with make_client(handler) as client:
            result = await client.request("/users/1", response_model=User)

        assert isinstance(result, Failure)
        assert isinstance(result.error, TransportError)
        assert result.error.code == CODE_CANNOT_CONNECT_TO_HOST
        identity_provider.refresh_token.assert_not_called()
        assert notified == [ErrorNotification("API Error", "connection refused")]

    @pytest.mark.asyncio
    async def test_timeout(self, make_client):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("read timed out", request=request)

        async with make_client(handler) as client:
            result = await client.request("/users/1", response_model=User)

        assert isinstance(result, Failure)
        assert result.error.code == CODE_TIMED_OUT

    @pytest.mark.asyncio
    async def test_relative_url_is_bad_request(self, make_client, notified):
        handler = MagicMock(side_effect=_user_json)

        async with make_client(
            handler, settings=ApiClientSettings(_env_file=None, base_url="")
        ) as client:
            result = await client.request("/users/1", response_model=User)

        assert isinstance(result, Failure)
        assert isinstance(result.error, BadRequestError)
        handler.assert_not_called()
        assert len(notified) == 1

    @pytest.mark.asyncio
    async def test_invalid_header_value_is_bad_request(self, make_client, notified):
        handler = MagicMock(side_effect=_user_json)

        async with make_client(handler) as client:
            result = await client.request("/users/1", headers={"X-Retry": 1}, response_model=User)

        assert isinstance(result, Failure)
        assert isinstance(result.error, BadRequestError)
        handler.assert_not_called()
        assert len(notified) == 1


# =============================================================================
# Test: Body decoding
# =============================================================================


class TestDecoding:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("status_code", [200, 204])
    async def test_empty_body_is_no_data(self, make_client, notified, status_code):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(status_code)

        async with make_client(handler) as client:
            result = await client.request("/users/1", response_model=User)

        assert isinstance(result, Failure)
        assert isinstance(result.error, NoDataReturnedError)
        assert notified == [ErrorNotification("API Error", "Server returns no data")]

    @pytest.mark.asyncio
    async def test_wrong_shape_is_not_valid_json(self, make_client, notified):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"id": "one"})

        async with make_client(handler) as client:
            result = await client.request("/users/1", response_model=User)

        assert isinstance(result, Failure)
        assert isinstance(result.error, ResponseNotValidJSONError)
        assert notified == [ErrorNotification("API Error", "Failed to parse server response")]

    @pytest.mark.asyncio
    async def test_non_json_body_is_not_valid_json(self, make_client):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="<html>maintenance</html>")

        async with make_client(handler) as client:
            result = await client.request("/users/1", response_model=User)

        assert isinstance(result, Failure)
        assert result.error.kind is ErrorKind.RESPONSE_NOT_VALID_JSON


# =============================================================================
# Test: Cancellation
# =============================================================================


class TestCancellation:
    @pytest.mark.asyncio
    async def test_identical_request_supersedes_in_flight(self, make_client, notified):
        release = asyncio.Event()
        hits = 0

        async def handler(request: httpx.Request) -> httpx.Response:
            nonlocal hits
            hits += 1
            if hits == 1:
                await release.wait()
            return _user_json(request)

        async with make_client(handler) as client:
            first = asyncio.create_task(client.request("/users/1", response_model=User))
            while hits == 0:
                await asyncio.sleep(0)

            second = await client.request("/users/1", response_model=User)
            first_result = await first

        assert first_result == Cancelled()
        assert second == Success(User(id=1, name="A"))
        assert notified == []

    @pytest.mark.asyncio
    async def test_string_method_supersedes_in_flight(self, make_client, notified):
        release = asyncio.Event()
        hits = 0

        async def handler(request: httpx.Request) -> httpx.Response:
            nonlocal hits
            hits += 1
            if hits == 1:
                await release.wait()
            return _user_json(request)

        async with make_client(handler) as client:
            first = asyncio.create_task(client.request("/users/1", method="GET", response_model=User))
            while hits == 0:
                await asyncio.sleep(0)

            second = await client.request("/users/1", method="GET", response_model=User)
            first_result = await first

            assert client.in_flight == 0

        assert first_result == Cancelled()
        assert second == Success(User(id=1, name="A"))
        assert notified == []

    @pytest.mark.asyncio
    async def test_different_requests_do_not_supersede(self, make_client):
        async with make_client(_user_json) as client:
            results = await asyncio.gather(
                client.request("/users/1", response_model=User),
                client.request("/users/1", parameters={"expand": "team"}, response_model=User),
            )

        assert all(r.is_success for r in results)

    @pytest.mark.asyncio
    async def test_cancel_all(self, make_client, notified):
        entered = asyncio.Event()

        async def handler(request: httpx.Request) -> httpx.Response:
            entered.set()
            await asyncio.Event().wait()
            return _user_json(request)

        async with make_client(handler) as client:
            pending = asyncio.create_task(client.request("/users/1", response_model=User))
            await entered.wait()
            assert client.in_flight == 1

            client.cancel_all()
            result = await pending

            assert client.in_flight == 0

        assert result == Cancelled()
        assert notified == []

    @pytest.mark.asyncio
    async def test_caller_cancellation_propagates(self, make_client):
        entered = asyncio.Event()

        async def handler(request: httpx.Request) -> httpx.Response:
            entered.set()
            await asyncio.Event().wait()
            return _user_json(request)

        async with make_client(handler) as client:
            pending = asyncio.create_task(client.request("/users/1", response_model=User))
            await entered.wait()
            pending.cancel()

            with pytest.raises(asyncio.CancelledError):
                await pending


# =============================================================================
# Test: Notification suppression
# =============================================================================


class StickyPresenter(BannerPresenter):
    def __init__(self) -> None:
        self.shown: list[ErrorNotification] = []

    def show(self, notification, duration, listener):
        listener.will_appear()
        self.shown.append(notification)


@pytest.mark.asyncio
async def test_visible_banner_suppresses_new_banners_not_results(make_client):
    presenter = StickyPresenter()
    center = NotificationCenter()
    center.subscribe(BannerNotifier(presenter))

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503)

    async with make_client(handler, notifications=center) as client:
        first = await client.request("/a", response_model=User)
        second = await client.request("/b", response_model=User)

    assert isinstance(first, Failure) and first.error.code == 503
    assert isinstance(second, Failure) and second.error.code == 503
    assert presenter.shown == [ErrorNotification("API Error", "Status code: 503")]


# =============================================================================
# Test: Default instance
# =============================================================================


class TestDefaultClient:
    def test_set_and_get(self, make_client):
        client = make_client(_user_json)
        try:
            set_api_client(client)
            assert get_api_client() is client
        finally:
            set_api_client(None)

    def test_reset_creates_new_instance(self, make_client):
        client = make_client(_user_json)
        set_api_client(client)
        set_api_client(None)
        try:
            assert get_api_client() is not client
        finally:
            set_api_client(None)
