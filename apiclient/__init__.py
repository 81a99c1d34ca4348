"""
apiclient - Authenticated JSON API Client

Bearer-token HTTP client for mobile/backend API access:
1. Injects the current bearer token into every request
2. Gates sends on cached network reachability
3. Refreshes the token on 401 and retries (at most 3 times)
4. Decodes JSON bodies into typed results
5. Reports user-facing errors on a notification bus

Example:
    >>> from apiclient import ApiClient, CredentialCache, InMemoryCredentialStore
    >>> cache = CredentialCache(InMemoryCredentialStore("abc"))
    >>> async with ApiClient(credentials=cache, identity_provider=provider) as client:
    ...     result = await client.request("/users/1", response_model=User)
"""

__version__ = "0.1.0"

from apiclient.client import ApiClient, get_api_client, set_api_client
from apiclient.credentials import CredentialCache, CredentialStore, InMemoryCredentialStore
from apiclient.errors import (
    ApiClientError,
    BadRequestError,
    ErrorKind,
    HTTPStatusError,
    NoDataReturnedError,
    OfflineError,
    RefreshError,
    RequestCancelledError,
    ResponseNotValidJSONError,
    TransportError,
    UnknownApiError,
)
from apiclient.identity import IdentityProvider, OAuthRefreshTokenProvider
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
    BannerPresenter,
    BannerStyle,
    ErrorNotification,
    LoggingBannerPresenter,
    NotificationCenter,
)
from apiclient.reachability import ReachabilityMonitor
from apiclient.retrier import AuthRetryAdapter, RetryDecision, RetryState
from apiclient.settings import ApiClientSettings, get_settings

__all__ = [
    "ApiClient",
    "ApiClientError",
    "ApiClientSettings",
    "ApiRequest",
    "AuthRetryAdapter",
    "BadRequestError",
    "BannerNotifier",
    "BannerPresenter",
    "BannerStyle",
    "Cancelled",
    "CredentialCache",
    "CredentialStore",
    "EmptyResponse",
    "ErrorKind",
    "ErrorNotification",
    "Failure",
    "HTTPMethod",
    "HTTPStatusError",
    "IdentityProvider",
    "InMemoryCredentialStore",
    "LoggingBannerPresenter",
    "NoDataReturnedError",
    "NotificationCenter",
    "OAuthRefreshTokenProvider",
    "OfflineError",
    "ParameterEncoding",
    "ReachabilityMonitor",
    "RefreshError",
    "RequestCancelledError",
    "ResponseNotValidJSONError",
    "Result",
    "RetryDecision",
    "RetryState",
    "Success",
    "TransportError",
    "UnknownApiError",
    "__version__",
    "get_api_client",
    "get_settings",
    "set_api_client",
]
