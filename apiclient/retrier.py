"""
apiclient.retrier - Authorization Adapter & 401 Retrier

``AuthRetryAdapter`` sits between the request pipeline and the transport:

- ``adapt()`` gates each send on cached reachability and injects the current
  bearer token.
- ``should_retry()`` inspects a failed send. Only a 401 response is retried:
  the credential is force-refreshed, persisted, the shared default header is
  swapped, and the request is sent again. A logical request is retried at
  most ``max_retries`` times.

Concurrent 401s share one in-flight refresh (single-flight), so a burst of
expired requests triggers a single call to the identity provider.

Lifecycle of one logical request:
    Sent -> Done
    Sent -> (401, count < max) Refreshing -> Sent
    Sent -> (anything else) Failed
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import NamedTuple

import httpx

from apiclient.credentials import AUTHORIZATION_HEADER, CredentialCache, bearer
from apiclient.errors import OfflineError, RefreshError
from apiclient.identity import IdentityProvider
from apiclient.models import ApiRequest
from apiclient.reachability import ReachabilityMonitor

logger = logging.getLogger(__name__)

UNAUTHORIZED = 401


@dataclass
class RetryState:
    """Retry bookkeeping for one logical request."""

    count: int = 0


class RetryDecision(NamedTuple):
    """Outcome of ``should_retry``: resend or not, and after how long."""

    retry: bool
    delay: float = 0.0


DONT_RETRY = RetryDecision(retry=False, delay=0.0)


class AuthRetryAdapter:
    """
    Injects bearer credentials and refreshes them on 401.

    Attributes:
        credentials: Shared credential cache (also used by the pipeline)
        identity_provider: Source of refreshed tokens (no retries without one)
        reachability: Cached network state
        max_retries: Upper bound on retries per logical request
        retry_delay: Seconds to wait before resending after a refresh

    Example:
        >>> adapter = AuthRetryAdapter(cache, identity_provider, ReachabilityMonitor())
        >>> adapted = adapter.adapt(request)
        >>> decision = await adapter.should_retry(request, response, RetryState())
    """

    def __init__(
        self,
        credentials: CredentialCache,
        identity_provider: IdentityProvider | None = None,
        reachability: ReachabilityMonitor | None = None,
        max_retries: int = 3,
        retry_delay: float = 0.0,
    ) -> None:
        self.credentials = credentials
        self.identity_provider = identity_provider
        self.reachability = reachability or ReachabilityMonitor()
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self._refresh_task: asyncio.Task[str | None] | None = None

    def adapt(self, request: ApiRequest) -> ApiRequest:
        """
        Prepare a request for sending.

        Args:
            request: Request as built by the pipeline

        Returns:
            Copy of the request carrying the current Authorization header

        Raises:
            OfflineError: If the network is known to be unreachable
        """
        if not self.reachability.is_reachable:
            logger.info(
                "Network unreachable, not sending request",
                extra={"url": request.url, "method": request.method.value},
            )
            raise OfflineError()

        return request.with_header(AUTHORIZATION_HEADER, bearer(self.credentials.token))

    async def should_retry(
        self,
        request: ApiRequest,
        response: httpx.Response | None,
        state: RetryState,
    ) -> RetryDecision:
        """
        Decide whether a failed send is resent after a credential refresh.

        Args:
            request: The original (unadapted) request
            response: HTTP response, or None for transport failures
            state: Retry bookkeeping for this logical request

        Returns:
            RetryDecision; ``retry`` is True only for a 401 under the retry bound
        """
        if response is None or response.status_code != UNAUTHORIZED:
            return DONT_RETRY

        if state.count >= self.max_retries:
            logger.warning(
                f"Giving up on {request.url} after {state.count} retries",
                extra={"url": request.url, "retry_count": state.count},
            )
            return DONT_RETRY

        if self.identity_provider is None:
            logger.warning(
                "Received 401 but no identity provider is configured",
                extra={"url": request.url},
            )
            return DONT_RETRY

        await self.refresh_credential()
        return RetryDecision(retry=True, delay=self.retry_delay)

    async def refresh_credential(self) -> str | None:
        """
        Force-refresh the credential, joining any refresh already in flight.

        Returns:
            The refreshed token (None/empty on the degraded path)

        Raises:
            RefreshError: If no identity provider is configured
        """
        task = self._refresh_task
        if task is None or task.done():
            task = asyncio.ensure_future(self._refresh())
            self._refresh_task = task
            task.add_done_callback(self._clear_refresh_task)
        else:
            logger.debug("Joining in-flight credential refresh")

        # Shielded so one cancelled waiter doesn't abort the shared refresh
        return await asyncio.shield(task)

    def _clear_refresh_task(self, task: "asyncio.Task[str | None]") -> None:
        if self._refresh_task is task:
            self._refresh_task = None

    async def _refresh(self) -> str | None:
        provider = self.identity_provider
        if provider is None:
            raise RefreshError("No identity provider configured")
        logger.info("Refreshing bearer credential")

        token: str | None
        try:
            token = await provider.refresh_token(force_refresh=True)
        except Exception as e:
            # Retry anyway with whatever token we end up storing
            logger.warning(
                f"Credential refresh failed, retrying with empty token: {e}",
                exc_info=True,
            )
            token = None

        if not token:
            logger.warning("Identity provider returned no token")

        self.credentials.update(token)
        logger.info(
            "Bearer credential refreshed",
            extra={"token_present": bool(token)},
        )
        return token
