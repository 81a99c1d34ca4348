"""
apiclient.credentials - Bearer Credential Storage

The bearer token is owned by an external ``CredentialStore``. The client
never keeps its own copy: ``CredentialCache`` reads the store on demand and
tracks the shared default ``Authorization`` header handed to new requests.

Both the request pipeline and the retry adapter hold the same
``CredentialCache`` instance. Reads and writes go through one lock.
"""

import logging
from abc import ABC, abstractmethod
from threading import Lock

logger = logging.getLogger(__name__)

AUTHORIZATION_HEADER = "Authorization"


def bearer(token: str | None) -> str:
    """Format a token as an Authorization header value."""
    return f"Bearer {token or ''}"


class CredentialStore(ABC):
    """
    Abstract secure credential store.

    Implementations wrap the platform keychain, a secrets manager, etc.

    Example:
        >>> store = InMemoryCredentialStore("abc")
        >>> store.read()
        'abc'
        >>> store.write("xyz")
    """

    @abstractmethod
    def read(self) -> str | None:
        """
        Read the current token.

        Returns:
            Token string, or None if no token has been stored
        """
        ...

    @abstractmethod
    def write(self, token: str) -> None:
        """
        Persist a new token.

        Args:
            token: Token to store (may be empty after a failed refresh)
        """
        ...


class InMemoryCredentialStore(CredentialStore):
    """Process-local store. Suitable for tests and short-lived scripts."""

    def __init__(self, token: str | None = None) -> None:
        self._token = token
        self._lock = Lock()

    def read(self) -> str | None:
        with self._lock:
            return self._token

    def write(self, token: str) -> None:
        with self._lock:
            self._token = token


class CredentialCache:
    """
    Shared handle on the credential and the default Authorization header.

    Attributes:
        store: Backing credential store

    Example:
        >>> cache = CredentialCache(InMemoryCredentialStore("abc"))
        >>> cache.default_headers()
        {'Authorization': 'Bearer abc'}
        >>> cache.update("xyz")
        >>> cache.authorization_header
        'Bearer xyz'
    """

    def __init__(self, store: CredentialStore) -> None:
        self.store = store
        self._lock = Lock()
        token = store.read()
        self._authorization_header: str | None = bearer(token) if token else None

    @property
    def token(self) -> str | None:
        """Current token, read from the store."""
        with self._lock:
            return self.store.read()

    @property
    def authorization_header(self) -> str | None:
        """Default Authorization header for requests built from now on."""
        with self._lock:
            return self._authorization_header

    def default_headers(self) -> dict[str, str]:
        """Headers every new request starts from."""
        header = self.authorization_header
        return {AUTHORIZATION_HEADER: header} if header is not None else {}

    def update(self, token: str | None) -> None:
        """
        Persist a refreshed token and swap the default header.

        Args:
            token: New token; None is stored as an empty string
        """
        value = token or ""
        with self._lock:
            self.store.write(value)
            self._authorization_header = bearer(value)

        logger.debug(
            "Stored refreshed credential",
            extra={"token_present": bool(value)},
        )
