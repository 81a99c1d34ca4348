"""
apiclient.notifications - Error Notification Bus

The request pipeline reports user-facing errors as ``ErrorNotification``
events on a ``NotificationCenter``. Rendering is left to subscribers: a
``BannerNotifier`` forwards events to a ``BannerPresenter`` and suppresses new
banners while one is still visible. Handler failures are logged but never
propagate to the request.

Example:
    >>> center = NotificationCenter()
    >>> center.subscribe(BannerNotifier(LoggingBannerPresenter()))
    >>> await center.emit(ErrorNotification("API Error", "Status code: 500"))
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from threading import Lock

logger = logging.getLogger(__name__)


class BannerStyle(str, Enum):
    """Visual style of a banner."""

    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    DANGER = "danger"


@dataclass(frozen=True)
class ErrorNotification:
    """A user-facing error report."""

    title: str
    subtitle: str
    style: BannerStyle = BannerStyle.WARNING


# Type alias for notification handlers
NotificationHandler = Callable[[ErrorNotification], Awaitable[None]]


class NotificationCenter:
    """Observer registry for error notifications."""

    def __init__(self) -> None:
        self._handlers: list[NotificationHandler] = []

    def subscribe(self, handler: NotificationHandler) -> None:
        """Register a handler."""
        self._handlers.append(handler)

    def unsubscribe(self, handler: NotificationHandler) -> bool:
        """Unregister a handler. Returns True if found."""
        if handler in self._handlers:
            self._handlers.remove(handler)
            return True
        return False

    def has_subscribers(self) -> bool:
        return bool(self._handlers)

    async def emit(self, notification: ErrorNotification) -> None:
        """Deliver a notification to every subscriber in registration order.

        Errors are logged but do not propagate or affect other handlers.
        """
        for handler in list(self._handlers):
            try:
                await handler(notification)
            except Exception:
                handler_name = getattr(handler, "__qualname__", repr(handler))
                logger.error(
                    "Notification handler %r failed for '%s'",
                    handler_name,
                    notification.title,
                    exc_info=True,
                    extra={"notification_handler": handler_name},
                )


class BannerLifecycleListener(ABC):
    """Receives banner visibility callbacks from a presenter."""

    @abstractmethod
    def will_appear(self) -> None: ...

    @abstractmethod
    def will_disappear(self) -> None: ...


class BannerPresenter(ABC):
    """Renders banners. Implemented by the UI layer."""

    @abstractmethod
    def show(
        self,
        notification: ErrorNotification,
        duration: float,
        listener: BannerLifecycleListener,
    ) -> None:
        """
        Display a banner.

        Implementations must call ``listener.will_appear()`` before the banner
        becomes visible and ``listener.will_disappear()`` when it is dismissed
        (timeout or tap).

        Args:
            notification: What to display
            duration: Seconds before auto-dismiss
            listener: Lifecycle callbacks target
        """
        ...


class BannerNotifier(BannerLifecycleListener):
    """
    Subscriber that presents banners one at a time.

    While a banner is visible, further notifications are dropped so banners
    never stack. Results delivered to callers are unaffected.
    """

    def __init__(self, presenter: BannerPresenter, duration: float = 3.0) -> None:
        self.presenter = presenter
        self.duration = duration
        self._should_show = True
        self._lock = Lock()

    @property
    def should_show(self) -> bool:
        with self._lock:
            return self._should_show

    def will_appear(self) -> None:
        with self._lock:
            self._should_show = False

    def will_disappear(self) -> None:
        with self._lock:
            self._should_show = True

    async def __call__(self, notification: ErrorNotification) -> None:
        if not self.should_show:
            logger.debug(
                f"Banner suppressed while another is visible: {notification.title}",
                extra={"title": notification.title},
            )
            return
        self.presenter.show(notification, self.duration, self)


class LoggingBannerPresenter(BannerPresenter):
    """Headless presenter: logs the banner and dismisses it right away."""

    def show(
        self,
        notification: ErrorNotification,
        duration: float,
        listener: BannerLifecycleListener,
    ) -> None:
        listener.will_appear()
        logger.warning(
            f"{notification.title}: {notification.subtitle}",
            extra={"banner_style": notification.style.value},
        )
        # Nothing stays on screen, so the banner is gone as soon as it is logged
        listener.will_disappear()
