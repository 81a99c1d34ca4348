"""
apiclient.reachability - Cached Network Reachability

The platform networking stack pushes reachability changes into a
``ReachabilityMonitor``; the retry adapter reads the cached value without
probing the network.
"""

import logging
from threading import Lock

logger = logging.getLogger(__name__)


class ReachabilityMonitor:
    """
    Thread-safe holder for the last known reachability state.

    ``None`` means the state is unknown, which counts as reachable.

    Example:
        >>> monitor = ReachabilityMonitor()
        >>> monitor.is_reachable
        True
        >>> monitor.update(False)
        >>> monitor.is_reachable
        False
    """

    def __init__(self, reachable: bool | None = None) -> None:
        self._reachable = reachable
        self._lock = Lock()

    @property
    def is_reachable(self) -> bool:
        with self._lock:
            return self._reachable is not False

    @property
    def status(self) -> bool | None:
        """Raw state: True, False, or None when unknown."""
        with self._lock:
            return self._reachable

    def update(self, reachable: bool | None) -> None:
        """Record a reachability change reported by the platform."""
        with self._lock:
            changed = reachable != self._reachable
            self._reachable = reachable
        if changed:
            logger.info(
                f"Network reachability changed: {reachable}",
                extra={"reachable": reachable},
            )
