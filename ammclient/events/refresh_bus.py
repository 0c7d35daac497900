"""In-process publish/subscribe channel for "balances may be stale" signals."""

from collections.abc import Callable

import structlog

logger = structlog.get_logger(__name__)

RefreshCallback = Callable[[], None]


class RefreshBus:
    """Explicitly constructed refresh channel owned by the composition root.

    Any component may ``publish()``; subscribers are plain synchronous
    callbacks and are expected to schedule their own async work.
    """

    def __init__(self) -> None:
        self._callbacks: list[RefreshCallback] = []

    @property
    def subscriber_count(self) -> int:
        return len(self._callbacks)

    def subscribe(self, callback: RefreshCallback) -> Callable[[], None]:
        """Register ``callback`` and return a function that removes it."""
        self._callbacks.append(callback)

        def unsubscribe() -> None:
            try:
                self._callbacks.remove(callback)
            except ValueError:
                pass

        return unsubscribe

    def publish(self) -> None:
        """Notify every subscriber. A raising subscriber does not stop delivery."""
        callbacks = list(self._callbacks)
        logger.debug("Triggering balance refresh", subscribers=len(callbacks))

        for callback in callbacks:
            try:
                callback()
            except Exception as e:
                logger.error(
                    "Balance refresh callback error",
                    callback=getattr(callback, "__qualname__", repr(callback)),
                    error=str(e),
                    error_type=type(e).__name__,
                )
