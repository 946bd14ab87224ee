"""In-process publish/subscribe channel."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from .const import BusEvent

_LOGGER = logging.getLogger(__name__)


class EventBus:
    """Synchronous fan-out to the subscribers present at publish time.

    Nothing is buffered; a late subscriber does not see earlier events.
    """

    def __init__(self) -> None:
        self._subscribers: dict[BusEvent, list[Callable[..., Any]]] = {}

    def subscribe(
        self, event: BusEvent, callback: Callable[..., Any]
    ) -> Callable[[], None]:
        """Register ``callback`` for ``event``.

        Returns:
            A function that removes the subscription.
        """
        self._subscribers.setdefault(event, []).append(callback)

        def unsubscribe() -> None:
            callbacks = self._subscribers.get(event, [])
            if callback in callbacks:
                callbacks.remove(callback)

        return unsubscribe

    def publish(self, event: BusEvent, *args: Any) -> None:
        """Call every current subscriber of ``event`` with ``args``."""
        for callback in list(self._subscribers.get(event, [])):
            try:
                callback(*args)
            except Exception:  # noqa: BLE001
                # One failing subscriber must not starve the others
                _LOGGER.exception("Error in %s subscriber %r", event, callback)

    def subscriber_count(self, event: BusEvent) -> int:
        """Number of subscribers currently registered for ``event``."""
        return len(self._subscribers.get(event, []))
