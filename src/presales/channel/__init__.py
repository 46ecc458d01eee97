"""Notification dispatcher registry.

Uses the fake recording dispatcher by default; NOTIFICATION_DISPATCHER=log
switches to the structured-log dispatcher.
"""

import os

import structlog

from presales.channel.port import NotificationDispatcher, PresaleNotification

logger = structlog.get_logger(__name__)

_dispatcher: NotificationDispatcher | None = None


def get_dispatcher() -> NotificationDispatcher:
    """Return the configured dispatcher (singleton)."""
    global _dispatcher
    if _dispatcher is None:
        kind = os.environ.get("NOTIFICATION_DISPATCHER", "fake")
        if kind == "fake":
            from presales.channel.fake_dispatcher import FakeDispatcher

            _dispatcher = FakeDispatcher()
        elif kind == "log":
            from presales.channel.log_dispatcher import LogDispatcher

            _dispatcher = LogDispatcher()
        else:
            raise ValueError(f"Unknown notification dispatcher: {kind}")
    return _dispatcher


def set_dispatcher(dispatcher: NotificationDispatcher) -> None:
    global _dispatcher
    _dispatcher = dispatcher


def reset_dispatcher() -> None:
    """Reset the dispatcher singleton (useful for testing)."""
    global _dispatcher
    _dispatcher = None


def notify(event: PresaleNotification, dispatcher: NotificationDispatcher | None = None) -> None:
    """Hand an event to the dispatcher. Delivery problems are logged, never raised."""
    try:
        (dispatcher or get_dispatcher()).dispatch(event)
    except Exception as exc:
        logger.error(
            "Notification dispatch failed",
            notification=type(event).__name__,
            product_id=event.product_id,
            error=str(exc),
        )
