"""Dispatcher that writes each notification to the structured log.

Used where no messaging provider is wired up; a log shipper picks the
events up from there.
"""

from dataclasses import asdict

import structlog

from presales.channel.port import NotificationDispatcher, PresaleNotification

logger = structlog.get_logger(__name__)


class LogDispatcher(NotificationDispatcher):
    def dispatch(self, event: PresaleNotification) -> None:
        logger.info("Presale notification", notification=type(event).__name__, **asdict(event))
