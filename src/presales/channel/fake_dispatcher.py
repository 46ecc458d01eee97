"""Fake dispatcher: records events in memory for test assertions."""

from presales.channel.port import NotificationDispatcher, PresaleNotification


class FakeDispatcher(NotificationDispatcher):
    def __init__(self):
        self.events: list[PresaleNotification] = []

    def dispatch(self, event: PresaleNotification) -> None:
        self.events.append(event)

    def of_type(self, event_cls) -> list:
        return [event for event in self.events if isinstance(event, event_cls)]

    def reset(self):
        self.events.clear()
