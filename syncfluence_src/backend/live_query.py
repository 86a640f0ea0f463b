"""In-process change feed behind the live queries.

Writers publish a change on a topic named after the document path
(``chatRooms/{id}``, ``chatRooms/{id}/messages``, ``chatRooms/{id}/tasks``,
``users``); subscribers get an awaitable callback per change.
"""
import inspect
from typing import Awaitable, Callable, Union

Callback = Callable[[str, dict], Union[None, Awaitable[None]]]


def room_topic(room_id: str) -> str:
    return f"chatRooms/{room_id}"


def messages_topic(room_id: str) -> str:
    return f"chatRooms/{room_id}/messages"


def tasks_topic(room_id: str) -> str:
    return f"chatRooms/{room_id}/tasks"


USERS_TOPIC = "users"


class Subscription:
    def __init__(self, hub: "LiveQueryHub", topic: str, callback: Callback):
        self.hub = hub
        self.topic = topic
        self.callback = callback
        self.active = True

    def unsubscribe(self):
        if self.active:
            self.active = False
            self.hub._remove(self)


class LiveQueryHub:
    def __init__(self):
        self._subscriptions: dict[str, list[Subscription]] = {}

    def subscribe(self, topic: str, callback: Callback) -> Subscription:
        sub = Subscription(self, topic, callback)
        self._subscriptions.setdefault(topic, []).append(sub)
        return sub

    def _remove(self, sub: Subscription):
        subs = self._subscriptions.get(sub.topic, [])
        if sub in subs:
            subs.remove(sub)
        if not subs:
            self._subscriptions.pop(sub.topic, None)

    def subscriber_count(self, topic: str) -> int:
        return len(self._subscriptions.get(topic, []))

    async def publish(self, topic: str, change: dict = None):
        change = change or {}
        # Copy so callbacks may unsubscribe while we iterate
        for sub in list(self._subscriptions.get(topic, [])):
            if not sub.active:
                continue
            try:
                result = sub.callback(topic, change)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                print(f"❌ Live query subscriber on {topic} failed: {e}")
