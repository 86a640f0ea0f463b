"""Per-room view-model kept current by live queries.

A RoomView holds the room metadata, its ordered messages, its member list and
its task list. It reloads the relevant slice whenever the live query hub
reports a change and forwards the new result set to its listeners. Message
changes also drive AI task extraction for the room.
"""
import asyncio
import inspect
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from db import User
from errors import AIServiceError
from live_query import LiveQueryHub, room_topic, messages_topic, tasks_topic, USERS_TOPIC
from llm import chat_completion
from rooms import load_room, list_messages, list_members
from serializers import as_utc, serialize_room, serialize_message, serialize_user, serialize_task
from task_extractor import extract_tasks_from_messages
from task_manager import list_tasks, merge_extracted_tasks

UNKNOWN_SENDER = "Unknown"


def _clock(ts: datetime) -> str:
    hour = ts.hour % 12 or 12
    return f"{hour}:{ts.minute:02d} {'AM' if ts.hour < 12 else 'PM'}"


def format_timestamp(ts, now: Optional[datetime] = None) -> str:
    """'3:05 PM' today, 'Yesterday at 3:05 PM', else 'Mar 4, 3:05 PM'."""
    if not ts:
        return ""
    if isinstance(ts, str):
        ts = datetime.fromisoformat(ts)
    now = as_utc(now or datetime.now(timezone.utc))
    ts = as_utc(ts).astimezone(now.tzinfo)
    if ts.date() == now.date():
        return _clock(ts)
    if ts.date() == (now - timedelta(days=1)).date():
        return f"Yesterday at {_clock(ts)}"
    return f"{ts.strftime('%b')} {ts.day}, {_clock(ts)}"


def present_messages(messages: list[dict], names: dict, viewer_uid: Optional[str] = None,
                     now: Optional[datetime] = None) -> list[dict]:
    """Attach display state: sender name, time label, and run grouping.

    A message from the same sender as the one before it is a continuation and
    is rendered without its own header.
    """
    out = []
    prev_sender = None
    for m in messages:
        sender = m.get("user_id")
        out.append({
            **m,
            "sender_name": names.get(sender, UNKNOWN_SENDER),
            "display_time": format_timestamp(m.get("created_at"), now),
            "is_continuation": prev_sender is not None and sender == prev_sender,
            "is_current_user": viewer_uid is not None and sender == viewer_uid,
        })
        prev_sender = sender
    return out


class ViewListener:
    def __init__(self, view: "RoomView", callback: Callable):
        self.view = view
        self.callback = callback

    def unsubscribe(self):
        if self in self.view._listeners:
            self.view._listeners.remove(self)


class RoomView:
    def __init__(self, room_id: str, session_factory, hub: LiveQueryHub, complete=chat_completion):
        self.room_id = room_id
        self.session_factory = session_factory
        self.hub = hub
        self.complete = complete
        self.room: Optional[dict] = None
        self.messages: list[dict] = []
        self.members: list[dict] = []
        self.tasks: list[dict] = []
        self.names: dict[str, str] = {}
        self._listeners: list[ViewListener] = []
        self._subscriptions = []
        # Serializes the read-existing-then-insert task merge for this room
        self._merge_lock = asyncio.Lock()

    # --------- Lifecycle ---------
    async def open(self):
        await self._load_room()
        await self._load_messages()
        await self._load_tasks()
        self._subscriptions = [
            self.hub.subscribe(room_topic(self.room_id), self._on_room_change),
            self.hub.subscribe(messages_topic(self.room_id), self._on_messages_change),
            self.hub.subscribe(tasks_topic(self.room_id), self._on_tasks_change),
            self.hub.subscribe(USERS_TOPIC, self._on_users_change),
        ]
        return self

    def close(self):
        for sub in self._subscriptions:
            sub.unsubscribe()
        self._subscriptions = []
        self._listeners = []

    def subscribe(self, callback: Callable) -> ViewListener:
        listener = ViewListener(self, callback)
        self._listeners.append(listener)
        return listener

    def snapshot(self, viewer_uid: Optional[str] = None, now: Optional[datetime] = None) -> dict:
        return {
            "room": self.room,
            "messages": present_messages(self.messages, self.names, viewer_uid, now),
            "members": self.members,
            "tasks": self.tasks,
        }

    def can_view(self, uid: str) -> bool:
        """Same rule as rooms.can_view, applied to the loaded room."""
        if not self.room:
            return False
        if self.room["kind"] == "channel" and not self.room["is_private"]:
            return True
        return uid in self.room["member_ids"]

    # --------- Loading ---------
    async def _load_room(self):
        async with self.session_factory() as session:
            room = await load_room(session, self.room_id)
            members = await list_members(session, room)
        self.room = serialize_room(room)
        self.members = [serialize_user(u) for u in members]
        self.names.update({u["uid"]: u["display_name"] for u in self.members})

    async def _load_messages(self):
        async with self.session_factory() as session:
            rows = await list_messages(session, self.room_id)
            # Senders may have left the room; still show their names
            missing = {m.user_id for m in rows if m.user_id and m.user_id not in self.names}
            for uid in missing:
                user = await session.get(User, uid)
                if user:
                    self.names[uid] = user.display_name
        self.messages = [serialize_message(m) for m in rows]

    async def _load_tasks(self):
        async with self.session_factory() as session:
            rows = await list_tasks(session, self.room_id)
        self.tasks = [serialize_task(t) for t in rows]

    # --------- Live query callbacks ---------
    async def _on_room_change(self, topic, change):
        await self._load_room()
        await self._emit({"type": "room", "room": self.room})
        await self._emit({"type": "members", "members": self.members})

    async def _on_messages_change(self, topic, change):
        await self._load_messages()
        await self._emit({"type": "messages", "messages": present_messages(self.messages, self.names)})
        await self.run_task_extraction()

    async def _on_tasks_change(self, topic, change):
        await self._load_tasks()
        await self._emit({"type": "tasks", "tasks": self.tasks})

    async def _on_users_change(self, topic, change):
        uid = (change.get("user") or {}).get("uid")
        if uid and uid not in self.names:
            return
        await self._load_room()
        await self._emit({"type": "members", "members": self.members})

    async def _emit(self, event: dict):
        event = {"room_id": self.room_id, **event}
        for listener in list(self._listeners):
            try:
                result = listener.callback(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                print(f"❌ Room view listener for {self.room_id} failed: {e}")

    async def notify(self, title: str, description: str, variant: str = "default"):
        await self._emit({"type": "notification", "variant": variant, "title": title, "description": description})

    # --------- Task extraction ---------
    def conversation(self) -> list[dict]:
        lines = []
        for m in self.messages:
            content = m.get("content") or ""
            if not content.strip() and m.get("file_name"):
                content = f"[attachment: {m['file_name']}]"
            lines.append({"sender": self.names.get(m.get("user_id"), UNKNOWN_SENDER), "content": content})
        return lines

    async def run_task_extraction(self) -> list[dict]:
        """Send the whole conversation to the extractor and store any new tasks."""
        if not self.messages or not self.members:
            return []
        try:
            extracted = await extract_tasks_from_messages(self.conversation(), complete=self.complete)
            async with self._merge_lock:
                async with self.session_factory() as session:
                    room = await load_room(session, self.room_id)
                    members = await list_members(session, room)
                    created = await merge_extracted_tasks(session, self.room_id, extracted, members)
        except AIServiceError as e:
            print(f"❌ Task extraction failed for room {self.room_id}: {e.detail}")
            await self.notify("AI Error", "Could not extract tasks.", variant="destructive")
            return []

        if not created:
            return []
        await self.hub.publish(tasks_topic(self.room_id), {"type": "added", "count": len(created)})
        await self.notify("AI Tasks Extracted!", f"{len(created)} new task(s) were found.")
        return [serialize_task(t) for t in created]


class RoomViewRegistry:
    """One shared RoomView per room, closed when its last holder releases it."""

    def __init__(self, session_factory, hub: LiveQueryHub, complete=chat_completion):
        self.session_factory = session_factory
        self.hub = hub
        self.complete = complete
        self._views: dict[str, RoomView] = {}
        self._refs: dict[str, int] = {}
        self._lock = asyncio.Lock()

    async def acquire(self, room_id: str) -> RoomView:
        async with self._lock:
            view = self._views.get(room_id)
            if view is None:
                view = await RoomView(room_id, self.session_factory, self.hub, self.complete).open()
                self._views[room_id] = view
            self._refs[room_id] = self._refs.get(room_id, 0) + 1
            return view

    def release(self, room_id: str):
        count = self._refs.get(room_id, 0) - 1
        if count > 0:
            self._refs[room_id] = count
            return
        self._refs.pop(room_id, None)
        view = self._views.pop(room_id, None)
        if view:
            view.close()

    def is_open(self, room_id: str) -> bool:
        return room_id in self._views
