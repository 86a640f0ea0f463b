"""Record -> JSON-ready dict conversions shared by the API and live queries."""
from datetime import datetime, timezone

from db import User, ChatRoom, Message, Task


def as_utc(value: datetime) -> datetime:
    # SQLite hands back naive timestamps; the store writes UTC
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def iso(value: datetime) -> str:
    value = as_utc(value)
    return value.isoformat() if value else None


def serialize_user(u: User) -> dict:
    return {
        "uid": u.uid,
        "display_name": u.display_name,
        "email": u.email,
        "avatar_url": u.avatar_url,
        "bio": u.bio or "",
        "is_anonymous": u.is_anonymous,
    }


def serialize_session(u: User) -> dict:
    """The session object handed back by every sign-in."""
    return {
        "uid": u.uid,
        "display_name": u.display_name,
        "email": u.email,
        "is_anonymous": u.is_anonymous,
    }


def serialize_room(r: ChatRoom) -> dict:
    return {
        "id": r.id,
        "name": r.name,
        "kind": r.kind.value,
        "is_private": r.is_private,
        "member_ids": r.member_ids,
        "created_by": r.created_by,
        "created_at": iso(r.created_at),
    }


def serialize_message(m: Message) -> dict:
    return {
        "id": m.id,
        "room_id": m.room_id,
        "user_id": m.user_id,
        "content": m.content,
        "file_url": m.file_url,
        "file_name": m.file_name,
        "created_at": iso(m.created_at),
    }


def serialize_task(t: Task) -> dict:
    return {
        "id": t.id,
        "room_id": t.room_id,
        "task": t.task,
        "assignee_id": t.assignee_id,
        "completed": t.completed,
        "created_at": iso(t.created_at),
    }
