import uuid
from typing import Optional

from sqlalchemy import select, or_, func
from sqlalchemy.ext.asyncio import AsyncSession

from db import ChatRoom, RoomKind, RoomMembership, Message, User
from errors import NotFound, PermissionDenied, ValidationFailed
from forms import ChannelForm, validate_form
from live_query import LiveQueryHub, room_topic, messages_topic
from serializers import serialize_room, serialize_message


def dm_room_id(uid_a: str, uid_b: str) -> str:
    return "dm-" + "-".join(sorted([uid_a, uid_b]))


def can_view(room: ChatRoom, user: User) -> bool:
    if room.kind == RoomKind.channel and not room.is_private:
        return True
    return user.uid in room.member_ids


async def load_room(session: AsyncSession, room_id: str) -> ChatRoom:
    room = await session.get(ChatRoom, room_id)
    if not room:
        raise NotFound("Room not found.")
    return room


async def get_room(session: AsyncSession, user: User, room_id: str) -> ChatRoom:
    room = await load_room(session, room_id)
    # Hidden rooms look the same as missing ones
    if not can_view(room, user):
        raise NotFound("Room not found.")
    return room


async def list_rooms(session: AsyncSession, user: User) -> list[ChatRoom]:
    member_of = select(RoomMembership.room_id).where(RoomMembership.user_id == user.uid)
    res = await session.execute(
        select(ChatRoom).where(
            or_(
                (ChatRoom.kind == RoomKind.channel) & (ChatRoom.is_private == False),  # noqa: E712
                ChatRoom.id.in_(member_of),
            )
        ).order_by(ChatRoom.kind, ChatRoom.name)
    )
    return list(res.scalars().all())


async def room_title(session: AsyncSession, room: ChatRoom, viewer: User) -> str:
    """Channels show their name; a DM shows the other participant."""
    if room.kind == RoomKind.channel:
        return room.name
    other_ids = [uid for uid in room.member_ids if uid != viewer.uid]
    if other_ids:
        other = await session.get(User, other_ids[0])
        if other:
            return other.display_name
    return room.name


async def create_channel(session: AsyncSession, hub: LiveQueryHub, creator: User, name: str,
                         is_private: bool = False, member_ids: Optional[list[str]] = None) -> ChatRoom:
    form = validate_form(ChannelForm, name=name, is_private=is_private)
    wanted = {creator.uid, *(member_ids or [])}
    if member_ids:
        res = await session.execute(select(User.uid).where(User.uid.in_(wanted)))
        known = set(res.scalars().all())
        missing = wanted - known
        if missing:
            raise ValidationFailed(f"Unknown user(s): {', '.join(sorted(missing))}")

    room = ChatRoom(
        id=uuid.uuid4().hex,
        name=form.name,
        kind=RoomKind.channel,
        is_private=form.is_private,
        created_by=creator.uid,
    )
    room.memberships = [RoomMembership(user_id=uid) for uid in sorted(wanted)]
    session.add(room)
    await session.commit()
    await session.refresh(room)
    print(f"💬 Channel #{room.name} created by {creator.display_name}")
    await hub.publish(room_topic(room.id), {"type": "created", "room": serialize_room(room)})
    return room


async def open_direct_message(session: AsyncSession, hub: LiveQueryHub, current_user: User, other_user_id: str) -> ChatRoom:
    if other_user_id == current_user.uid:
        raise ValidationFailed("You cannot start a direct message with yourself.")
    other = await session.get(User, other_user_id)
    if not other:
        raise NotFound("User not found.")

    room_id = dm_room_id(current_user.uid, other.uid)
    room = await session.get(ChatRoom, room_id)
    if room:
        return room

    room = ChatRoom(
        id=room_id,
        name=f"{current_user.display_name}, {other.display_name}"[:80],
        kind=RoomKind.dm,
        is_private=True,
        created_by=current_user.uid,
    )
    room.memberships = [RoomMembership(user_id=current_user.uid), RoomMembership(user_id=other.uid)]
    session.add(room)
    await session.commit()
    await session.refresh(room)
    await hub.publish(room_topic(room.id), {"type": "created", "room": serialize_room(room)})
    return room


async def list_messages(session: AsyncSession, room_id: str) -> list[Message]:
    res = await session.execute(
        select(Message).where(Message.room_id == room_id).order_by(Message.created_at, Message.id)
    )
    return list(res.scalars().all())


async def list_members(session: AsyncSession, room: ChatRoom) -> list[User]:
    if not room.member_ids:
        return []
    res = await session.execute(select(User).where(User.uid.in_(room.member_ids)).order_by(User.display_name))
    return list(res.scalars().all())


def check_can_send(room: ChatRoom, sender: User):
    if sender.uid not in room.member_ids:
        raise PermissionDenied("Join this room to send messages.")


async def send_message(session: AsyncSession, hub: LiveQueryHub, room: ChatRoom, sender: User, content: str,
                       file_url: Optional[str] = None, file_name: Optional[str] = None) -> Message:
    content = content or ""
    if not content.strip() and not file_url:
        raise ValidationFailed("Message must have content or an attachment.")
    check_can_send(room, sender)

    msg = Message(room_id=room.id, user_id=sender.uid, content=content, file_url=file_url, file_name=file_name)
    session.add(msg)
    await session.commit()
    await session.refresh(msg)
    await hub.publish(messages_topic(room.id), {"type": "added", "message": serialize_message(msg)})
    return msg


async def add_member(session: AsyncSession, hub: LiveQueryHub, room: ChatRoom, actor: User, user_id: str) -> ChatRoom:
    if room.kind != RoomKind.channel:
        raise ValidationFailed("Members can only be managed in channels.")
    # Anyone may join a public channel; otherwise only members add people
    joining_self = user_id == actor.uid and not room.is_private
    if actor.uid not in room.member_ids and not joining_self:
        raise PermissionDenied("Only members can add people to this channel.")
    user = await session.get(User, user_id)
    if not user:
        raise NotFound("User not found.")
    if user_id in room.member_ids:
        return room

    session.add(RoomMembership(room_id=room.id, user_id=user_id))
    await session.commit()
    await session.refresh(room, ["memberships"])
    print(f"➕ {user.display_name} added to #{room.name}")
    await hub.publish(room_topic(room.id), {"type": "member_added", "user_id": user_id})
    return room


async def remove_member(session: AsyncSession, hub: LiveQueryHub, room: ChatRoom, actor: User, user_id: str) -> ChatRoom:
    if room.kind != RoomKind.channel:
        raise ValidationFailed("Members can only be managed in channels.")
    if actor.uid not in room.member_ids:
        raise PermissionDenied("Only members can remove people from this channel.")

    res = await session.execute(
        select(RoomMembership).where(RoomMembership.room_id == room.id, RoomMembership.user_id == user_id)
    )
    membership = res.scalar_one_or_none()
    if not membership:
        return room

    await session.delete(membership)
    await session.commit()
    await session.refresh(room, ["memberships"])
    print(f"➖ {user_id} removed from #{room.name}")
    await hub.publish(room_topic(room.id), {"type": "member_removed", "user_id": user_id})
    return room


async def search_member_candidates(session: AsyncSession, room: ChatRoom, query: str, limit: int = 20) -> list[User]:
    """Registered users outside the room whose name contains the query."""
    query = (query or "").strip().lower()
    if not query:
        return []
    stmt = select(User).where(
        User.is_anonymous == False,  # noqa: E712
        func.lower(User.display_name).contains(query, autoescape=True),
    )
    if room.member_ids:
        stmt = stmt.where(User.uid.not_in(room.member_ids))
    res = await session.execute(stmt.order_by(User.display_name).limit(limit))
    return list(res.scalars().all())
