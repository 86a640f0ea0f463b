from rooms import create_channel, send_message, remove_member


class FakeSocket:
    def __init__(self):
        self.accepted = False
        self.sent = []

    async def accept(self):
        self.accepted = True

    async def send_json(self, data):
        self.sent.append(data)

    def contents(self):
        return [m["content"] for e in self.sent if e["type"] in ("snapshot", "messages") for m in e["messages"]]


async def test_subscribe_sends_snapshot_then_changes(session, ctx, make_user):
    maria = await make_user("Maria Lopez")
    room = await create_channel(session, ctx.hub, maria, "general")
    await send_message(session, ctx.hub, room, maria, "earlier")

    ws = FakeSocket()
    conn = await ctx.manager.connect(ws, maria.uid)
    await ctx.manager.subscribe(conn, room.id)

    assert ws.accepted
    snapshot = ws.sent[0]
    assert snapshot["type"] == "snapshot"
    assert snapshot["room_id"] == room.id
    assert [m["content"] for m in snapshot["messages"]] == ["earlier"]
    assert snapshot["messages"][0]["is_current_user"] is True

    await send_message(session, ctx.hub, room, maria, "later")
    update = next(e for e in ws.sent if e["type"] == "messages")
    assert [m["content"] for m in update["messages"]] == ["earlier", "later"]
    # Updates carry the same display state as the snapshot
    assert [m["sender_name"] for m in update["messages"]] == ["Maria Lopez", "Maria Lopez"]
    assert [m["is_continuation"] for m in update["messages"]] == [False, True]
    assert [m["is_current_user"] for m in update["messages"]] == [True, True]
    assert all(m["display_time"] for m in update["messages"])


async def test_message_updates_are_marked_per_viewer(session, ctx, make_user):
    maria = await make_user("Maria Lopez")
    sam = await make_user("Sam Lee")
    room = await create_channel(session, ctx.hub, maria, "general", member_ids=[sam.uid])

    maria_ws, sam_ws = FakeSocket(), FakeSocket()
    await ctx.manager.subscribe(await ctx.manager.connect(maria_ws, maria.uid), room.id)
    await ctx.manager.subscribe(await ctx.manager.connect(sam_ws, sam.uid), room.id)

    await send_message(session, ctx.hub, room, maria, "hello Sam")

    [maria_update] = [e for e in maria_ws.sent if e["type"] == "messages"]
    [sam_update] = [e for e in sam_ws.sent if e["type"] == "messages"]
    assert maria_update["messages"][0]["is_current_user"] is True
    assert sam_update["messages"][0]["is_current_user"] is False


async def test_removed_member_stops_receiving_private_room(session, ctx, make_user):
    maria = await make_user("Maria Lopez")
    sam = await make_user("Sam Lee")
    room = await create_channel(session, ctx.hub, maria, "secret", is_private=True, member_ids=[sam.uid])

    maria_ws, sam_ws = FakeSocket(), FakeSocket()
    await ctx.manager.subscribe(await ctx.manager.connect(maria_ws, maria.uid), room.id)
    sam_conn = await ctx.manager.connect(sam_ws, sam.uid)
    await ctx.manager.subscribe(sam_conn, room.id)

    room = await remove_member(session, ctx.hub, room, maria, sam.uid)
    await send_message(session, ctx.hub, room, maria, "private after removal")

    assert "private after removal" not in sam_ws.contents()
    assert "private after removal" in maria_ws.contents()
    assert sam_conn.rooms == {}
    assert sam_ws.sent[-1] == {
        "type": "notification",
        "room_id": room.id,
        "variant": "destructive",
        "title": "Removed from Room",
        "description": "You no longer have access to this room.",
    }
    # Maria still holds the view
    assert ctx.views.is_open(room.id)


async def test_removal_from_public_channel_keeps_the_feed(session, ctx, make_user):
    maria = await make_user("Maria Lopez")
    sam = await make_user("Sam Lee")
    room = await create_channel(session, ctx.hub, maria, "general", member_ids=[sam.uid])

    sam_ws = FakeSocket()
    sam_conn = await ctx.manager.connect(sam_ws, sam.uid)
    await ctx.manager.subscribe(sam_conn, room.id)

    room = await remove_member(session, ctx.hub, room, maria, sam.uid)
    await send_message(session, ctx.hub, room, maria, "public news")

    assert room.id in sam_conn.rooms
    assert "public news" in sam_ws.contents()


async def test_disconnect_releases_views(session, ctx, make_user):
    maria = await make_user("Maria Lopez")
    room = await create_channel(session, ctx.hub, maria, "general")

    conn = await ctx.manager.connect(FakeSocket(), maria.uid)
    await ctx.manager.subscribe(conn, room.id)
    # Subscribing twice keeps a single hold on the view
    await ctx.manager.subscribe(conn, room.id)
    assert ctx.views.is_open(room.id)

    ctx.manager.disconnect(conn)

    assert not ctx.views.is_open(room.id)
    assert ctx.manager.active_connections == []
