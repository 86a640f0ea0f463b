from fastapi import WebSocket

from room_view import RoomViewRegistry

ACCESS_CHANGE_EVENTS = ("room", "members")


class ClientConnection:
    def __init__(self, websocket: WebSocket, uid: str):
        self.websocket = websocket
        self.uid = uid
        # room_id -> listener handle on the shared RoomView
        self.rooms = {}

    async def send(self, event: dict):
        await self.websocket.send_json(event)


class ConnectionManager:
    """Binds WebSocket clients to live room views."""

    def __init__(self, views: RoomViewRegistry):
        self.views = views
        self.active_connections: list[ClientConnection] = []

    async def connect(self, websocket: WebSocket, uid: str) -> ClientConnection:
        await websocket.accept()
        conn = ClientConnection(websocket, uid)
        self.active_connections.append(conn)
        return conn

    def disconnect(self, conn: ClientConnection):
        for room_id in list(conn.rooms):
            self._drop(conn, room_id)
        if conn in self.active_connections:
            self.active_connections.remove(conn)

    async def subscribe(self, conn: ClientConnection, room_id: str):
        if room_id in conn.rooms:
            return
        view = await self.views.acquire(room_id)

        async def deliver(event: dict):
            # Membership can change while subscribed; recheck on every room reload
            if event["type"] in ACCESS_CHANGE_EVENTS and not view.can_view(conn.uid):
                await self._revoke(conn, room_id)
                return
            if event["type"] == "messages":
                event = {**event, "messages": self._for_viewer(event["messages"], conn.uid)}
            await conn.send(event)

        conn.rooms[room_id] = view.subscribe(deliver)
        await conn.send({"type": "snapshot", "room_id": room_id, **view.snapshot(viewer_uid=conn.uid)})

    def unsubscribe(self, conn: ClientConnection, room_id: str):
        if room_id in conn.rooms:
            self._drop(conn, room_id)

    def _drop(self, conn: ClientConnection, room_id: str):
        listener = conn.rooms.pop(room_id)
        listener.unsubscribe()
        self.views.release(room_id)

    async def _revoke(self, conn: ClientConnection, room_id: str):
        if room_id not in conn.rooms:
            return
        self._drop(conn, room_id)
        print(f"🚫 {conn.uid} lost access to room {room_id}")
        await conn.send({
            "type": "notification",
            "room_id": room_id,
            "variant": "destructive",
            "title": "Removed from Room",
            "description": "You no longer have access to this room.",
        })

    @staticmethod
    def _for_viewer(messages: list[dict], uid: str) -> list[dict]:
        return [{**m, "is_current_user": m.get("user_id") == uid} for m in messages]
