from typing import Optional, List

from fastapi import FastAPI, WebSocket, WebSocketDisconnect, Depends, HTTPException, Request, UploadFile, File, Form
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, FileResponse
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_user_token, decode_access_token
from config import APP_HOST, APP_PORT, CORS_ORIGINS, PUBLIC_FILES_URL
from context import ChatContext, build_context
from db import User, init_db
from errors import ChatError, AuthError, NotFound, ValidationFailed
from identity import sign_up, sign_in_with_password, sign_in_anonymously, sign_in_with_oauth
from profile_settings import update_profile
from rooms import (
    get_room, list_rooms, room_title, create_channel, open_direct_message, list_messages,
    list_members, send_message, check_can_send, add_member, remove_member, search_member_candidates,
)
from serializers import serialize_user, serialize_session, serialize_room, serialize_message, serialize_task
from live_query import tasks_topic
from storage import attachment_path
from summarizer import summarize_chat_history
from task_manager import list_tasks, set_task_completed

app = FastAPI(title="Syncfluence Chat")

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --------- Schemas ---------
class SignupPayload(BaseModel):
    email: str
    password: str
    display_name: str


class LoginPayload(BaseModel):
    email: str
    password: str


class AnonymousPayload(BaseModel):
    display_name: str


class OAuthPayload(BaseModel):
    provider: str
    access_token: str


class ChannelPayload(BaseModel):
    name: str
    is_private: bool = False
    member_ids: List[str] = []


class DirectMessagePayload(BaseModel):
    user_id: str


class TaskUpdatePayload(BaseModel):
    completed: bool


# --------- Dependencies ---------
def get_ctx(request: Request) -> ChatContext:
    return request.app.state.chat


async def get_db(ctx: ChatContext = Depends(get_ctx)) -> AsyncSession:
    async with ctx.session_factory() as session:
        yield session


async def get_current_user(uid: str = Depends(get_current_user_token), session: AsyncSession = Depends(get_db)) -> User:
    user = await session.get(User, uid)
    if not user:
        raise HTTPException(status_code=401, detail="Invalid user")
    return user


# --------- Error handling ---------
@app.exception_handler(ChatError)
async def chat_error_handler(request: Request, exc: ChatError):
    body = {"ok": False, "title": exc.title, "detail": exc.detail}
    if isinstance(exc, AuthError):
        body["code"] = exc.code
    return JSONResponse(status_code=exc.status_code, content=body)


# --------- Routes ---------
@app.on_event("startup")
async def on_startup():
    if getattr(app.state, "chat", None) is None:
        app.state.chat = build_context()
    await init_db(app.state.chat.engine)
    print(f"🚀 Syncfluence ready on {APP_HOST}:{APP_PORT}")


@app.on_event("shutdown")
async def on_shutdown():
    ctx = getattr(app.state, "chat", None)
    if ctx is not None:
        await ctx.engine.dispose()


def session_response(user: User, token: str) -> dict:
    return {"ok": True, "token": token, "user": serialize_session(user)}


@app.post("/api/signup")
async def signup(payload: SignupPayload, ctx: ChatContext = Depends(get_ctx), session: AsyncSession = Depends(get_db)):
    user, token = await sign_up(session, ctx.hub, payload.email, payload.password, payload.display_name)
    return session_response(user, token)


@app.post("/api/login")
async def login(payload: LoginPayload, session: AsyncSession = Depends(get_db)):
    user, token = await sign_in_with_password(session, payload.email, payload.password)
    return session_response(user, token)


@app.post("/api/login/anonymous")
async def login_anonymous(payload: AnonymousPayload, ctx: ChatContext = Depends(get_ctx), session: AsyncSession = Depends(get_db)):
    user, token = await sign_in_anonymously(session, ctx.hub, payload.display_name)
    return session_response(user, token)


@app.post("/api/login/oauth")
async def login_oauth(payload: OAuthPayload, ctx: ChatContext = Depends(get_ctx), session: AsyncSession = Depends(get_db)):
    user, token = await sign_in_with_oauth(session, ctx.hub, payload.provider, payload.access_token)
    return session_response(user, token)


@app.get("/api/me")
async def get_me(user: User = Depends(get_current_user)):
    return {"user": serialize_user(user)}


@app.patch("/api/me")
async def update_me(
    display_name: str = Form(...),
    bio: str = Form(""),
    email: Optional[str] = Form(None),
    password: Optional[str] = Form(None),
    current_password: Optional[str] = Form(None),
    avatar: Optional[UploadFile] = File(None),
    user: User = Depends(get_current_user),
    ctx: ChatContext = Depends(get_ctx),
    session: AsyncSession = Depends(get_db),
):
    avatar_data = await avatar.read() if avatar else None
    user = await update_profile(
        session, ctx.hub, ctx.storage, user,
        display_name=display_name,
        bio=bio,
        email=email,
        password=password,
        current_password=current_password,
        avatar_filename=avatar.filename if avatar else None,
        avatar_data=avatar_data,
    )
    return {"ok": True, "user": serialize_user(user)}


@app.get("/api/users")
async def get_users(user: User = Depends(get_current_user), session: AsyncSession = Depends(get_db)):
    res = await session.execute(select(User).order_by(User.display_name))
    return {"users": [serialize_user(u) for u in res.scalars().all()]}


# --------- Rooms ---------
@app.get("/api/rooms")
async def get_rooms(user: User = Depends(get_current_user), session: AsyncSession = Depends(get_db)):
    rooms = await list_rooms(session, user)
    out = []
    for r in rooms:
        out.append({**serialize_room(r), "title": await room_title(session, r, user)})
    return {"rooms": out}


@app.post("/api/rooms")
async def post_room(payload: ChannelPayload, user: User = Depends(get_current_user),
                    ctx: ChatContext = Depends(get_ctx), session: AsyncSession = Depends(get_db)):
    room = await create_channel(session, ctx.hub, user, payload.name, payload.is_private, payload.member_ids)
    return {"ok": True, "room": serialize_room(room)}


@app.post("/api/rooms/dm")
async def post_direct_message(payload: DirectMessagePayload, user: User = Depends(get_current_user),
                              ctx: ChatContext = Depends(get_ctx), session: AsyncSession = Depends(get_db)):
    room = await open_direct_message(session, ctx.hub, user, payload.user_id)
    return {"ok": True, "room": {**serialize_room(room), "title": await room_title(session, room, user)}}


@app.get("/api/rooms/{room_id}")
async def get_room_detail(room_id: str, user: User = Depends(get_current_user), session: AsyncSession = Depends(get_db)):
    room = await get_room(session, user, room_id)
    return {"room": {**serialize_room(room), "title": await room_title(session, room, user)}}


@app.get("/api/rooms/{room_id}/members")
async def get_room_members(room_id: str, user: User = Depends(get_current_user), session: AsyncSession = Depends(get_db)):
    room = await get_room(session, user, room_id)
    return {"members": [serialize_user(u) for u in await list_members(session, room)]}


@app.post("/api/rooms/{room_id}/members/{user_id}")
async def post_room_member(room_id: str, user_id: str, user: User = Depends(get_current_user),
                           ctx: ChatContext = Depends(get_ctx), session: AsyncSession = Depends(get_db)):
    room = await get_room(session, user, room_id)
    room = await add_member(session, ctx.hub, room, user, user_id)
    return {"ok": True, "member_ids": room.member_ids}


@app.delete("/api/rooms/{room_id}/members/{user_id}")
async def delete_room_member(room_id: str, user_id: str, user: User = Depends(get_current_user),
                             ctx: ChatContext = Depends(get_ctx), session: AsyncSession = Depends(get_db)):
    room = await get_room(session, user, room_id)
    room = await remove_member(session, ctx.hub, room, user, user_id)
    return {"ok": True, "member_ids": room.member_ids}


@app.get("/api/rooms/{room_id}/member-candidates")
async def get_member_candidates(room_id: str, q: str = "", user: User = Depends(get_current_user),
                                session: AsyncSession = Depends(get_db)):
    room = await get_room(session, user, room_id)
    return {"users": [serialize_user(u) for u in await search_member_candidates(session, room, q)]}


# --------- Messages ---------
@app.get("/api/rooms/{room_id}/messages")
async def get_messages(room_id: str, user: User = Depends(get_current_user), session: AsyncSession = Depends(get_db)):
    room = await get_room(session, user, room_id)
    return {"messages": [serialize_message(m) for m in await list_messages(session, room.id)]}


@app.post("/api/rooms/{room_id}/messages")
async def post_message(
    room_id: str,
    content: str = Form(""),
    file: Optional[UploadFile] = File(None),
    user: User = Depends(get_current_user),
    ctx: ChatContext = Depends(get_ctx),
    session: AsyncSession = Depends(get_db),
):
    room = await get_room(session, user, room_id)
    has_file = file is not None and bool(file.filename)
    # Reject before anything is uploaded or written
    if not content.strip() and not has_file:
        raise ValidationFailed("Message must have content or an attachment.")
    check_can_send(room, user)

    file_url = file_name = None
    if has_file:
        file_name = file.filename
        file_url = ctx.storage.save(attachment_path(room.id, file_name), await file.read())

    # Hold the room view so the message change reaches task extraction
    await ctx.views.acquire(room.id)
    try:
        msg = await send_message(session, ctx.hub, room, user, content, file_url=file_url, file_name=file_name)
    finally:
        ctx.views.release(room.id)
    return {"ok": True, "message": serialize_message(msg)}


# --------- Tasks ---------
@app.get("/api/rooms/{room_id}/tasks")
async def get_tasks(room_id: str, user: User = Depends(get_current_user), session: AsyncSession = Depends(get_db)):
    room = await get_room(session, user, room_id)
    return {"tasks": [serialize_task(t) for t in await list_tasks(session, room.id)]}


@app.patch("/api/rooms/{room_id}/tasks/{task_id}")
async def patch_task(room_id: str, task_id: int, payload: TaskUpdatePayload, user: User = Depends(get_current_user),
                     ctx: ChatContext = Depends(get_ctx), session: AsyncSession = Depends(get_db)):
    room = await get_room(session, user, room_id)
    task = await set_task_completed(session, room.id, task_id, payload.completed)
    await ctx.hub.publish(tasks_topic(room.id), {"type": "updated", "task": serialize_task(task)})
    return {"ok": True, "task": serialize_task(task)}


@app.post("/api/rooms/{room_id}/summary")
async def post_summary(room_id: str, user: User = Depends(get_current_user),
                       ctx: ChatContext = Depends(get_ctx), session: AsyncSession = Depends(get_db)):
    room = await get_room(session, user, room_id)
    view = await ctx.views.acquire(room.id)
    try:
        transcript = [
            {"sender": view.names.get(m["user_id"], "Unknown"), "content": m["content"], "file_name": m["file_name"]}
            for m in view.messages
        ]
    finally:
        ctx.views.release(room.id)
    summary = await summarize_chat_history(transcript, complete=ctx.complete)
    return {"ok": True, "summary": summary}


# --------- Live queries ---------
@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket, token: str = ""):
    ctx: ChatContext = websocket.app.state.chat
    uid = decode_access_token(token) if token else None
    if not uid:
        await websocket.close(code=1008)
        return

    conn = await ctx.manager.connect(websocket, uid)
    try:
        while True:
            data = await websocket.receive_json()
            action = data.get("action")
            room_id = data.get("room_id")
            if action == "subscribe" and room_id:
                try:
                    async with ctx.session_factory() as session:
                        user = await session.get(User, uid)
                        if not user:
                            raise NotFound("User not found.")
                        await get_room(session, user, room_id)
                    await ctx.manager.subscribe(conn, room_id)
                except ChatError as e:
                    await conn.send({"type": "notification", "variant": "destructive", "title": e.title, "description": e.detail})
            elif action == "unsubscribe" and room_id:
                ctx.manager.unsubscribe(conn, room_id)
            else:
                await conn.send({"type": "ack", "echo": data})
    except WebSocketDisconnect:
        ctx.manager.disconnect(conn)


# --------- Stored files ---------
@app.get(PUBLIC_FILES_URL + "/{path:path}")
async def get_stored_file(path: str, ctx: ChatContext = Depends(get_ctx)):
    # Served from the context storage root so URLs follow STORAGE_DIR overrides
    if not ctx.storage.exists(path):
        raise NotFound("File not found.")
    return FileResponse(ctx.storage.path_for(path))
