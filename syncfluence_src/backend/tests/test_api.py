async def signup(client, name, email, password="secret123"):
    r = await client.post("/api/signup", json={"email": email, "password": password, "display_name": name})
    assert r.status_code == 200, r.text
    body = r.json()
    return body["user"], {"Authorization": f"Bearer {body['token']}"}


async def test_signup_login_and_me(client):
    user, headers = await signup(client, "Maria Lopez", "maria@acme.io")
    assert user["is_anonymous"] is False

    r = await client.get("/api/me", headers=headers)
    assert r.json()["user"]["display_name"] == "Maria Lopez"

    r = await client.post("/api/login", json={"email": "maria@acme.io", "password": "secret123"})
    assert r.status_code == 200
    assert r.json()["user"]["uid"] == user["uid"]


async def test_auth_errors_are_reported_with_titles(client):
    await signup(client, "Maria Lopez", "maria@acme.io")

    r = await client.post("/api/signup", json={"email": "maria@acme.io", "password": "secret123", "display_name": "Maria Two"})
    assert r.status_code == 409
    assert r.json() == {
        "ok": False,
        "title": "Sign Up Failed",
        "detail": "An account with this email already exists.",
        "code": "auth/email-already-in-use",
    }

    r = await client.post("/api/login", json={"email": "maria@acme.io", "password": "nope-nope"})
    assert r.status_code == 401
    assert r.json()["code"] == "auth/invalid-credential"


async def test_requests_need_a_session(client):
    r = await client.get("/api/rooms")
    assert r.status_code == 401
    r = await client.get("/api/rooms", headers={"Authorization": "Bearer garbage"})
    assert r.status_code == 401


async def test_anonymous_guest_can_chat_in_public_channel(client):
    _, maria = await signup(client, "Maria Lopez", "maria@acme.io")
    room = (await client.post("/api/rooms", json={"name": "general"}, headers=maria)).json()["room"]

    r = await client.post("/api/login/anonymous", json={"display_name": "Guest Fox"})
    guest = {"Authorization": f"Bearer {r.json()['token']}"}
    guest_uid = r.json()["user"]["uid"]

    r = await client.post(f"/api/rooms/{room['id']}/members/{guest_uid}", headers=guest)
    assert r.status_code == 200
    r = await client.post(f"/api/rooms/{room['id']}/messages", data={"content": "hello!"}, headers=guest)
    assert r.status_code == 200
    assert r.json()["message"]["user_id"] == guest_uid


async def test_channel_messages_flow(client, ctx):
    _, maria = await signup(client, "Maria Lopez", "maria@acme.io")
    r = await client.post("/api/rooms", json={"name": "general"}, headers=maria)
    room_id = r.json()["room"]["id"]

    r = await client.get("/api/rooms", headers=maria)
    assert [(x["id"], x["title"]) for x in r.json()["rooms"]] == [(room_id, "general")]

    for text in ["one", "two"]:
        r = await client.post(f"/api/rooms/{room_id}/messages", data={"content": text}, headers=maria)
        assert r.status_code == 200

    r = await client.post(f"/api/rooms/{room_id}/messages", data={"content": "   "}, headers=maria)
    assert r.status_code == 400
    assert r.json()["ok"] is False

    r = await client.post(
        f"/api/rooms/{room_id}/messages",
        data={"content": ""},
        files={"file": ("notes.txt", b"meeting notes", "text/plain")},
        headers=maria,
    )
    msg = r.json()["message"]
    assert msg["file_name"] == "notes.txt"
    assert msg["file_url"].startswith(f"/files/attachments/{room_id}/")
    assert ctx.storage.exists(msg["file_url"][len("/files/"):])

    r = await client.get(f"/api/rooms/{room_id}/messages", headers=maria)
    assert [m["content"] for m in r.json()["messages"]] == ["one", "two", ""]
    # The view is released once the message is stored
    assert not ctx.views.is_open(room_id)


async def test_private_rooms_and_members(client):
    _, maria = await signup(client, "Maria Lopez", "maria@acme.io")
    sam, sam_headers = await signup(client, "Sam Lee", "sam@acme.io")

    r = await client.post("/api/rooms", json={"name": "leads", "is_private": True}, headers=maria)
    room_id = r.json()["room"]["id"]
    assert (await client.get(f"/api/rooms/{room_id}", headers=sam_headers)).status_code == 404

    r = await client.get(f"/api/rooms/{room_id}/member-candidates", params={"q": "sa"}, headers=maria)
    assert [u["uid"] for u in r.json()["users"]] == [sam["uid"]]

    r = await client.post(f"/api/rooms/{room_id}/members/{sam['uid']}", headers=maria)
    assert sam["uid"] in r.json()["member_ids"]
    assert (await client.get(f"/api/rooms/{room_id}", headers=sam_headers)).status_code == 200

    r = await client.get(f"/api/rooms/{room_id}/members", headers=sam_headers)
    assert {u["display_name"] for u in r.json()["members"]} == {"Maria Lopez", "Sam Lee"}

    r = await client.delete(f"/api/rooms/{room_id}/members/{sam['uid']}", headers=maria)
    assert sam["uid"] not in r.json()["member_ids"]


async def test_direct_messages(client):
    maria, maria_headers = await signup(client, "Maria Lopez", "maria@acme.io")
    sam, sam_headers = await signup(client, "Sam Lee", "sam@acme.io")

    r = await client.post("/api/rooms/dm", json={"user_id": sam["uid"]}, headers=maria_headers)
    room = r.json()["room"]
    assert room["kind"] == "dm"
    assert room["title"] == "Sam Lee"

    r = await client.post("/api/rooms/dm", json={"user_id": maria["uid"]}, headers=sam_headers)
    assert r.json()["room"]["id"] == room["id"]
    assert r.json()["room"]["title"] == "Maria Lopez"

    r = await client.post("/api/rooms/dm", json={"user_id": maria["uid"]}, headers=maria_headers)
    assert r.status_code == 400


async def test_tasks_are_extracted_and_toggled(client, model):
    _, maria = await signup(client, "Maria Lopez", "maria@acme.io")
    sam, _ = await signup(client, "Sam Lee", "sam@acme.io")
    r = await client.post("/api/rooms", json={"name": "launch", "member_ids": [sam["uid"]]}, headers=maria)
    room_id = r.json()["room"]["id"]

    model.replies = ['[{"task": "Ship the release notes", "assignee": "Sam"}]']
    await client.post(f"/api/rooms/{room_id}/messages", data={"content": "Sam, please ship the release notes"}, headers=maria)

    [task] = (await client.get(f"/api/rooms/{room_id}/tasks", headers=maria)).json()["tasks"]
    assert task["task"] == "Ship the release notes"
    assert task["assignee_id"] == sam["uid"]
    assert task["completed"] is False

    r = await client.patch(f"/api/rooms/{room_id}/tasks/{task['id']}", json={"completed": True}, headers=maria)
    assert r.json()["task"]["completed"] is True
    r = await client.patch(f"/api/rooms/{room_id}/tasks/999", json={"completed": True}, headers=maria)
    assert r.status_code == 404


async def test_summary_endpoint(client, model):
    _, maria = await signup(client, "Maria Lopez", "maria@acme.io")
    room_id = (await client.post("/api/rooms", json={"name": "general"}, headers=maria)).json()["room"]["id"]
    await client.post(f"/api/rooms/{room_id}/messages", data={"content": "Launch moves to Friday, everyone."}, headers=maria)

    model.replies = ["Summary: Launch moved to Friday."]
    r = await client.post(f"/api/rooms/{room_id}/summary", headers=maria)
    assert r.json() == {"ok": True, "summary": "Launch moved to Friday."}

    model.error = RuntimeError("down")
    r = await client.post(f"/api/rooms/{room_id}/summary", headers=maria)
    assert r.status_code == 502
    assert r.json()["title"] == "AI Error"
    assert r.json()["detail"] == "Could not generate summary."


async def test_profile_update(client):
    _, maria = await signup(client, "Maria Lopez", "maria@acme.io")

    r = await client.patch(
        "/api/me",
        data={"display_name": "Maria L.", "bio": "Design lead"},
        files={"avatar": ("me.png", b"\x89PNG", "image/png")},
        headers=maria,
    )
    user = r.json()["user"]
    assert user["display_name"] == "Maria L."
    assert user["bio"] == "Design lead"
    assert user["avatar_url"].endswith("/me.png")

    r = await client.patch("/api/me", data={"display_name": "Maria L.", "password": "another1"}, headers=maria)
    assert r.status_code == 400
    assert r.json()["code"] == "auth/requires-recent-login"


async def test_outsider_upload_is_rejected_before_storage(client, ctx):
    _, maria = await signup(client, "Maria Lopez", "maria@acme.io")
    _, sam = await signup(client, "Sam Lee", "sam@acme.io")
    room_id = (await client.post("/api/rooms", json={"name": "general"}, headers=maria)).json()["room"]["id"]

    r = await client.post(
        f"/api/rooms/{room_id}/messages",
        data={"content": "hi"},
        files={"file": ("x.bin", b"\x00\x01", "application/octet-stream")},
        headers=sam,
    )

    assert r.status_code == 403
    assert r.json()["title"] == "Permission Denied"
    assert not (ctx.storage.root / "attachments").exists()


async def test_stored_files_are_served_from_context_storage(client, ctx):
    _, maria = await signup(client, "Maria Lopez", "maria@acme.io")
    room_id = (await client.post("/api/rooms", json={"name": "general"}, headers=maria)).json()["room"]["id"]
    r = await client.post(
        f"/api/rooms/{room_id}/messages",
        data={"content": "agenda attached"},
        files={"file": ("agenda.txt", b"1. launch", "text/plain")},
        headers=maria,
    )
    file_url = r.json()["message"]["file_url"]

    r = await client.get(file_url)
    assert r.status_code == 200
    assert r.content == b"1. launch"

    r = await client.get("/files/attachments/nope.txt")
    assert r.status_code == 404
