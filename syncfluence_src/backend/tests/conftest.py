import asyncio
import os
import pathlib
import sys

ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./test_syncfluence.db")
os.environ.setdefault("SECRET_KEY", "testsecret")
os.environ.setdefault("OPENAI_API_KEY", "")

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402

from app import app  # noqa: E402
from context import build_context  # noqa: E402
from db import init_db  # noqa: E402
from identity import sign_up, sign_in_anonymously  # noqa: E402


class FakeModel:
    """Stands in for the hosted chat model; replies are consumed in order."""

    def __init__(self):
        self.replies = []
        self.calls = []
        self.error = None
        self.delay = 0

    async def __call__(self, messages, **kwargs):
        self.calls.append(messages)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        if self.replies:
            return self.replies.pop(0)
        return "[]"


@pytest.fixture
def model():
    return FakeModel()


@pytest.fixture
async def ctx(tmp_path, model):
    ctx = build_context(
        f"sqlite+aiosqlite:///{tmp_path / 'chat.db'}",
        storage_dir=str(tmp_path / "storage"),
        complete=model,
    )
    await init_db(ctx.engine)
    yield ctx
    await ctx.engine.dispose()


@pytest.fixture
async def session(ctx):
    async with ctx.session_factory() as s:
        yield s


@pytest.fixture
async def client(ctx):
    app.state.chat = ctx
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.state.chat = None


@pytest.fixture
def make_user(session, ctx):
    async def _make(display_name, email=None, password="secret123"):
        email = email or f"{display_name.split()[0].lower()}@acme.io"
        user, _ = await sign_up(session, ctx.hub, email, password, display_name)
        return user
    return _make


@pytest.fixture
def make_guest(session, ctx):
    async def _make(display_name):
        user, _ = await sign_in_anonymously(session, ctx.hub, display_name)
        return user
    return _make
