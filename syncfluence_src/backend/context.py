from dataclasses import dataclass, field

from config import DATABASE_URL, STORAGE_DIR, PUBLIC_FILES_URL
from db import create_session_factory
from live_query import LiveQueryHub
from llm import chat_completion
from room_view import RoomViewRegistry
from storage import LocalObjectStorage
from websocket_manager import ConnectionManager


@dataclass
class ChatContext:
    """Everything a request handler needs, passed explicitly instead of via module globals."""
    engine: object
    session_factory: object
    storage: LocalObjectStorage
    complete: object = chat_completion
    hub: LiveQueryHub = field(default_factory=LiveQueryHub)
    views: RoomViewRegistry = None
    manager: ConnectionManager = None

    def __post_init__(self):
        if self.views is None:
            self.views = RoomViewRegistry(self.session_factory, self.hub, self.complete)
        if self.manager is None:
            self.manager = ConnectionManager(self.views)


def build_context(database_url: str = DATABASE_URL, storage_dir: str = STORAGE_DIR,
                  public_files_url: str = PUBLIC_FILES_URL, complete=chat_completion) -> ChatContext:
    engine, session_factory = create_session_factory(database_url)
    return ChatContext(
        engine=engine,
        session_factory=session_factory,
        storage=LocalObjectStorage(storage_dir, public_files_url),
        complete=complete,
    )
