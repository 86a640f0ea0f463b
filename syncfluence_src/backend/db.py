import enum
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy import String, Text, Boolean, ForeignKey, DateTime, func, Enum, UniqueConstraint

from config import DATABASE_URL


class Base(DeclarativeBase):
    pass


class AuthProvider(enum.Enum):
    password = "password"
    anonymous = "anonymous"
    google = "google"
    github = "github"


class User(Base):
    __tablename__ = "users"
    uid: Mapped[str] = mapped_column(String(64), primary_key=True)
    display_name: Mapped[str] = mapped_column(String(50), index=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=True)
    avatar_url: Mapped[str] = mapped_column(Text(), default="")
    bio: Mapped[str] = mapped_column(String(160), default="")
    is_anonymous: Mapped[bool] = mapped_column(Boolean(), default=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=True)
    auth_provider: Mapped[AuthProvider] = mapped_column(Enum(AuthProvider), default=AuthProvider.password)
    provider_uid: Mapped[str] = mapped_column(String(255), nullable=True, index=True)
    created_at: Mapped["DateTime"] = mapped_column(DateTime(timezone=True), server_default=func.now())
    messages = relationship("Message", back_populates="user")


class RoomKind(enum.Enum):
    channel = "channel"
    dm = "dm"


class ChatRoom(Base):
    __tablename__ = "chat_rooms"
    id: Mapped[str] = mapped_column(String(100), primary_key=True)
    name: Mapped[str] = mapped_column(String(80))
    kind: Mapped[RoomKind] = mapped_column(Enum(RoomKind), default=RoomKind.channel)
    is_private: Mapped[bool] = mapped_column(Boolean(), default=False)
    created_by: Mapped[str] = mapped_column(ForeignKey("users.uid", ondelete="SET NULL"), nullable=True)
    created_at: Mapped["DateTime"] = mapped_column(DateTime(timezone=True), server_default=func.now())
    memberships = relationship(
        "RoomMembership", back_populates="room", lazy="selectin", cascade="all, delete-orphan"
    )

    @property
    def member_ids(self) -> list[str]:
        return [m.user_id for m in self.memberships]


class RoomMembership(Base):
    __tablename__ = "room_memberships"
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    room_id: Mapped[str] = mapped_column(ForeignKey("chat_rooms.id", ondelete="CASCADE"), index=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.uid", ondelete="CASCADE"), index=True)
    joined_at: Mapped["DateTime"] = mapped_column(DateTime(timezone=True), server_default=func.now())
    room = relationship("ChatRoom", back_populates="memberships")

    __table_args__ = (
        UniqueConstraint("room_id", "user_id", name="uq_room_member"),
    )


class Message(Base):
    __tablename__ = "messages"
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    room_id: Mapped[str] = mapped_column(ForeignKey("chat_rooms.id", ondelete="CASCADE"), index=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.uid", ondelete="SET NULL"), nullable=True)
    content: Mapped[str] = mapped_column(Text(), default="")
    file_url: Mapped[str] = mapped_column(Text(), nullable=True)
    file_name: Mapped[str] = mapped_column(String(255), nullable=True)
    created_at: Mapped["DateTime"] = mapped_column(DateTime(timezone=True), server_default=func.now(), index=True)
    user = relationship("User", back_populates="messages")


class Task(Base):
    __tablename__ = "tasks"
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    room_id: Mapped[str] = mapped_column(ForeignKey("chat_rooms.id", ondelete="CASCADE"), index=True)
    task: Mapped[str] = mapped_column(Text())
    assignee_id: Mapped[str] = mapped_column(ForeignKey("users.uid", ondelete="SET NULL"), nullable=True)
    completed: Mapped[bool] = mapped_column(Boolean(), default=False)
    created_at: Mapped["DateTime"] = mapped_column(DateTime(timezone=True), server_default=func.now())


def create_session_factory(url: str = DATABASE_URL):
    """Build an async engine and its session factory for a database URL."""
    engine = create_async_engine(url, echo=False, pool_pre_ping=True)
    session_factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
    return engine, session_factory


async def init_db(engine):
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
