"""SQLAlchemy models."""
from sqlalchemy import (
    Boolean, Column, Date, DateTime, ForeignKey, Integer, String, Text, CheckConstraint, Index
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .config import settings
from .database import Base


class Identity(Base):
    """End user keyed by the Telegram user id."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    telegram_id = Column(String(50), unique=True, nullable=False, index=True)
    username = Column(String(255), nullable=False)
    first_name = Column(String(255), nullable=True)
    plan = Column(String(50), nullable=False, default=lambda: settings.DEFAULT_PLAN)
    daily_limit = Column(Integer, nullable=False, default=lambda: settings.DEFAULT_DAILY_LIMIT)
    used_today = Column(Integer, nullable=False, default=0)
    total_messages = Column(Integer, nullable=False, default=0)
    # Calendar date (server-local) of the last quota reset; NULL until the first send.
    last_reset = Column(Date, nullable=True)
    is_blocked = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        CheckConstraint("daily_limit >= 0", name="chk_users_daily_limit"),
        CheckConstraint("used_today >= 0", name="chk_users_used_today"),
    )

    # Relationships
    chats = relationship("Chat", back_populates="user", cascade="all, delete-orphan")


class Chat(Base):
    """Conversation owned by an identity."""
    __tablename__ = "chats"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(255), nullable=False, default=lambda: settings.DEFAULT_CHAT_TITLE)
    model = Column(String(100), nullable=False, default=lambda: settings.GEMINI_MODEL)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    user = relationship("Identity", back_populates="chats")
    messages = relationship(
        "Message",
        back_populates="chat",
        cascade="all, delete-orphan",
        order_by="Message.id",
    )


class Message(Base):
    """Single conversational turn."""
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    chat_id = Column(Integer, ForeignKey("chats.id", ondelete="CASCADE"), nullable=False)
    role = Column(String(20), nullable=False)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        CheckConstraint(role.in_(["user", "assistant"]), name="chk_message_role"),
        Index("idx_messages_chat_id_id", "chat_id", "id"),
    )

    # Relationships
    chat = relationship("Chat", back_populates="messages")
