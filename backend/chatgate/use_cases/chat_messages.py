"""Chat and message use-cases extracted from HTTP router."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol, Sequence

from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from ..domain_errors import DomainError, GenerationError, QuotaExceededError
from ..models import Chat, Identity, Message
from ..services.ai_providers import ChatTurn
from ..services.quota import QuotaDecision, QuotaLedger

logger = logging.getLogger(__name__)

GENERATION_FAILED_TEXT = (
    "Извините, произошла ошибка при генерации ответа. Попробуйте позже."
)


class ReplyGenerator(Protocol):
    async def generate(self, history: Sequence[ChatTurn]) -> str: ...


@dataclass(frozen=True)
class SendMessageResult:
    user_message: Message
    assistant_message: Message | None
    quota: QuotaDecision
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.assistant_message is not None


def get_owned_chat(db: Session, *, chat_id: int, identity: Identity) -> Chat:
    """Load a chat by (id, user_id) or raise 404."""
    chat = db.query(Chat).filter(Chat.id == chat_id, Chat.user_id == identity.id).first()
    if not chat:
        raise DomainError(
            code="CHAT_NOT_FOUND",
            http_status=404,
            message="Chat not found",
        )
    return chat


def list_chats_use_case(*, db: Session, identity: Identity, limit: int) -> list[Chat]:
    return (
        db.query(Chat)
        .filter(Chat.user_id == identity.id)
        .order_by(Chat.id.desc())
        .limit(limit)
        .all()
    )


def create_chat_use_case(
    *,
    db: Session,
    identity: Identity,
    title: str | None = None,
    model: str | None = None,
) -> Chat:
    chat = Chat(user_id=identity.id)
    if title and title.strip():
        chat.title = title.strip()
    if model:
        chat.model = model
    db.add(chat)
    db.commit()
    db.refresh(chat)
    return chat


def list_messages_use_case(*, db: Session, chat_id: int, identity: Identity) -> list[Message]:
    chat = get_owned_chat(db, chat_id=chat_id, identity=identity)
    return db.query(Message).filter(Message.chat_id == chat.id).order_by(Message.id.asc()).all()


def _store_user_turn(db: Session, chat: Chat, content: str) -> tuple[Message, list[ChatTurn]]:
    user_message = Message(chat_id=chat.id, role="user", content=content)
    db.add(user_message)
    db.flush()
    history = [
        ChatTurn(role=row.role, content=row.content)
        for row in db.query(Message).filter(Message.chat_id == chat.id).order_by(Message.id.asc()).all()
    ]
    db.commit()
    db.refresh(user_message)
    return user_message, history


def _store_assistant_turn(db: Session, chat: Chat, reply: str) -> Message:
    assistant_message = Message(chat_id=chat.id, role="assistant", content=reply)
    db.add(assistant_message)
    db.commit()
    db.refresh(assistant_message)
    return assistant_message


def _charge_exchange(db: Session, ledger: QuotaLedger, identity: Identity, *messages: Message) -> int:
    used = ledger.commit(db, identity)
    for message in messages:
        db.refresh(message)
    return used


async def send_message_use_case(
    *,
    db: Session,
    chat_id: int,
    identity: Identity,
    content: str,
    ledger: QuotaLedger,
    generator: ReplyGenerator,
) -> SendMessageResult:
    """Persist the user turn, ask the AI for a reply and charge the quota.

    Quota is charged only when a reply was produced. On generation failure the
    user turn stays stored and a placeholder error is returned instead.
    Database work runs in the threadpool so pending long-polls keep being served.
    """
    # Captured up front: commits below expire the loaded attributes.
    identity_id = identity.id
    chat = await run_in_threadpool(get_owned_chat, db, chat_id=chat_id, identity=identity)

    decision = await run_in_threadpool(ledger.check_and_reserve, db, identity)
    if not decision.allowed:
        raise QuotaExceededError(used=decision.used, limit=decision.limit)

    settled = False
    try:
        user_message, history = await run_in_threadpool(_store_user_turn, db, chat, content)

        try:
            reply = await generator.generate(history)
        except GenerationError as e:
            logger.warning(f"Generation failed for chat {chat_id} (identity {identity_id}): {e}")
            return SendMessageResult(
                user_message=user_message,
                assistant_message=None,
                quota=decision,
                error=GENERATION_FAILED_TEXT,
            )

        assistant_message = await run_in_threadpool(_store_assistant_turn, db, chat, reply)

        settled = True
        used = await run_in_threadpool(
            _charge_exchange, db, ledger, identity, user_message, assistant_message
        )
    finally:
        if not settled:
            ledger.release(identity_id)

    return SendMessageResult(
        user_message=user_message,
        assistant_message=assistant_message,
        quota=QuotaDecision(allowed=used < decision.limit, used=used, limit=decision.limit),
    )
