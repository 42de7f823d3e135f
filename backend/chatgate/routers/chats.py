"""Chat endpoints."""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth import get_current_identity
from ..config import settings
from ..database import get_db
from ..dependencies import get_quota_ledger, get_reply_generator
from ..domain_errors import DomainError, GenerationError
from ..models import Identity
from ..schemas import (
    ChatCreate,
    ChatCreateResponse,
    ChatListResponse,
    ChatResponse,
    MessageCreate,
    MessageListResponse,
    MessageResponse,
    QuotaInfo,
    SendMessageError,
    SendMessageResponse,
)
from ..services.quota import QuotaLedger
from ..use_cases.chat_messages import (
    ReplyGenerator,
    create_chat_use_case,
    list_chats_use_case,
    list_messages_use_case,
    send_message_use_case,
)

router = APIRouter(prefix="/chats", tags=["chats"])


@router.get("", response_model=ChatListResponse)
def list_chats(
    current_identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db),
):
    """Latest chats of the current identity."""
    chats = list_chats_use_case(db=db, identity=current_identity, limit=settings.CHAT_LIST_LIMIT)
    return ChatListResponse(chats=[ChatResponse.model_validate(c) for c in chats])


@router.post("", response_model=ChatCreateResponse)
def create_chat(
    data: ChatCreate | None = None,
    current_identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db),
):
    """Create a chat."""
    data = data or ChatCreate()
    chat = create_chat_use_case(db=db, identity=current_identity, title=data.title, model=data.model)
    return ChatCreateResponse(chat=ChatResponse.model_validate(chat))


@router.get("/{chat_id}/messages", response_model=MessageListResponse)
def list_messages(
    chat_id: int,
    current_identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db),
):
    """Messages of a chat, oldest first."""
    messages = list_messages_use_case(db=db, chat_id=chat_id, identity=current_identity)
    return MessageListResponse(messages=[MessageResponse.model_validate(m) for m in messages])


@router.post("/{chat_id}/messages", response_model=SendMessageResponse)
async def send_message(
    chat_id: int,
    data: MessageCreate,
    current_identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db),
    ledger: QuotaLedger = Depends(get_quota_ledger),
    generator: ReplyGenerator = Depends(get_reply_generator),
):
    """Send a user message and get the assistant reply."""
    content = data.content.strip()
    if not content:
        raise DomainError(code="EMPTY_MESSAGE", http_status=422, message="Message content is empty")
    if len(content) > settings.MAX_MESSAGE_LENGTH:
        raise DomainError(
            code="MESSAGE_TOO_LONG",
            http_status=422,
            message=f"Message must be at most {settings.MAX_MESSAGE_LENGTH} characters",
        )

    result = await send_message_use_case(
        db=db,
        chat_id=chat_id,
        identity=current_identity,
        content=content,
        ledger=ledger,
        generator=generator,
    )

    error = None
    if result.error is not None:
        error = SendMessageError(code=GenerationError.code, detail=result.error)
    return SendMessageResponse(
        success=result.success,
        user_message=MessageResponse.model_validate(result.user_message),
        assistant_message=(
            MessageResponse.model_validate(result.assistant_message)
            if result.assistant_message is not None
            else None
        ),
        error=error,
        quota=QuotaInfo(
            used=result.quota.used,
            limit=result.quota.limit,
            remaining=result.quota.remaining,
        ),
    )
