"""
Telegram bot webhook.
- /start <code> confirms a pending web login
- plain /start registers the user and links to the web UI
"""
import hmac
import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from ..config import settings
from ..database import get_db
from ..dependencies import get_handshake_broker
from ..services.handshake import ConfirmOutcome, HandshakeBroker
from ..use_cases.handshake_flow import (
    TelegramProfile,
    confirm_handshake_use_case,
    get_or_create_identity,
)

router = APIRouter(prefix="/telegram", tags=["telegram"])
logger = logging.getLogger(__name__)


CONFIRM_REPLIES = {
    ConfirmOutcome.CONFIRMED: "✅ Авторизация успешна! Возвращайтесь на сайт.",
    ConfirmOutcome.ALREADY_RESOLVED: "ℹ️ Этот код уже использован. Возвращайтесь на сайт.",
    ConfirmOutcome.NOT_FOUND: "❌ Код входа устарел или не найден. Обновите страницу на сайте и попробуйте снова.",
}
BLOCKED_REPLY = "❌ Ваш аккаунт заблокирован."


def _reply(chat_id: str, text: str, reply_markup: dict | None = None) -> dict:
    """Answer the update inline via the webhook response (no extra Bot API call)."""
    payload = {
        "ok": True,
        "method": "sendMessage",
        "chat_id": chat_id,
        "text": text,
    }
    if reply_markup:
        payload["reply_markup"] = reply_markup
    return payload


def _welcome_reply(chat_id: str) -> dict:
    return _reply(
        chat_id,
        "🎉 Добро пожаловать в AI Platform!\n\n"
        f"📱 Откройте платформу: {settings.PUBLIC_URL}",
        reply_markup={
            "inline_keyboard": [[
                {"text": "🚀 Открыть платформу", "url": settings.PUBLIC_URL}
            ]]
        },
    )


def _secret_matches(request: Request) -> bool:
    if not settings.TELEGRAM_WEBHOOK_SECRET:
        return True
    received = request.headers.get("X-Telegram-Bot-Api-Secret-Token") or ""
    return hmac.compare_digest(received, settings.TELEGRAM_WEBHOOK_SECRET)


@router.post("/webhook")
async def telegram_webhook(
    request: Request,
    db: Session = Depends(get_db),
    broker: HandshakeBroker = Depends(get_handshake_broker),
):
    """
    Telegram bot webhook handler.

    Security:
    - Validates X-Telegram-Bot-Api-Secret-Token when a secret is configured
    - Login codes are one-time and expire with the handshake

    Must respond 200 quickly (Telegram retries on non-2xx).
    """
    try:
        if not _secret_matches(request):
            logger.warning("❌ Invalid Telegram webhook secret")
            return {"ok": False, "error": "Invalid secret"}

        body = await request.json()
        message = body.get("message")
        if not message:
            # Not a message update (could be edited_message, callback_query, etc.)
            return {"ok": True}

        text = (message.get("text") or "").strip()
        sender = message.get("from")
        if not text.startswith("/start") or not sender:
            return {"ok": True}

        chat_id = str(message["chat"]["id"])
        profile = TelegramProfile.from_update_user(sender)

        # "/start", "/start CODE" or "/start@BotName CODE"
        parts = text.split(maxsplit=1)
        if parts[0].split("@", 1)[0] != "/start":
            return {"ok": True}
        code = parts[1].strip() if len(parts) > 1 else ""

        if not code:
            identity = get_or_create_identity(db, profile)
            logger.info(f"✅ /start from identity {identity.id}")
            return _welcome_reply(chat_id)

        result = confirm_handshake_use_case(
            db=db,
            broker=broker,
            code=code,
            profile=profile,
            strict=not settings.is_production,
        )
        if result.blocked:
            return _reply(chat_id, BLOCKED_REPLY)
        return _reply(chat_id, CONFIRM_REPLIES[result.outcome])

    except Exception as e:
        logger.error(f"❌ Webhook error: {e}", exc_info=True)
        # Always return 200 to avoid Telegram retries on our bugs
        return {"ok": False, "error": "internal error"}
