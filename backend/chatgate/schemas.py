"""Pydantic schemas for API."""
from datetime import date, datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    """camelCase on the wire, snake_case in Python."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# Identity
class IdentityResponse(ApiModel):
    id: int
    telegram_id: str
    username: str
    first_name: Optional[str] = None
    plan: str
    daily_limit: int
    used_today: int
    total_messages: int
    last_reset: Optional[date] = None
    created_at: Optional[datetime] = None


# Auth handshake
class AuthInitResponse(ApiModel):
    success: bool = True
    auth_code: str
    deep_link: str
    qr_image_data_uri: str
    expires_in: int


class AuthStatusResponse(ApiModel):
    success: bool
    status: Literal["pending", "resolved", "expired"]
    token: Optional[str] = None
    identity: Optional[IdentityResponse] = None


class AuthVerifyResponse(ApiModel):
    success: bool = True
    identity: IdentityResponse


# Chats
class ChatCreate(ApiModel):
    title: Optional[str] = Field(default=None, max_length=255)
    model: Optional[str] = Field(default=None, max_length=100)


class ChatResponse(ApiModel):
    id: int
    title: str
    model: str
    created_at: Optional[datetime] = None


class ChatListResponse(ApiModel):
    success: bool = True
    chats: list[ChatResponse]


class ChatCreateResponse(ApiModel):
    success: bool = True
    chat: ChatResponse


class MessageCreate(ApiModel):
    content: str = Field(min_length=1)


class MessageResponse(ApiModel):
    id: int
    role: Literal["user", "assistant"]
    content: str
    created_at: Optional[datetime] = None


class MessageListResponse(ApiModel):
    success: bool = True
    messages: list[MessageResponse]


class QuotaInfo(ApiModel):
    used: int
    limit: int
    remaining: int


class SendMessageError(ApiModel):
    code: str
    detail: str


class SendMessageResponse(ApiModel):
    success: bool
    user_message: MessageResponse
    assistant_message: Optional[MessageResponse] = None
    error: Optional[SendMessageError] = None
    quota: QuotaInfo
