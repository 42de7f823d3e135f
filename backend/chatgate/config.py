"""Application configuration."""
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings."""

    # App
    APP_NAME: str = "AI_Chat_Gateway"
    ENV: str = "development"
    DEBUG: bool = True
    ALLOWED_ORIGINS: str = "http://localhost:3000,http://localhost:5173"
    # Public URL of the web UI (used in bot replies).
    PUBLIC_URL: str = "http://localhost:3000"

    # Database
    DATABASE_URL: str = "sqlite:///./data.db"
    DATABASE_POOL_SIZE: int = 20
    DATABASE_MAX_OVERFLOW: int = 10

    # Redis (auth init rate limiting only)
    REDIS_URL: str = "redis://localhost:6379/0"

    # Proxy / client IP handling
    # Only trust X-Forwarded-* headers when running behind a trusted reverse proxy (e.g. nginx).
    TRUST_PROXY_HEADERS: bool = False

    # Session tokens (JWT)
    JWT_SECRET_KEY: str
    JWT_ALGORITHM: str = "HS256"
    SESSION_TOKEN_EXPIRE_DAYS: int = 7
    JWT_LEEWAY_SECONDS: int = 30  # clock skew tolerance for iat validation

    # Telegram handshake
    HANDSHAKE_TIMEOUT_SECONDS: float = 300.0
    HANDSHAKE_POLL_SECONDS: float = 30.0
    # 0 disables the per-IP limit on POST /auth/init.
    AUTH_INIT_IP_LIMIT_PER_MINUTE: int = 20

    # Telegram bot
    TELEGRAM_BOT_USERNAME: str | None = None
    TELEGRAM_WEBHOOK_SECRET: str | None = None

    # Quota
    DEFAULT_PLAN: str = "free"
    DEFAULT_DAILY_LIMIT: int = 100
    # Units charged per successful exchange (user turn + assistant reply).
    QUOTA_TURN_WEIGHT: int = 1

    # AI providers
    AI_PROVIDER_ORDER: str = "gemini,openai"
    AI_REQUEST_TIMEOUT_SECONDS: float = 30.0
    GOOGLE_AI_KEY: str | None = None
    GEMINI_MODEL: str = "gemini-pro"
    GEMINI_API_BASE: str = "https://generativelanguage.googleapis.com/v1beta"
    OPENAI_API_KEY: str | None = None
    OPENAI_BASE_URL: str = "https://api.openai.com/v1"
    OPENAI_MODEL: str = "gpt-4o-mini"

    # Chats
    DEFAULT_CHAT_TITLE: str = "Новый чат"
    CHAT_LIST_LIMIT: int = 20
    MAX_MESSAGE_LENGTH: int = 8000

    class Config:
        env_file = ".env"
        case_sensitive = True

    @property
    def cors_origins(self) -> list[str]:
        """Get CORS origins as list."""
        return [origin.strip() for origin in self.ALLOWED_ORIGINS.split(",") if origin.strip()]

    @property
    def ai_provider_order(self) -> list[str]:
        """Get AI provider names in fallback order."""
        return [name.strip().lower() for name in self.AI_PROVIDER_ORDER.split(",") if name.strip()]

    @property
    def bot_deep_link_base(self) -> str:
        """Telegram deep link without the start parameter."""
        bot_username = self.TELEGRAM_BOT_USERNAME or "YOUR_BOT"
        return f"https://t.me/{bot_username}"

    @property
    def is_production(self) -> bool:
        return self.ENV.lower() == "production"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
