from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Literal


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Application
    app_env: Literal["dev", "staging", "prod"] = "dev"
    log_level: str = "INFO"

    # Telegram destination
    # Both are required for forwarding. When either is missing every outbound
    # capability becomes a no-op (dry-run mode).
    telegram_bot_token: str | None = None  # Bot token from @BotFather
    telegram_chat_id: str | None = None  # Chat/channel ID that receives the media
    telegram_api_base: str = "https://api.telegram.org"  # Override for a self-hosted Bot API server

    # Instagram webhook
    instagram_verify_token: str | None = None  # hub.verify_token expected during the GET handshake
    # "media" - forward items as photos/videos/media groups
    # "text"  - relay the raw payload as a text message (debugging integrations)
    instagram_relay_mode: Literal["media", "text"] = "media"
    enable_debug_endpoint: bool = False  # POST /instagram/webhook/debug
    max_request_body_bytes: int = 5 * 1024 * 1024  # 5 MB

    # Remote media download
    fetch_timeout_seconds: float = 120.0
    fetch_connect_timeout_seconds: float = 15.0
    fetch_max_bytes: int = 50 * 1024 * 1024  # Telegram bot upload limit; 0 disables the check
    media_temp_dir: str | None = None  # Defaults to the platform temp directory
    media_temp_prefix: str = "insta_tg_"

    # Telegram upload
    upload_timeout_seconds: float = 120.0

    # Shutdown: how long to wait for in-flight forwarding tasks
    shutdown_drain_seconds: float = 30.0

    # Feature Flags
    enable_request_logging: bool = True

    @property
    def is_production(self) -> bool:
        return self.app_env == "prod"

    @property
    def telegram_enabled(self) -> bool:
        """Check if the Telegram destination is configured"""
        return bool(self.telegram_bot_token and self.telegram_chat_id)


def warn_on_risky_config(s: "Settings") -> list[str]:
    warnings: list[str] = []

    # --- Destination ---
    if not s.telegram_bot_token:
        warnings.append(
            "TELEGRAM_BOT_TOKEN is not set. Telegram forwarding is disabled until it is configured."
        )
    if not s.telegram_chat_id:
        warnings.append(
            "TELEGRAM_CHAT_ID is not set. Telegram forwarding is disabled until it is configured."
        )

    # --- Webhook ---
    if not s.instagram_verify_token:
        warnings.append(
            "instagram_verify_token is not set: any hub.verify_token is accepted during the webhook handshake."
        )
    if s.instagram_relay_mode == "text":
        warnings.append("instagram_relay_mode=text: payloads are relayed as raw text, media is not forwarded.")
    if s.is_production and s.enable_debug_endpoint:
        warnings.append("prod: enable_debug_endpoint=True exposes the raw payload relay.")

    # --- Download limits ---
    if s.fetch_max_bytes <= 0:
        warnings.append("fetch_max_bytes disabled: remote media of any size will be downloaded.")

    return warnings


settings = Settings()
