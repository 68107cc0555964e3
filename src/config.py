"""Hookchat configuration management using pydantic-settings."""

from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load .env from project root so ANTHROPIC_API_KEY and WEBHOOK_SECRET are available
load_dotenv(Path(__file__).resolve().parent.parent / ".env")


class GeneralSettings(BaseSettings):
    db_url: str = Field(
        default=f"sqlite+aiosqlite:///{Path.home() / '.local/share/hookchat/hookchat.db'}"
    )
    log_level: str = "INFO"
    # Seconds a SQLite writer waits for the write lock before failing
    sqlite_timeout: float = 30.0


class WebhookSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="WEBHOOK_")
    secret: str = ""
    event_type_header: str = "X-Event-Type"
    signature_header: str = "X-Signature"
    delivery_id_header: str = "X-Delivery-Id"


class AnthropicSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="ANTHROPIC_")
    api_key: str = ""
    model: str = "claude-haiku-4-5-20251001"
    max_tokens: int = 4096


class ChatSettings(BaseSettings):
    """Settings for the chat response loop."""

    max_steps: int = 10
    default_location: str = "UTC"


class ServerSettings(BaseSettings):
    host: str = "127.0.0.1"
    port: int = 8787
    cors_origins: list[str] = Field(default_factory=lambda: ["http://localhost:5173"])


class Settings(BaseSettings):
    """Top-level settings assembled from subsections."""

    general: GeneralSettings = Field(default_factory=GeneralSettings)
    webhook: WebhookSettings = Field(default_factory=WebhookSettings)
    anthropic: AnthropicSettings = Field(default_factory=AnthropicSettings)
    chat: ChatSettings = Field(default_factory=ChatSettings)
    server: ServerSettings = Field(default_factory=ServerSettings)

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> "Settings":
        """Load settings from TOML config file, falling back to defaults."""
        if config_path is None:
            config_path = Path.home() / ".config/hookchat/config.toml"

        if config_path.exists():
            import toml

            data = toml.load(config_path)
            return cls(
                general=GeneralSettings(**data.get("general", {})),
                webhook=WebhookSettings(**data.get("webhook", {})),
                anthropic=AnthropicSettings(**data.get("anthropic", {})),
                chat=ChatSettings(**data.get("chat", {})),
                server=ServerSettings(**data.get("server", {})),
            )

        return cls()

    def missing_secrets(self) -> list[str]:
        """Names of required secrets that are not configured."""
        missing = []
        if not self.webhook.secret:
            missing.append("WEBHOOK_SECRET")
        if not self.anthropic.api_key:
            missing.append("ANTHROPIC_API_KEY")
        return missing


# Module-level singleton
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get or create the global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings.load()
    return _settings
