from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field

from potoken_service.schemas import MIN_TOKEN_LENGTH


class Settings(BaseModel):
    """Process-level configuration, validated once at startup."""

    update_interval: float = Field(300, gt=0)
    bind_address: str = "0.0.0.0"
    port: int = Field(8080, ge=1, le=65535)
    browser_path: Optional[Path] = None
    oneshot: bool = False
    headless: bool = True
    extraction_timeout: float = Field(30, gt=0)
    attempt_timeout: float = Field(600, gt=0)
    min_token_length: int = Field(MIN_TOKEN_LENGTH, ge=0)
    log_file: Optional[Path] = None
    verbose: bool = False

    # Optional attempt history, e.g. sqlite+aiosqlite:///attempts.db
    history_database_url: Optional[str] = None

    telegram_bot_token: Optional[str] = None
    telegram_chat_id: Optional[str] = None
    alert_after_failures: int = Field(5, ge=1)

    @property
    def alerts_enabled(self) -> bool:
        return bool(self.telegram_bot_token and self.telegram_chat_id)
