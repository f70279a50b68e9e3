from functools import lru_cache
from pathlib import Path
from typing import List, Literal, Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    environment: Literal["development", "production"] = "production"
    dev_bypass_enabled: bool = True
    log_level: str = "INFO"

    # --- Firebase / Google identity ---
    firebase_project_id: str = ""
    firebase_api_key: str = ""
    firestore_database: str = "(default)"
    google_client_id: str = ""
    google_client_secret: str = ""
    oauth_redirect_port: int = 0  # 0 lets the loopback server pick a free port
    google_service_account_json: Optional[str] = None

    # --- Store collections ---
    store_backend: Literal["firestore", "memory"] = "firestore"
    messages_collection: str = "messages"
    requests_collection: str = "chatRequests"
    users_collection: str = "users"

    # --- Feed / session behaviour ---
    feed_limit: int = 50
    anonymous_session_ttl_hours: int = 24
    expiry_sweep_interval_seconds: float = 60.0
    nickname_min_length: int = 3
    nickname_max_length: int = 20
    session_state_path: Path = Path.home() / ".chatsync" / "session.json"
    avatar_base_url: str = "https://ui-avatars.com/api/"
    placeholder_photo_url: str = "https://via.placeholder.com/40"

    cors_origins: List[str] = ["http://localhost:3000", "http://localhost:5173"]

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

    @property
    def bypass_allowed(self) -> bool:
        """The development identity is only reachable in development builds."""
        return self.is_development and self.dev_bypass_enabled


@lru_cache()
def get_settings() -> Settings:
    return Settings()
