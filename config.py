"""Runtime configuration read from the environment (and a local .env file)."""
import os
from typing import NamedTuple, Optional, Tuple

from dotenv import load_dotenv

load_dotenv()


class Settings(NamedTuple):
    database_url: str = "mongodb://127.0.0.1:27017/ecommerce"
    database_name: str = "ecommerce"
    database_timeout_ms: int = 5000
    google_client_id: Optional[str] = None
    google_client_secret: Optional[str] = None
    session_secret: str = "dev-session-secret"
    port: int = 5000
    environment: str = "production"
    static_dir: str = "client/dist"
    log_level: str = "INFO"
    cors_origins: Tuple[str, ...] = ()

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

    @property
    def oauth_enabled(self) -> bool:
        return bool(self.google_client_id and self.google_client_secret)


def load_settings() -> Settings:
    defaults = Settings()
    return Settings(
        database_url=os.getenv("DATABASE_URL", defaults.database_url),
        database_name=os.getenv("DATABASE_NAME", defaults.database_name),
        database_timeout_ms=int(os.getenv("DATABASE_TIMEOUT_MS", defaults.database_timeout_ms)),
        google_client_id=os.getenv("GOOGLE_CLIENT_ID") or None,
        google_client_secret=os.getenv("GOOGLE_CLIENT_SECRET") or None,
        session_secret=os.getenv("SESSION_SECRET", defaults.session_secret),
        port=int(os.getenv("PORT", defaults.port)),
        environment=os.getenv("APP_ENV", defaults.environment),
        static_dir=os.getenv("STATIC_DIR", defaults.static_dir),
        log_level=os.getenv("LOG_LEVEL", defaults.log_level).upper(),
        cors_origins=tuple(o.strip() for o in os.getenv("CORS_ORIGINS", "").split(",") if o.strip()),
    )
