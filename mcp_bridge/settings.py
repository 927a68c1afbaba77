# mcp_bridge/settings.py
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import List, Optional
import logging
from pathlib import Path

logger = logging.getLogger(__name__)
if not logging.getLogger().hasHandlers():
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s SETTINGS.PY - [%(levelname)s] - %(message)s'
    )

# settings.py lives at <root>/mcp_bridge/settings.py
PROJECT_ROOT = Path(__file__).parent.parent.resolve()
DOTENV_PATH = PROJECT_ROOT / ".env"

MIN_ENCRYPTION_SECRET_LENGTH = 32

if DOTENV_PATH.exists():
    logger.info(f"SETTINGS.PY: .env file FOUND at: {DOTENV_PATH}")
else:
    logger.warning(
        f"SETTINGS.PY: .env file NOT FOUND at: {DOTENV_PATH}. "
        "Will rely on OS env vars or defaults."
    )


class Settings(BaseSettings):
    """Bridge settings with environment variable support."""

    app_name: str = "MCP OAuth Bridge"
    debug_mode: bool = False
    storage_backend: str = "sqlite"

    # Redis configuration
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_db: int = 0
    redis_password: Optional[str] = None
    redis_ssl: bool = False

    # SQLite configuration
    sqlite_db_path: str = "./mcp_bridge_data.sqlite3"

    # Public surface
    public_base_url: Optional[str] = Field(
        default=None,
        description="Externally visible base URL. Falls back to the request base URL."
    )
    allowed_origins: Optional[str] = Field(
        default=None,
        description="Comma-separated list of origins allowed for browser callers."
    )

    # Upstream provider (Withings-style OAuth 2.0 API)
    provider_client_id: Optional[str] = None
    provider_client_secret: Optional[str] = None
    provider_redirect_uri: Optional[str] = Field(
        default=None,
        description="Callback URL registered with the provider, normally <base>/callback."
    )
    provider_authorize_url: str = "https://account.withings.com/oauth2_user/authorize2"
    provider_token_url: str = "https://wbsapi.withings.net/v2/oauth2"
    provider_api_base_url: str = "https://wbsapi.withings.net"
    provider_scopes: str = "user.metrics,user.activity,user.sleepevents"
    provider_http_timeout: float = 30.0

    # Vault encryption
    encryption_secret: Optional[str] = Field(
        default=None,
        description="Deployment secret the token encryption key is derived from. MUST be at least 32 characters."
    )
    encryption_kdf_iterations: int = 100_000

    # Lifetimes (seconds)
    bridge_token_ttl_seconds: int = 3600 * 24 * 30
    auth_session_ttl_seconds: int = 600
    auth_code_ttl_seconds: int = 600
    provider_refresh_margin_seconds: int = 300

    # Session transport
    session_idle_timeout_seconds: int = 1800
    session_sweep_interval_seconds: int = 60
    session_heartbeat_interval_seconds: float = 15.0

    # Janitor
    janitor_interval_seconds: int = 300
    janitor_token_interval_seconds: int = 3600

    # Rate limits (requests per window)
    rate_limit_window_seconds: int = 3600
    rate_limit_register: int = 30
    rate_limit_authorize: int = 60
    rate_limit_token: int = 100

    model_config = SettingsConfigDict(
        env_file=DOTENV_PATH if DOTENV_PATH.exists() else None,
        extra="ignore",
        env_file_encoding='utf-8'
    )

    @property
    def allowed_origins_list(self) -> List[str]:
        if not self.allowed_origins:
            return []
        return [origin.strip() for origin in self.allowed_origins.split(",") if origin.strip()]

    @property
    def provider_scope_list(self) -> List[str]:
        return [scope.strip() for scope in self.provider_scopes.split(",") if scope.strip()]


def validate_encryption_secret(current: Optional[Settings] = None) -> None:
    """Refuse to run without a deployment secret of minimum strength."""
    current = current or settings
    secret = current.encryption_secret
    if not secret:
        raise ValueError("ENCRYPTION_SECRET is not set. Refusing to start.")
    if len(secret) < MIN_ENCRYPTION_SECRET_LENGTH:
        raise ValueError(
            f"ENCRYPTION_SECRET must be at least {MIN_ENCRYPTION_SECRET_LENGTH} characters. Refusing to start."
        )


settings = Settings()

logger.info(
    f"SETTINGS.PY: storage_backend='{settings.storage_backend}', "
    f"debug_mode={settings.debug_mode}, redis_host='{settings.redis_host}'"
)
logger.info(
    f"SETTINGS.PY: provider_client_id: {'********' if settings.provider_client_id else 'None'}, "
    f"provider_client_secret: {'********' if settings.provider_client_secret else 'None'}, "
    f"encryption_secret: {'********' if settings.encryption_secret else 'None'}"
)
