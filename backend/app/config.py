from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache


class Settings(BaseSettings):
    # Application Configuration
    APP_ENV: str = "development"
    APP_NAME: str = "MCP Gateway"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    SERVER_URL: str = "http://localhost:8000"   # public base URL, used in auth remediation hints
    CORS_ORIGINS: list[str] = ["http://localhost:3000", "http://localhost:5173"]

    # MCP protocol
    MCP_PROTOCOL_VERSION: str = "2024-11-05"

    # Authentication gate.
    # AUTH_REQUIRED=False turns the gate off entirely (local development).
    # AUTH_PUBLIC_LISTING=True lets tools/list, prompts/list and
    # resources/list through without credentials; every other tools/,
    # resources/ and prompts/ method stays protected.
    AUTH_REQUIRED: bool = True
    AUTH_PUBLIC_LISTING: bool = False
    API_KEYS: list[str] = []

    # OAuth device-code provider (Azure AD / Entra ID style endpoints)
    OAUTH_AUTHORITY: str = "https://login.microsoftonline.com"
    OAUTH_TENANT_ID: str = "common"
    OAUTH_CLIENT_ID: str = ""
    OAUTH_SCOPE: str = "https://graph.microsoft.com/.default"
    OAUTH_TIMEOUT_SECONDS: float = 10.0

    # Device sessions are dropped this long after their device code expires
    AUTH_SESSION_GRACE_SECONDS: int = 300
    AUTH_REAPER_INTERVAL_SECONDS: int = 60

    # Streaming
    SSE_HEARTBEAT_SECONDS: float = 30.0
    SSE_CONNECTION_QUEUE_SIZE: int = 32
    STREAM_ITEM_DELAY_MS: int = 200

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def device_authorization_url(self) -> str:
        return f"{self.OAUTH_AUTHORITY.rstrip('/')}/{self.OAUTH_TENANT_ID}/oauth2/v2.0/devicecode"

    @property
    def token_url(self) -> str:
        return f"{self.OAUTH_AUTHORITY.rstrip('/')}/{self.OAUTH_TENANT_ID}/oauth2/v2.0/token"


@lru_cache()
def get_settings() -> Settings:
    return Settings()
