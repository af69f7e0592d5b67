"""Application settings loaded from environment variables."""

from pydantic_settings import BaseSettings, SettingsConfigDict

ACCESS_TOKEN_TTL_DEFAULT = 900
REFRESH_TOKEN_TTL_DEFAULT = 604_800
JWKS_MAX_KEYS_DEFAULT = 5
MAX_CONCURRENT_SESSIONS_DEFAULT = 5
DB_POOL_SIZE_DEFAULT = 5
DB_MAX_OVERFLOW_DEFAULT = 10
DB_PORT_DEFAULT = 5432
REDIS_SOCKET_TIMEOUT_DEFAULT = 5.0


class DatabaseSettings(BaseSettings):
    """PostgreSQL connection settings."""

    model_config = SettingsConfigDict(env_prefix="AUTH_DB_")

    host: str = "localhost"
    port: int = DB_PORT_DEFAULT
    user: str = "warden"
    password: str = "warden"
    database: str = "warden"
    pool_size: int = DB_POOL_SIZE_DEFAULT
    max_overflow: int = DB_MAX_OVERFLOW_DEFAULT

    @property
    def async_url(self) -> str:
        """Build async PostgreSQL connection URL."""
        return (
            f"postgresql+asyncpg://{self.user}:{self.password}"
            f"@{self.host}:{self.port}/{self.database}"
        )


class RedisSettings(BaseSettings):
    """Key store connection settings."""

    model_config = SettingsConfigDict(env_prefix="AUTH_REDIS_")

    url: str = "redis://localhost:6379/0"
    socket_timeout: float = REDIS_SOCKET_TIMEOUT_DEFAULT


class AuthSettings(BaseSettings):
    """Token, key rotation and session settings."""

    model_config = SettingsConfigDict(env_prefix="AUTH_")

    issuer: str = "warden"
    cors_origins: str = ""
    internal_token: str = ""
    signing_key_encryption_key: str = ""
    jwks_max_keys: int = JWKS_MAX_KEYS_DEFAULT
    access_token_ttl: int = ACCESS_TOKEN_TTL_DEFAULT
    refresh_token_ttl: int = REFRESH_TOKEN_TTL_DEFAULT
    max_concurrent_sessions: int = MAX_CONCURRENT_SESSIONS_DEFAULT
    log_level: str = "INFO"
    log_json: bool = True

    def get_cors_origin_list(self) -> list[str]:
        """Parse comma-separated CORS origins."""
        if not self.cors_origins:
            return []
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]
