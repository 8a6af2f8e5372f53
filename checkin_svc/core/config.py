from __future__ import annotations
from functools import cached_property
import secrets

from pydantic_settings import BaseSettings
from pydantic import Field

from ..services.geofence import DEFAULT_GEOFENCE_RADIUS_METERS


class Settings(BaseSettings):
    database_url: str = Field(..., alias="DATABASE_URL")

    auth_jwks_url: str = Field(..., alias="AUTH_JWKS_URL")
    token_issuer: str | None = Field(default=None, alias="TOKEN_ISSUER")

    badges_base_url: str = Field("http://localhost:3000/api", alias="BADGES_BASE_URL")
    badges_service_token: str | None = Field(default=None, alias="BADGES_SERVICE_TOKEN")
    use_nats_for_badges: bool = Field(default=True, alias="USE_NATS_FOR_BADGES")

    qr_secret: str | None = Field(default=None, alias="QR_SECRET")
    qr_ttl_seconds: int = Field(default=6 * 3600, alias="QR_TTL_SECONDS")
    require_qr_token: bool = Field(default=False, alias="REQUIRE_QR_TOKEN")

    # Geofence / timeouts
    default_geofence_radius: float = Field(default=DEFAULT_GEOFENCE_RADIUS_METERS, alias="DEFAULT_GEOFENCE_RADIUS")
    persistence_timeout_seconds: float = Field(default=5.0, alias="PERSISTENCE_TIMEOUT_SECONDS")
    badge_timeout_seconds: float = Field(default=2.0, alias="BADGE_TIMEOUT_SECONDS")
    badge_queue_maxsize: int = Field(default=1000, alias="BADGE_QUEUE_MAXSIZE")

    # Redis
    redis_url: str = Field("redis://127.0.0.1:6379/0", alias="REDIS_URL")
    rl_enabled: bool = Field(default=True, alias="RL_ENABLED")
    rl_window_seconds: int = Field(default=60, alias="RL_WINDOW_SECONDS")
    rl_max_reqs: int = Field(default=30, alias="RL_MAX_REQS")

    # NATS
    nats_urls: str = Field("nats://127.0.0.1:4222", alias="NATS_URLS")
    nats_subject_activity: str = Field("volunteers.activity", alias="NATS_SUBJECT_ACTIVITY")
    nats_subject_audit: str = Field("audit.checkins", alias="NATS_SUBJECT_AUDIT")

    log_level: str = Field("INFO", alias="LOG_LEVEL")
    cors_origins: str = Field(
        "http://localhost:5173,http://127.0.0.1:5173,http://localhost:3000,http://127.0.0.1:3000",
        alias="CORS_ORIGINS",
    )

    class Config:
        env_file = ".env"
        env_prefix = ""
        case_sensitive = False

    @cached_property
    def qr_secret_effective(self) -> str:
        # ephemeral secret: QR codes stop verifying after a restart
        return self.qr_secret or secrets.token_urlsafe(48)

    @property
    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]


_settings: Settings | None = None
def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
