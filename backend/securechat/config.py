from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    DATABASE_URL: str
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    CORS_ORIGINS: list[str] = ["http://localhost:3000"]
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Sessions: a server-side row plus a signed cookie pointing at it
    SESSION_EXPIRE_MINUTES: int = 24 * 60
    SESSION_COOKIE_NAME: str = "securechat_session"
    SESSION_COOKIE_SECURE: bool = False  # set True behind HTTPS
    BCRYPT_ROUNDS: int = 12

    # The single shared room and the system account that owns it.
    # The system account is created inactive with a random password.
    DEFAULT_ROOM_NAME: str = "General"
    SYSTEM_USERNAME: str = "admin"
    SYSTEM_EMAIL: str = "admin@securechat.local"

    HISTORY_LIMIT: int = 100

    # Presence sweep: users silent for longer than PRESENCE_STALE_SECONDS
    # are flagged offline every PRESENCE_SWEEP_INTERVAL seconds.
    PRESENCE_SWEEP_INTERVAL: int = 300
    PRESENCE_STALE_SECONDS: int = 300

    # Redis document mirror: write-only, never read back.
    # Leave empty to disable the mirror entirely.
    MIRROR_REDIS_URL: str = ""
    MIRROR_NAMESPACE: str = "securechat"

    model_config = {"env_file": ".env"}


settings = Settings()
