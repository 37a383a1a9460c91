import logging
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    ENV: str = "development"  # development | test | production
    CONFIG_STRICT: bool = False

    # Subscription store
    DATABASE_URL: Optional[str] = None
    TEST_DATABASE_URL: Optional[str] = None

    # Chat completions
    GROQ_API_KEY: Optional[str] = None

    # Bearer tokens are issued by the user service; we only verify them
    JWT_SECRET: Optional[str] = None
    JWT_ALGORITHM: str = "HS256"
    ALLOW_HEADER_AUTH: bool = False  # trust X-User-Id; only behind an internal gateway

    # AI tutor
    CHATBOT_CONFIG_PATH: Optional[str] = None
    CHAT_HISTORY_MAX_LENGTH: int = Field(default=20, ge=2)
    CHAT_RATE_LIMIT_PER_MINUTE: Optional[int] = Field(default=None, ge=1)  # wins over the chatbot file
    RATE_LIMIT_WINDOW_SECONDS: int = Field(default=60, ge=1)

    CORS_ALLOW_ORIGINS: List[str] = ["http://localhost:3000"]

    OTEL_ENABLED: bool = False
    OTEL_EXPORTER: str = "console"  # console | memory


settings = Settings()

REQUIRED_KEYS = ("DATABASE_URL", "GROQ_API_KEY", "JWT_SECRET")


def config_problems(cfg: Settings) -> List[str]:
    """Human-readable problems with `cfg`. Names settings, never their values."""
    problems = []
    missing = [key for key in REQUIRED_KEYS if not getattr(cfg, key)]
    if missing:
        problems.append(f"Missing required configuration: {', '.join(missing)}")
    if cfg.ENV.lower() == "production" and cfg.ALLOW_HEADER_AUTH:
        problems.append("ALLOW_HEADER_AUTH must be disabled in production")
    return problems


def validate_config(strict: Optional[bool] = None, settings_obj: Optional[Settings] = None, logger: Optional[logging.Logger] = None) -> bool:
    """Warn about configuration problems, or raise RuntimeError in strict mode."""
    cfg = settings_obj or settings
    log = logger or logging.getLogger("tutorgate")
    strict_mode = cfg.CONFIG_STRICT if strict is None else strict

    problems = config_problems(cfg)
    if problems and strict_mode:
        raise RuntimeError("; ".join(problems))
    for problem in problems:
        log.warning(problem)
    return not problems
