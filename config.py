import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        csrf_secret: str,
        default_reset_day: int,
        log_level: str,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.csrf_secret = csrf_secret
        self.default_reset_day = default_reset_day
        self.log_level = log_level


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("BUDGET_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _reset_day_from_env() -> int:
    raw = os.getenv("BUDGET_DEFAULT_RESET_DAY", "1")
    try:
        day = int(raw)
    except ValueError:
        return 1
    return day if 1 <= day <= 31 else 1


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "budget.db"
    database_url = os.getenv("BUDGET_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("BUDGET_TIMEZONE", "America/Sao_Paulo")
    csrf_secret = os.getenv(
        "BUDGET_CSRF_SECRET",
        "5f0c3a9e1d7b42c8a6e4f19d2b7c8a03e6d1f4b9c2a7e5d8f0b3c6a9e2d5f8b1",
    )
    log_level = os.getenv("BUDGET_LOG_LEVEL", "INFO").upper()
    return Settings(
        database_url=database_url,
        timezone=timezone,
        csrf_secret=csrf_secret,
        default_reset_day=_reset_day_from_env(),
        log_level=log_level,
    )
