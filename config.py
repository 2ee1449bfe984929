import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        session_secret: str,
        session_max_age_hours: int,
        page_size: int,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.session_secret = session_secret
        self.session_max_age_hours = session_max_age_hours
        self.page_size = page_size


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("BUILDLEDGER_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "buildledger.db"
    database_url = os.getenv("BUILDLEDGER_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("BUILDLEDGER_TIMEZONE", "America/Sao_Paulo")
    session_secret = os.getenv(
        "BUILDLEDGER_SESSION_SECRET",
        "5f0c3e9a2d7b41c8a6e1f4b9d2c7e0a3b8f6d1c4e9a2b7f0c5d8e3a6b1f4c9d2",
    )
    session_max_age_hours = int(os.getenv("BUILDLEDGER_SESSION_MAX_AGE_HOURS", "12"))
    page_size = int(os.getenv("BUILDLEDGER_PAGE_SIZE", "10"))
    return Settings(
        database_url=database_url,
        timezone=timezone,
        session_secret=session_secret,
        session_max_age_hours=session_max_age_hours,
        page_size=page_size,
    )
