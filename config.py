import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        token_secret: str,
        token_lifetime_minutes: int,
        bcrypt_rounds: int,
        strict_sort: bool,
    ) -> None:
        self.database_url = database_url
        self.token_secret = token_secret
        self.token_lifetime_minutes = token_lifetime_minutes
        self.bcrypt_rounds = bcrypt_rounds
        self.strict_sort = strict_sort


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("EXPENSES_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _env_flag(name: str) -> bool:
    return os.getenv(name, "").strip().lower() in {"1", "true", "yes", "on"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    database_url = os.getenv("EXPENSES_DATABASE_URL")
    if not database_url:
        default_db = _ensure_data_dir() / "expenses.db"
        database_url = f"sqlite:///{default_db}"
    token_secret = os.getenv(
        "EXPENSES_TOKEN_SECRET",
        "0d1f6c3bb0f54e1e9a3c2b7f47a9e0f2c1d8e5a4b3c2d1e0f9a8b7c6d5e4f3a2",
    )
    token_lifetime_minutes = int(os.getenv("EXPENSES_TOKEN_LIFETIME_MINUTES", "1440"))
    bcrypt_rounds = max(int(os.getenv("EXPENSES_BCRYPT_ROUNDS", "12")), 10)
    strict_sort = _env_flag("EXPENSES_STRICT_SORT")
    return Settings(
        database_url=database_url,
        token_secret=token_secret,
        token_lifetime_minutes=token_lifetime_minutes,
        bcrypt_rounds=bcrypt_rounds,
        strict_sort=strict_sort,
    )
