import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        log_level: str,
        api_base_url: str,
        api_timeout_secs: float,
        pending_dir: Path,
        currency_symbol: str,
    ) -> None:
        self.database_url = database_url
        self.log_level = log_level
        self.api_base_url = api_base_url
        self.api_timeout_secs = api_timeout_secs
        self.pending_dir = pending_dir
        self.currency_symbol = currency_symbol


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("EXPENSES_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "expenses.db"
    database_url = os.getenv("EXPENSES_DATABASE_URL", f"sqlite:///{default_db}")
    log_level = os.getenv("EXPENSES_LOG_LEVEL", "INFO").upper()
    api_base_url = os.getenv("EXPENSES_API_BASE_URL", "http://localhost:3000")
    api_timeout_secs = float(os.getenv("EXPENSES_API_TIMEOUT_SECS", "10"))
    pending_dir = Path(
        os.getenv("EXPENSES_PENDING_DIR", str(data_dir / "pending"))
    ).resolve()
    currency_symbol = os.getenv("EXPENSES_CURRENCY_SYMBOL", "₹")
    return Settings(
        database_url=database_url,
        log_level=log_level,
        api_base_url=api_base_url.rstrip("/"),
        api_timeout_secs=api_timeout_secs,
        pending_dir=pending_dir,
        currency_symbol=currency_symbol,
    )
