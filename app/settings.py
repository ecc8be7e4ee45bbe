from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

# Resolve repo root from this file's location:
# app/settings.py → parent = app/ → parent = repo root
REPO_ROOT = Path(__file__).resolve().parents[1]

DEFAULT_DEMO_DB = REPO_ROOT / "data" / "demo.db"
DEFAULT_RESULTS_DIR = REPO_ROOT / "query_results"


@dataclass
class Settings:
    """
    Centralized application configuration.

    Does NOT depend on pydantic. Values are loaded from environment
    variables via Settings.from_env().
    """

    # --- DB mode / adapters ---
    db_mode: str = "sqlite"  # "sqlite" or "postgres"
    postgres_dsn: str = ""

    # --- Default SQLite path (demo DB) ---
    default_sqlite_path: str = str(DEFAULT_DEMO_DB)

    # --- Persisted results ---
    results_dir: str = str(DEFAULT_RESULTS_DIR)

    # --- Paging / streaming limits ---
    default_page_size: int = 50
    max_page_size: int = 1000
    default_batch_size: int = 1000
    max_stream_rows: int = 1_000_000
    default_cursor_field: str = "id"
    stream_timeout_sec: int = 0  # 0 = no deadline

    # --- API keys (comma-separated) ---
    api_keys_raw: str = ""

    # --- App version / logging ---
    app_version: str = "dev"
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        """
        Build Settings from environment variables with sane fallbacks.

        - DEFAULT_SQLITE_PATH and RESULTS_DIR can be absolute or relative.
        - Relative paths are resolved against REPO_ROOT.
        """

        def getenv_int(name: str, default: int) -> int:
            raw = os.getenv(name)
            if raw is None or raw.strip() == "":
                return default
            try:
                return int(raw)
            except ValueError:
                return default

        def getenv_path(name: str, default: Path) -> str:
            raw = os.getenv(name, "").strip()
            if not raw:
                return str(default)
            candidate = Path(raw)
            if not candidate.is_absolute():
                candidate = REPO_ROOT / raw
            return str(candidate)

        return cls(
            db_mode=os.getenv("DB_MODE", cls.db_mode),
            postgres_dsn=os.getenv("POSTGRES_DSN", cls.postgres_dsn),
            default_sqlite_path=getenv_path("DEFAULT_SQLITE_PATH", DEFAULT_DEMO_DB),
            results_dir=getenv_path("RESULTS_DIR", DEFAULT_RESULTS_DIR),
            default_page_size=getenv_int("DEFAULT_PAGE_SIZE", cls.default_page_size),
            max_page_size=getenv_int("MAX_PAGE_SIZE", cls.max_page_size),
            default_batch_size=getenv_int(
                "DEFAULT_BATCH_SIZE", cls.default_batch_size
            ),
            max_stream_rows=getenv_int("MAX_STREAM_ROWS", cls.max_stream_rows),
            default_cursor_field=os.getenv(
                "DEFAULT_CURSOR_FIELD", cls.default_cursor_field
            ),
            stream_timeout_sec=getenv_int("STREAM_TIMEOUT_SEC", cls.stream_timeout_sec),
            api_keys_raw=os.getenv("API_KEYS", cls.api_keys_raw),
            app_version=os.getenv("APP_VERSION", cls.app_version),
            log_level=os.getenv("LOG_LEVEL", cls.log_level),
        )


@lru_cache()
def get_settings() -> Settings:
    return Settings.from_env()
