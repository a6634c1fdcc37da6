"""Runtime configuration read from the environment."""

import os
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from .clock import Clock

# Support both Docker and local development paths
if Path("/app/data").exists():
    DEFAULT_LOCAL_STORE_PATH = Path("/app/data") / "repeet-problems.yaml"
else:
    DEFAULT_LOCAL_STORE_PATH = Path(__file__).parent.parent / "local_data" / "repeet-problems.yaml"


def _parse_list(raw_value: str) -> List[str]:
    return [item.strip() for item in raw_value.split(",") if item.strip()]


class Settings:
    """Centralized application settings"""

    def __init__(self):
        # Remote store (Supabase Postgres)
        self.database_url: Optional[str] = os.getenv("DATABASE_URL")
        self.db_pool_min_size = int(os.getenv("DB_POOL_MIN_SIZE", "1"))
        self.db_pool_max_size = int(os.getenv("DB_POOL_MAX_SIZE", "10"))
        self.db_command_timeout = float(os.getenv("DB_COMMAND_TIMEOUT", "60"))

        # Local store
        self.local_store_path = Path(os.getenv("LOCAL_STORE_PATH", str(DEFAULT_LOCAL_STORE_PATH)))

        # Scheduling
        self.timezone = os.getenv("REPEET_TIMEZONE", "UTC")
        self.audit_probability = float(os.getenv("AUDIT_PROBABILITY", "0.1"))

        self.cors_origins = _parse_list(
            os.getenv("CORS_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173")
        )

    def clock(self) -> Clock:
        return Clock.from_name(self.timezone)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
