from __future__ import annotations

import os
from pathlib import Path
from typing import List


class Settings:
    """Centralized configuration for the generation backend."""

    def __init__(self) -> None:
        base_dir = Path(__file__).resolve().parent
        repo_root = base_dir.parent
        data_root_default = repo_root / "data"

        self.data_root: Path = Path(
            os.environ.get("TWINFORGE_DATA_ROOT") or data_root_default
        ).expanduser()
        self.app_db_path: Path = Path(
            os.environ.get("TWINFORGE_DB_PATH") or (self.data_root / "twinforge.db")
        ).expanduser()

        # ---- Remote generation service ----
        self.generation_base_url: str = os.environ.get(
            "TWINFORGE_GENERATION_BASE_URL", "http://127.0.0.1:54321/functions/v1"
        )
        self.generation_api_key: str | None = os.environ.get("TWINFORGE_GENERATION_API_KEY")
        self.connect_timeout: float = float(os.environ.get("TWINFORGE_CONNECT_TIMEOUT", "30"))
        # Longest silence tolerated between two chunks before the stream is considered stalled.
        self.stream_read_timeout: float = float(
            os.environ.get("TWINFORGE_STREAM_READ_TIMEOUT", "60")
        )
        # Hard ceiling on the whole stream lifetime.
        self.stream_timeout: float = float(os.environ.get("TWINFORGE_STREAM_TIMEOUT", "180"))

        # ---- Recovery ----
        self.recovery_grace_seconds: float = float(
            os.environ.get("TWINFORGE_RECOVERY_GRACE_SECONDS", "2")
        )
        self.max_overflow_units: int = int(os.environ.get("TWINFORGE_MAX_OVERFLOW_UNITS") or "7")

        # ---- Registry ----
        # Idle controllers beyond this many are evicted.
        self.max_controllers: int = int(os.environ.get("TWINFORGE_MAX_CONTROLLERS") or "256")

        # ---- Side effects ----
        # When unset, rewards are written to the local ledger table instead.
        self.rewards_url: str | None = os.environ.get("TWINFORGE_REWARDS_URL") or None
        self.rewards_timeout: float = float(os.environ.get("TWINFORGE_REWARDS_TIMEOUT", "10"))

        cors = os.environ.get("TWINFORGE_CORS_ORIGINS", "*")
        if cors.strip() == "*":
            self.cors_origins: List[str] = ["*"]
        else:
            self.cors_origins = [
                origin.strip() for origin in cors.split(",") if origin.strip()
            ]


settings = Settings()
