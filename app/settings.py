from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    App settings.

    Notes:
    - Defaults are local and deterministic (SQLite file next to the repo, dummy auth).
    - Every value can be overridden with an `APP_`-prefixed env var.
    """

    model_config = SettingsConfigDict(env_prefix="APP_", extra="ignore")

    db_url: str | None = None
    access_policy_path: str | None = None
    log_level: str = "INFO"

    # "dummy": bearer token is a user id (local/dev). "jwt": verified identity-provider token.
    auth_provider: Literal["dummy", "jwt"] = "dummy"

    # Calendar used to decide when a session's start day has ended.
    session_timezone: str = "UTC"

    seed_demo_data: bool = True

    def resolved_db_url(self) -> str:
        if self.db_url:
            return self.db_url

        repo_root = Path(__file__).resolve().parents[1]
        db_path = repo_root / "fieldtrack.db"
        return f"sqlite:///{db_path}"

    def resolved_access_policy_path(self) -> Path:
        if self.access_policy_path:
            return Path(self.access_policy_path)

        repo_root = Path(__file__).resolve().parents[1]
        return repo_root / "config" / "access_policy.yaml"


@lru_cache
def get_settings() -> Settings:
    return Settings()
