"""Application configuration from environment variables."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path


DEFAULT_SECRET_KEY = "dev-secret-key-change-in-production"


def resolve_base_path(cwd: Path | None = None) -> Path:
    """Project root: the parent when running from ``backend/``, else cwd."""
    cwd = cwd or Path.cwd()
    if cwd.name == "backend":
        return cwd.parent
    return cwd


def database_url_from_env(base_path: Path | None = None) -> str:
    """``DATABASE_URL``, else ``CRUDABLE_DB_PATH`` as a sqlite URL, else a file under ``<base>/data``."""
    url = os.environ.get("DATABASE_URL")
    if url:
        return url
    db_path = os.environ.get("CRUDABLE_DB_PATH")
    if db_path:
        return f"sqlite:///{db_path}"
    if base_path:
        return f"sqlite:///{base_path / 'data' / 'crudable.db'}"
    return "sqlite:///crudable.db"


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "").lower() in ("1", "true", "yes")


@dataclass
class AppConfig:
    """Settings shared by the API and the CLI.

    Environment variables:
        CRUDABLE_METADATA_PATH  schema directory (default <base>/metadata)
        CRUDABLE_SECRET_KEY     JWT signing key
        CRUDABLE_DISABLE_AUTH   "1"/"true" serves every request as public
        CRUDABLE_LOG_LEVEL      logging level name (default INFO)
        CRUDABLE_PORT           dev server port (default 8000)
        DATABASE_URL            sqlite:///... or postgresql://... URL
        CRUDABLE_DB_PATH        SQLite file used when DATABASE_URL is unset
    """

    base_path: Path
    metadata_path: Path
    database_url: str
    secret_key: str = DEFAULT_SECRET_KEY
    disable_auth: bool = False
    log_level: str = "INFO"
    port: int = 8000

    @classmethod
    def from_env(cls, base_path: Path | None = None) -> AppConfig:
        base_path = base_path or resolve_base_path()
        metadata_env = os.environ.get("CRUDABLE_METADATA_PATH")
        return cls(
            base_path=base_path,
            metadata_path=Path(metadata_env) if metadata_env else base_path / "metadata",
            database_url=database_url_from_env(base_path),
            secret_key=os.environ.get("CRUDABLE_SECRET_KEY", DEFAULT_SECRET_KEY),
            disable_auth=_env_flag("CRUDABLE_DISABLE_AUTH"),
            log_level=os.environ.get("CRUDABLE_LOG_LEVEL", "INFO").upper(),
            port=int(os.environ.get("CRUDABLE_PORT", "8000")),
        )

    def configure_logging(self) -> None:
        logging.basicConfig(
            level=getattr(logging, self.log_level, logging.INFO),
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )
