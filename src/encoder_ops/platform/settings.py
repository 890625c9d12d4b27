"""Runtime settings read from the environment.

A ``.env`` file in the working directory is loaded first (python-dotenv), so
local development can keep connection strings out of the shell profile.
Values already present in the environment win over the file.
"""

import os
from enum import Enum

from dotenv import load_dotenv
from pydantic import BaseModel, Field


class StorageBackend(str, Enum):
    """Supported job store backends."""

    MONGODB = "mongodb"
    TINYDB = "tinydb"


DEFAULT_DATABASE = "spk-encoder-gateway"


class Settings(BaseModel):
    """Process configuration."""

    storage_backend: StorageBackend = StorageBackend.MONGODB
    mongodb_uri: str = "mongodb://localhost:27017"
    mongodb_database: str = DEFAULT_DATABASE
    tinydb_path: str = "jobs.db"
    aid_sweep_interval: int = Field(default=300, gt=0)
    log_level: str = "INFO"


def load_settings(dotenv: bool = True) -> Settings:
    """Build Settings from environment variables.

    Raises:
        ValueError: STORAGE_BACKEND names an unknown backend.
    """
    if dotenv:
        load_dotenv()

    backend = os.getenv("STORAGE_BACKEND", StorageBackend.MONGODB.value).lower()
    try:
        storage_backend = StorageBackend(backend)
    except ValueError:
        raise ValueError(
            f"Unknown STORAGE_BACKEND {backend!r}; "
            f"expected one of {[b.value for b in StorageBackend]}"
        ) from None

    return Settings(
        storage_backend=storage_backend,
        mongodb_uri=os.getenv("MONGODB_URI", "mongodb://localhost:27017"),
        mongodb_database=os.getenv("MONGODB_DATABASE") or DEFAULT_DATABASE,
        tinydb_path=os.getenv("TINYDB_PATH", "jobs.db"),
        aid_sweep_interval=int(os.getenv("AID_SWEEP_INTERVAL", "300")),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
    )
