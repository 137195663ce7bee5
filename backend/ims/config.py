# backend/ims/config.py
from __future__ import annotations
import os
from dataclasses import dataclass, field
from typing import Mapping


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/ims.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///ims.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    LOG_FORMAT = os.environ.get("LOG_FORMAT", "readable")

    # Request editor settings (see EditorSettings below)
    ACTIVITY_LOG_LIMIT = int(os.environ.get("ACTIVITY_LOG_LIMIT", "50"))
    STORE_DEPT_ID = os.environ.get("STORE_DEPT_ID", "Store")
    DEPT_CODE_PREFIXES = {"Store": "STR"}

    # Comma separated list of frontend origins allowed to call the API
    CORS_ORIGINS = os.environ.get(
        "CORS_ORIGINS",
        "http://localhost:5173,http://127.0.0.1:5173",
    )


@dataclass(frozen=True)
class EditorSettings:
    """Request editor knobs, passed explicitly into the services."""
    activity_log_limit: int = 50
    store_dept_id: str = "Store"
    dept_code_prefixes: Mapping[str, str] = field(default_factory=lambda: {"Store": "STR"})

    @classmethod
    def from_config(cls, config: Mapping) -> "EditorSettings":
        return cls(
            activity_log_limit=int(config.get("ACTIVITY_LOG_LIMIT", 50)),
            store_dept_id=config.get("STORE_DEPT_ID", "Store"),
            dept_code_prefixes=dict(config.get("DEPT_CODE_PREFIXES") or {}),
        )
