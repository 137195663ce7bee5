# backend/ims/routes/system.py
"""
Liveness and version endpoints. Neither requires an actor.
"""

import sys
import time
from flask import Blueprint, current_app
from sqlalchemy import func, select
from ..extensions import db
from ..models import Item, MaterialRequest, RoleProfile
from ims.time_utils import to_utc_z, utcnow

system_bp = Blueprint("system", __name__)


def probe_database() -> dict:
    """Count rows in the core tables; any database error marks the probe unhealthy."""
    started = time.perf_counter()
    result = {"status": "healthy"}
    try:
        result["details"] = {
            name: db.session.scalar(select(func.count()).select_from(model))
            for name, model in (
                ("requests", MaterialRequest),
                ("items", Item),
                ("role_profiles", RoleProfile),
            )
        }
    except Exception:
        current_app.logger.exception("Database probe failed")
        result = {"status": "unhealthy", "error": "Database error"}
    result["latency_ms"] = round((time.perf_counter() - started) * 1000, 2)
    return result


@system_bp.get("/health")
def health():
    """200 when the database answers, 503 otherwise."""
    probe = probe_database()
    return {
        "status": probe["status"],
        "timestamp": to_utc_z(utcnow()),
        "checks": {"database": probe},
    }, 200 if probe["status"] == "healthy" else 503


@system_bp.get("/version")
def version():
    return {
        "api_version": "1.0.0",
        "environment": "development" if current_app.debug else "production",
        "python_version": sys.version.split()[0],
        "server_time": to_utc_z(utcnow()),
    }
