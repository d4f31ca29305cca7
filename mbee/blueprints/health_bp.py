"""
Health check blueprint.

Endpoints:
    GET /api/health       : simple 200 for load balancers
    GET /api/health/live  : database round trip and snapshot directory status
"""

import logging
import os
import time

from flask import Blueprint, current_app, jsonify

from mbee.models import db

logger = logging.getLogger(__name__)

health_bp = Blueprint("health", __name__, url_prefix="/api/health")


@health_bp.route("", methods=["GET"])
def ready():
    """Simple readiness probe: always 200 if app is running."""
    return jsonify({"status": "ok", "app": "MBEE"}), 200


@health_bp.route("/live", methods=["GET"])
def live():
    """Detailed liveness check with dependency status."""
    checks = {}
    overall = True

    # ── Database ─────────────────────────────────────────────────────
    try:
        t0 = time.perf_counter()
        db.session.execute(db.text("SELECT 1"))
        db_ms = (time.perf_counter() - t0) * 1000
        checks["database"] = {"status": "ok", "latency_ms": round(db_ms, 1)}
    except Exception as exc:
        db.session.rollback()
        checks["database"] = {"status": "error", "detail": str(exc)}
        overall = False
        logger.error("Health check: database failed: %s", exc)

    # ── Snapshot directory ───────────────────────────────────────────
    data_dir = current_app.config.get("DATA_DIR", "")
    if os.path.isdir(data_dir):
        checks["data_dir"] = {"status": "ok", "writable": os.access(data_dir, os.W_OK)}
    else:
        # Created lazily by the first createOrReplace
        checks["data_dir"] = {"status": "absent"}

    checks["app"] = {
        "name": "MBEE",
        "debug": current_app.debug,
        "testing": current_app.testing,
    }

    status_code = 200 if overall else 503
    return jsonify({"status": "ok" if overall else "degraded", "checks": checks}), status_code
