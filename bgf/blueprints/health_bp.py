"""
Health check blueprint.

Endpoints:
    GET /api/v1/health/ready  — process is up
    GET /api/v1/health/live   — database round-trip + auto-assignment coverage

``live`` reports 503 only when the database is unreachable. Missing role
holders (no Head of Programs, CEO or Patron) are reported as a warning: new
requests still go through, they just wait unassigned.
"""

import logging
import time

from flask import Blueprint, current_app, jsonify
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from bgf.models import db
from bgf.models.user import Role, User

logger = logging.getLogger(__name__)

health_bp = Blueprint("health_bp", __name__, url_prefix="/api/v1/health")

# Roles the workflow engine looks up by itself rather than taking from a caller
AUTO_ASSIGNED_ROLES = (Role.HEAD_OF_PROGRAMS, Role.CEO, Role.PATRON)


@health_bp.route("/ready", methods=["GET"])
def ready():
    return jsonify({"status": "ok"}), 200


@health_bp.route("/live", methods=["GET"])
def live():
    checks = {}

    try:
        t0 = time.perf_counter()
        db.session.execute(db.text("SELECT 1"))
        checks["database"] = {"status": "ok", "latency_ms": round((time.perf_counter() - t0) * 1000, 1)}
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("Health check: database failed: %s", exc)
        checks["database"] = {"status": "error", "detail": str(exc)}
        return jsonify({"status": "degraded", "checks": checks}), 503

    counts = dict(db.session.execute(
        select(User.role, func.count(User.id))
        .where(User.is_active.is_(True), User.role.in_(AUTO_ASSIGNED_ROLES))
        .group_by(User.role)
    ).all())
    missing = [str(role) for role in AUTO_ASSIGNED_ROLES if not counts.get(role)]
    checks["assignment"] = {
        "status": "warning" if missing else "ok",
        "active": {str(role): counts.get(role, 0) for role in AUTO_ASSIGNED_ROLES},
        "missing": missing,
    }

    checks["app"] = {
        "name": "BGF Dashboard",
        "testing": current_app.testing,
        "max_transition_attempts": current_app.config.get("WORKFLOW_MAX_ATTEMPTS"),
    }
    return jsonify({"status": "ok", "checks": checks}), 200
