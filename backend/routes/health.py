"""
Minimal health check endpoint

Minimal response by default; ?detail=true adds dependency checks.
"""

import os
from datetime import datetime

from flask import Blueprint, jsonify, request
from redis import Redis
from sqlalchemy import text

from database import get_session

# Create health blueprint
health_bp = Blueprint("health", __name__, url_prefix="/api")

REDIS_URL = os.getenv("CELERY_BROKER_URL", "redis://localhost:6379/0")


def check_db_connection() -> bool:
    """Test database connectivity.

    Returns:
        True if database is accessible
    """
    try:
        with get_session() as session:
            return session.execute(text("SELECT 1")).scalar() == 1
    except Exception:
        return False


def check_redis_connection() -> bool:
    """Test Redis (Celery broker) connectivity.

    Returns:
        True if Redis is accessible
    """
    try:
        return bool(Redis.from_url(REDIS_URL, socket_timeout=2).ping())
    except Exception:
        return False


@health_bp.route("/health", methods=["GET"])
def health_check():
    """Health check endpoint.

    Returns:
        200: Service is healthy
        503: Service is unhealthy (detail view only)
    """
    if request.args.get("detail", "false").lower() != "true":
        return jsonify({"status": "ok"}), 200

    health = {
        "status": "ok",
        "timestamp": datetime.now().isoformat(),
        "checks": {
            "database": check_db_connection(),
            "redis": check_redis_connection(),
        },
    }

    # Overall status: healthy only if all checks pass
    all_healthy = all(health["checks"].values())
    health["status"] = "ok" if all_healthy else "degraded"

    return jsonify(health), 200 if all_healthy else 503


@health_bp.route("/ping", methods=["GET"])
def ping():
    """Ultra-minimal ping endpoint for basic uptime checks.

    Returns:
        200: {"pong": true}
    """
    return jsonify({"pong": True}), 200
