"""Blueprint registration and service health."""
from flask import Blueprint, current_app, jsonify
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from extensions import db
from .lookup import lookup_bp
from .workflow import workflow_bp

main_bp = Blueprint("main", __name__)


@main_bp.route("/healthz", methods=["GET"])
def healthz():
    try:
        db.session.execute(text("SELECT 1"))
    except SQLAlchemyError:
        current_app.logger.exception("Health check database probe failed")
        return jsonify({"status": "degraded", "database": "unreachable"}), 503
    return jsonify({"status": "ok", "database": "ok"})


__all__ = ["main_bp", "lookup_bp", "workflow_bp"]
