"""Authorization decorators for role-based access to workflow endpoints."""
from functools import wraps

from flask import current_app, jsonify, request
from flask_login import current_user, login_required

from extensions import db
from models import AuditLog


def roles_required(*roles):
    allowed = {r.lower() for r in roles}

    def decorator(view_func):
        @wraps(view_func)
        @login_required
        def wrapped(*args, **kwargs):
            role_name = current_user.role_name.lower()
            if role_name in allowed:
                return view_func(*args, **kwargs)

            current_app.logger.warning(
                "Unauthorized role access attempt",
                extra={"user_id": current_user.id, "role": role_name or None, "path": request.path},
            )
            audit = AuditLog(
                user_id=current_user.id,
                action_type="UNAUTHORIZED_ACCESS",
                resource_type="endpoint",
                resource_id=request.endpoint,
                ip_address=request.remote_addr,
                user_agent=request.headers.get("User-Agent", "unknown")[:255],
            )
            db.session.add(audit)
            db.session.commit()
            return jsonify({"success": False, "error": "unauthorized", "message": "Bạn không có quyền truy cập"}), 403

        return wrapped

    return decorator
