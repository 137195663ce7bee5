# Overview: Actor resolution decorator for API routes.

from functools import wraps
from flask import request, jsonify, g, current_app

from .services import permission_service
from .services.permission_service import ActorNotFoundError


ACTOR_HEADER = "X-User-Id"


def require_actor(f):
    """
    Resolve the acting user and store it on g.actor.

    Authentication happens upstream; the gateway forwards the verified uid in
    the X-User-Id header. The uid must have an active role profile.

    SECURITY: Returns 401 if the header is missing or the uid is unknown or
    inactive. Unknown uids are recorded as security events.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        uid = (request.headers.get(ACTOR_HEADER) or "").strip()
        if not uid:
            return jsonify({"error": "Authentication required"}), 401

        try:
            g.actor = permission_service.load_actor(
                uid,
                store_dept_id=current_app.config.get("STORE_DEPT_ID", "Store"),
            )
        except ActorNotFoundError as e:
            permission_service.log_security_event(
                uid,
                "ACTOR_UNKNOWN",
                resource=request.path,
                action=request.method,
                reason=str(e),
            )
            return jsonify({"error": str(e)}), 401

        return f(*args, **kwargs)

    return decorated_function
