# Overview: Request and permission decorators for API routes.

import hmac
from functools import wraps

from flask import request, jsonify, g, current_app

from .extensions import db
from .models import User
from .permissions import allows


GATEWAY_SECRET_HEADER = "X-Auth-Gateway-Secret"


def _is_authenticated() -> bool:
    return hasattr(g, 'current_user')


def _resolve_user():
    """
    Look up the caller named by the gateway identity header.

    Returns None when the header is missing, not an integer, or names a
    user that does not exist or has been deactivated.
    """
    secret = current_app.config.get("AUTH_GATEWAY_SECRET")
    if secret:
        presented = request.headers.get(GATEWAY_SECRET_HEADER, "")
        if not hmac.compare_digest(presented.encode(), secret.encode()):
            return None

    raw = request.headers.get(current_app.config["AUTH_USER_HEADER"], "").strip()
    if not raw.isdigit():
        return None

    user = db.session.get(User, int(raw))
    if user is None or not user.is_active:
        return None
    return user


def require_auth(f):
    """
    Require an identity established by the upstream auth gateway.

    Sets g.current_user to the User named by the AUTH_USER_HEADER header.

    SECURITY: Returns 401 if:
    - The gateway secret is configured and does not match
    - No identity header, or a non-numeric one
    - Unknown user
    - User account deactivated
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        user = _resolve_user()
        if user is None:
            return jsonify({"error": "Authentication required"}), 401

        g.current_user = user
        return f(*args, **kwargs)

    return decorated_function


def require_permission(action: str):
    """
    Require the authenticated user's role to allow `action`.

    Denials are logged at warning level with the user, role and path.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            # Ensure @require_auth was called first
            if not _is_authenticated():
                return jsonify({"error": "Authentication required"}), 401

            user = g.current_user
            if not allows(user.role, action):
                current_app.logger.warning(
                    "Permission denied: user=%s role=%s action=%s path=%s",
                    user.id, user.role, action, request.path,
                )
                return jsonify({
                    "error": "Permission denied",
                    "required_permission": action,
                    "message": f"Role {user.role} may not perform {action}",
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator
