# Overview: Caller identity context and role decorators for API routes.

from __future__ import annotations

from dataclasses import dataclass
from functools import wraps
from typing import Optional

from flask import current_app, g, jsonify, request


ROLES = ("maintenance", "admin", "cashier", "slideshow")


@dataclass(frozen=True)
class Identity:
    """Pre-validated caller: who is acting and in which role."""
    username: str
    role: str

    @property
    def audit_user(self) -> str:
        return self.username or self.role


def load_identity() -> Optional[Identity]:
    """
    Resolve the caller from the trusted headers set by the authenticating proxy.

    SECURITY: these headers are only meaningful behind a proxy that strips
    them from client requests and sets them after authenticating.
    """
    role = (request.headers.get(current_app.config["IDENTITY_HEADER_ROLE"]) or "").strip().lower()
    if role not in ROLES:
        return None
    username = (request.headers.get(current_app.config["IDENTITY_HEADER_USER"]) or "").strip()
    return Identity(username=username or role, role=role)


def current_identity() -> Optional[Identity]:
    return getattr(g, "identity", None)


def actor_name() -> str:
    identity = current_identity()
    return identity.audit_user if identity else "public"


def require_role(*roles: str):
    """
    Require the caller to hold one of `roles`.

    401 when no identity is present, 403 when the role is not allowed.
    """
    allowed = {r.lower() for r in roles}

    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            identity = current_identity()
            if identity is None:
                return jsonify({"error": "Authentication required"}), 401
            if identity.role not in allowed:
                current_app.logger.warning(
                    "Role %s denied access to %s (requires %s)", identity.role, request.path, ", ".join(sorted(allowed))
                )
                return jsonify({
                    "error": "Permission denied",
                    "required_roles": sorted(allowed),
                }), 403
            return f(*args, **kwargs)

        return decorated_function
    return decorator
