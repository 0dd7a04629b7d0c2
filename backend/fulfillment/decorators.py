# Overview: Request decorators for API routes.

from functools import wraps
from flask import request, jsonify, g


def _header_int(name: str):
    raw = request.headers.get(name)
    if raw is None or not raw.strip().isdigit():
        return None
    return int(raw)


def require_tenant_context(f):
    """
    Establish tenant and buyer context from gateway headers.

    MULTI-TENANT: Sets the following Flask g attributes:
    - g.tenant_id: resolved by the upstream gateway (X-Tenant-ID) - REQUIRED
    - g.user_id: the authenticated user (X-User-ID) - REQUIRED

    Authentication happens upstream; this only refuses requests that reach
    the service without a resolved context.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        tenant_id = _header_int("X-Tenant-ID")
        user_id = _header_int("X-User-ID")

        if tenant_id is None:
            return jsonify({"error": "Tenant context required"}), 400
        if user_id is None:
            return jsonify({"error": "Authentication required"}), 401

        g.tenant_id = tenant_id
        g.user_id = user_id
        return f(*args, **kwargs)

    return decorated_function
