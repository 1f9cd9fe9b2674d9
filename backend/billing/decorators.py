# Overview: Tenant-context decorator for API routes.

from functools import wraps
from flask import request, jsonify, g

from .extensions import db
from .models import Organization


ORG_HEADER = "X-Org-Id"
USER_HEADER = "X-User-Id"


def _header_int(name: str):
    raw = (request.headers.get(name) or "").strip()
    if not raw:
        return None
    if not raw.isdigit():
        raise ValueError(name)
    return int(raw)


def require_tenant_context(f):
    """
    Establish tenant context from the upstream auth gateway.

    Authentication happens before requests reach this service; the gateway
    forwards the verified identity as headers.

    MULTI-TENANT: Sets the following Flask g attributes:
    - g.org_id: The organization ID (tenant context) - REQUIRED
    - g.user_id: The acting user's ID (may be None for system callers)

    Returns 401 if the org header is missing or malformed, 403 if the
    organization does not exist or is deactivated.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        try:
            org_id = _header_int(ORG_HEADER)
            user_id = _header_int(USER_HEADER)
        except ValueError as exc:
            return jsonify({"error": f"Invalid {exc} header"}), 401

        if org_id is None:
            return jsonify({"error": "Tenant context required"}), 401

        org = db.session.query(Organization).filter_by(id=org_id).first()
        if not org or not org.is_active:
            return jsonify({"error": "Organization not found or inactive"}), 403

        g.org_id = org_id
        g.user_id = user_id
        g.organization = org

        return f(*args, **kwargs)

    return decorated_function
