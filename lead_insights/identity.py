"""
Caller identity from the upstream auth layer.

Authentication happens before requests reach this service; the gateway
forwards the verified claims as headers:
    X-Organization-Id   tenant (required)
    X-User-Id           acting user (optional)
    X-User-Role         role name, e.g. 'admin' (optional)
"""
from dataclasses import dataclass
from functools import wraps
from typing import Optional

from flask import g, jsonify, request

from lead_insights.config import CONFIG_ADMIN_ROLES


@dataclass(frozen=True)
class Identity:
    organization_id: str
    user_id: Optional[str] = None
    role: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return (self.role or '').lower() in CONFIG_ADMIN_ROLES


def identity_from_headers(headers) -> Optional[Identity]:
    organization_id = (headers.get('X-Organization-Id') or '').strip()
    if not organization_id:
        return None
    return Identity(
        organization_id=organization_id,
        user_id=(headers.get('X-User-Id') or '').strip() or None,
        role=(headers.get('X-User-Role') or '').strip() or None,
    )


def require_identity(admin=False):
    """View decorator: 401 without an organization, 403 if admin is required and missing."""
    def decorator(view):
        @wraps(view)
        def wrapper(*args, **kwargs):
            identity = identity_from_headers(request.headers)
            if identity is None:
                return jsonify({'error': 'Missing organization context'}), 401
            if admin and not identity.is_admin:
                return jsonify({'error': 'Admin role required'}), 403
            g.identity = identity
            return view(*args, **kwargs)
        return wrapper
    return decorator
