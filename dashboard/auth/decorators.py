"""
Flask route decorators for caller identity.

Authentication happens upstream (SSO / reverse proxy). The proxy forwards
the authenticated identity in a trusted header (settings.actor_header,
default X-Remote-User); these decorators only read it.

Provides:
- actor_required: Require an identity and set g.current_user
- get_current_user: The identity of the current request
"""
from functools import wraps

from flask import g, jsonify, request

MAX_ACTOR_LENGTH = 120


def _header_name() -> str:
    from config.settings import get_settings
    return get_settings().actor_header


def actor_required(f):
    """Decorator to require an upstream-authenticated actor.

    Sets g.current_user on success, returns 401 otherwise.
    """
    @wraps(f)
    def decorated(*args, **kwargs):
        actor = (request.headers.get(_header_name()) or "").strip()

        if not actor:
            return jsonify({"error": "Missing authenticated user"}), 401
        if len(actor) > MAX_ACTOR_LENGTH:
            return jsonify({"error": "Invalid authenticated user"}), 401

        g.current_user = actor
        return f(*args, **kwargs)
    return decorated


def get_current_user():
    """Get the current user from Flask g context."""
    return g.current_user if hasattr(g, 'current_user') else None
