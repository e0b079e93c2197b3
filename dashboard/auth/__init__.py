"""
Dashboard authentication module.

Identity is established by the upstream auth layer; this package only
exposes it to route handlers.

Public API:
- Decorators: actor_required
- Helpers: get_current_user
"""

from .decorators import (
    actor_required,
    get_current_user,
)

__all__ = [
    "actor_required",
    "get_current_user",
]
