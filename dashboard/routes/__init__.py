"""
Route blueprints for the tenant provisioning API.
"""

from .health import health_bp
from .tenants import tenants_bp

__all__ = ['health_bp', 'tenants_bp']
