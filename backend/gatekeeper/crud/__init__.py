# backend/gatekeeper/crud/__init__.py
"""
CRUD operations package.
This module re-exports the CRUD singletons from the underlying modules.
"""

from .crud_user import user
from .crud_webauthn_credential import webauthn_credential

__all__ = ["user", "webauthn_credential"]
