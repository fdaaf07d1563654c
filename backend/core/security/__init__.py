"""
Bearer token verification for the billing API.
"""

from .tokens import ADMIN_ROLE, AccessClaims, TokenService

__all__ = [
    "ADMIN_ROLE",
    "AccessClaims",
    "TokenService",
]
