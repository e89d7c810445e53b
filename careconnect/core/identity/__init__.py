from __future__ import annotations

"""
Identity: canonical roles, the authenticated profile, and the collaborators
that exchange credentials for tokens and tokens for profiles.
"""

from careconnect.core.identity.client import DemoIdentityClient, DemoUser, IdentityClient, RestIdentityClient, default_demo_users
from careconnect.core.identity.models import ROLE_SYNONYMS, Identity, Role, SessionState, TokenPair, normalize_role

__all__ = [
    "DemoIdentityClient",
    "DemoUser",
    "IdentityClient",
    "RestIdentityClient",
    "default_demo_users",
    "ROLE_SYNONYMS",
    "Identity",
    "Role",
    "SessionState",
    "TokenPair",
    "normalize_role",
]
