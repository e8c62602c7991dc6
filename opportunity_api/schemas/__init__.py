# opportunity_api/schemas/__init__.py
"""
Pydantic schemas for policy documents.
"""

from opportunity_api.schemas.policy import (
    AccessConfig,
    AccessPolicyResponse,
    CleanupConfig,
    CleanupPolicyResponse,
    PolicyEnvelope,
)

__all__ = [
    "CleanupConfig",
    "AccessConfig",
    "PolicyEnvelope",
    "CleanupPolicyResponse",
    "AccessPolicyResponse",
]
