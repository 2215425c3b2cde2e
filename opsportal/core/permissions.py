"""
RBAC (Role-Based Access Control) permission system

Roles are per user within a tenant. Which records a tenant can see is decided
by its relationships and active context, not by these permissions.
"""

from enum import Enum
from typing import Set

from opsportal.core.errors import AuthorizationDenied


class Permission(str, Enum):
    """Permission definitions"""
    # Relationship permissions
    RELATIONSHIP_INVITE = "relationship:invite"
    RELATIONSHIP_MANAGE = "relationship:manage"

    # Case permissions
    CASE_VIEW = "case:view"
    CASE_CREATE = "case:create"
    CASE_TRANSITION = "case:transition"
    CASE_MESSAGE = "case:message"
    CASE_EVIDENCE_UPLOAD = "case:evidence_upload"

    # Payment permissions
    PAYMENT_VIEW = "payment:view"
    PAYMENT_UPDATE_STATUS = "payment:update_status"

    # Invoice permissions
    INVOICE_VIEW = "invoice:view"


_MEMBER_PERMISSIONS = {
    Permission.CASE_VIEW,
    Permission.CASE_CREATE,
    Permission.CASE_TRANSITION,
    Permission.CASE_MESSAGE,
    Permission.CASE_EVIDENCE_UPLOAD,
    Permission.PAYMENT_VIEW,
    Permission.INVOICE_VIEW,
}

# Role permission mapping
ROLE_PERMISSIONS = {
    "owner": _MEMBER_PERMISSIONS | {
        Permission.RELATIONSHIP_INVITE,
        Permission.RELATIONSHIP_MANAGE,
        Permission.PAYMENT_UPDATE_STATUS,
    },
    "admin": _MEMBER_PERMISSIONS | {
        Permission.RELATIONSHIP_INVITE,
        Permission.RELATIONSHIP_MANAGE,
        Permission.PAYMENT_UPDATE_STATUS,
    },
    "member": set(_MEMBER_PERMISSIONS),
}


def get_permissions_for_role(role: str) -> Set[Permission]:
    """Get permissions for a given role"""
    return ROLE_PERMISSIONS.get(str(getattr(role, "value", role)).lower(), set())


def has_permission(required_permission: Permission, user_permissions: Set[Permission]) -> bool:
    """Check if user has required permission"""
    return required_permission in user_permissions


def ensure_permission(role: str, required_permission: Permission) -> None:
    """Raise AuthorizationDenied unless role grants the permission"""
    if not has_permission(required_permission, get_permissions_for_role(role)):
        raise AuthorizationDenied(f"Permission required: {required_permission.value}")
