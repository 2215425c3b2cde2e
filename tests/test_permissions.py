"""
Unit tests for RBAC permission system
"""

import pytest

from opsportal.core.dependencies import require_permission
from opsportal.core.errors import AuthorizationDenied
from opsportal.core.permissions import (
    Permission,
    ensure_permission,
    get_permissions_for_role,
    has_permission,
)
from opsportal.models import UserRole


def test_get_permissions_for_role():
    """Test permission retrieval for all roles"""
    # Owner and admin manage relationships and payment status
    for role in ("owner", "admin"):
        perms = get_permissions_for_role(role)
        assert Permission.RELATIONSHIP_INVITE in perms
        assert Permission.PAYMENT_UPDATE_STATUS in perms
        assert Permission.CASE_TRANSITION in perms

    # Member works cases but does not manage the graph
    member_perms = get_permissions_for_role("member")
    assert Permission.CASE_CREATE in member_perms
    assert Permission.CASE_EVIDENCE_UPLOAD in member_perms
    assert Permission.RELATIONSHIP_MANAGE not in member_perms
    assert Permission.PAYMENT_UPDATE_STATUS not in member_perms


def test_role_enum_and_unknown_role():
    assert get_permissions_for_role(UserRole.ADMIN) == get_permissions_for_role("admin")
    assert get_permissions_for_role("waiter") == set()


def test_has_permission():
    """Test permission checking logic"""
    member_perms = get_permissions_for_role("member")
    assert has_permission(Permission.CASE_VIEW, member_perms)
    assert not has_permission(Permission.RELATIONSHIP_INVITE, member_perms)


def test_ensure_permission():
    ensure_permission(UserRole.OWNER, Permission.RELATIONSHIP_MANAGE)
    with pytest.raises(AuthorizationDenied) as exc_info:
        ensure_permission(UserRole.MEMBER, Permission.PAYMENT_UPDATE_STATUS)
    assert exc_info.value.message == "Permission required: payment:update_status"


def test_require_permission_dependency():
    """Test that require_permission creates a callable dependency"""
    checker = require_permission(Permission.CASE_VIEW)
    assert callable(checker)
    assert callable(require_permission(Permission.PAYMENT_UPDATE_STATUS))
