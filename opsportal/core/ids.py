"""
Prefixed identifier generation

Every domain row carries an opaque, prefixed id (TNT-, TC-, TV-, USR-, CASE-,
PAY-, ...). A tenant's two facet ids share the readable code of its primary
id so the same organization is recognisable on either side of a relationship.
"""

import re
import secrets
from typing import NamedTuple, Optional

TENANT_PREFIX = "TNT"
CLIENT_FACET_PREFIX = "TC"
VENDOR_FACET_PREFIX = "TV"

_NON_ALNUM = re.compile(r"[^A-Z0-9]")


class TenantIds(NamedTuple):
    tenant_id: str
    tenant_client_id: str
    tenant_vendor_id: str


def _readable_code(name: Optional[str], suffix: str) -> str:
    """First four alphanumerics of the name, padded from the random suffix"""
    base = _NON_ALNUM.sub("", (name or "").strip()[:4].upper())
    if len(base) < 4:
        base += suffix[: 4 - len(base)]
    return base


def generate_id(prefix: str, name: Optional[str] = None) -> str:
    """Generate a unique prefixed id, e.g. CASE-9F2A01BC or USR-JANE9F2A"""
    suffix = secrets.token_hex(4).upper()
    if name and name.strip():
        return f"{prefix}-{_readable_code(name, suffix)}{suffix[:4]}"
    return f"{prefix}-{suffix}"


def generate_tenant_ids(name: str) -> TenantIds:
    """Generate the primary id and both facet ids for a new tenant"""
    suffix = secrets.token_hex(4).upper()
    code = _readable_code(name, suffix) + suffix[4:]
    return TenantIds(
        tenant_id=f"{TENANT_PREFIX}-{code}",
        tenant_client_id=f"{CLIENT_FACET_PREFIX}-{code}",
        tenant_vendor_id=f"{VENDOR_FACET_PREFIX}-{code}",
    )


def generate_token(nbytes: int = 32) -> str:
    """Opaque hex token for sessions and invitations"""
    return secrets.token_hex(nbytes)
