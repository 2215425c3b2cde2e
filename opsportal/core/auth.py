"""
Password and token utilities
"""

import hashlib
from datetime import datetime, timedelta
from jose import JWTError, jwe, jwt
from jose.exceptions import JWEError
from passlib.context import CryptContext
from typing import Dict, Optional

from opsportal.core.config import get_settings

settings = get_settings()
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

PENDING_PROFILE_AUDIENCE = "portal:pending-profile"


def hash_password(password: str) -> str:
    """Hash a password for the legacy credential store"""
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: Optional[str]) -> bool:
    """Check a password against a stored bcrypt hash"""
    if not password_hash:
        return False
    try:
        return pwd_context.verify(password, password_hash)
    except ValueError:
        # Malformed hash in the legacy store
        return False


def get_unverified_claims(token: str) -> Optional[Dict]:
    """Decode a JWT payload without checking its signature (diagnostics only)"""
    try:
        return jwt.get_unverified_claims(token)
    except JWTError:
        return None


def _pending_profile_key() -> bytes:
    return hashlib.sha256(f"{PENDING_PROFILE_AUDIENCE}:{settings.SECRET_KEY}".encode()).digest()


def create_pending_profile_token(data: Dict, expires_delta: Optional[timedelta] = None) -> str:
    """
    Sign, then encrypt, the state of an OAuth sign-up that still needs a profile

    The state holds provider tokens, so the browser only ever sees ciphertext.
    """
    expire = datetime.utcnow() + (expires_delta or timedelta(minutes=settings.PENDING_PROFILE_TTL_MINUTES))
    to_encode = {
        **data,
        "aud": PENDING_PROFILE_AUDIENCE,
        "exp": expire,
        "iat": datetime.utcnow(),
    }
    signed = jwt.encode(to_encode, settings.SECRET_KEY, algorithm="HS256")
    return jwe.encrypt(signed, _pending_profile_key(), algorithm="dir", encryption="A256GCM").decode()


def decode_pending_profile_token(token: str) -> Optional[Dict]:
    """Decrypt and validate a pending-profile token"""
    try:
        signed = jwe.decrypt(token, _pending_profile_key())
    except JWEError:
        return None
    if signed is None:
        return None

    try:
        payload = jwt.decode(
            signed.decode(),
            settings.SECRET_KEY,
            algorithms=["HS256"],
            audience=PENDING_PROFILE_AUDIENCE,
        )
    except JWTError:
        return None
    for claim in ("aud", "exp", "iat"):
        payload.pop(claim, None)
    return payload
