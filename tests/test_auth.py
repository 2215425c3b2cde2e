"""
Unit tests for password hashing and pending-profile tokens
"""

from datetime import timedelta

from jose import jwe, jwt

from opsportal.core.auth import (
    PENDING_PROFILE_AUDIENCE,
    _pending_profile_key,
    create_pending_profile_token,
    decode_pending_profile_token,
    get_unverified_claims,
    hash_password,
    verify_password,
)
from opsportal.core.config import get_settings

settings = get_settings()


def test_password_hash_round_trip():
    hashed = hash_password("s3cret-pass")
    assert hashed != "s3cret-pass"
    assert verify_password("s3cret-pass", hashed)
    assert not verify_password("other", hashed)


def test_verify_password_without_or_with_broken_hash():
    assert not verify_password("anything", None)
    assert not verify_password("anything", "not-a-bcrypt-hash")


def test_pending_profile_token():
    """Test encoding and decoding the OAuth pending profile"""
    data = {"auth_user_id": "auth-1", "email": "a@b.test", "access_token": "tok"}
    token = create_pending_profile_token(data)

    assert decode_pending_profile_token(token) == data


def test_expired_pending_profile_token():
    token = create_pending_profile_token({"auth_user_id": "auth-1"}, expires_delta=timedelta(seconds=-1))
    assert decode_pending_profile_token(token) is None


def test_pending_profile_token_hides_provider_tokens():
    token = create_pending_profile_token({"auth_user_id": "auth-1", "refresh_token": "refresh-secret"})

    assert "refresh-secret" not in token
    assert token.count(".") == 4
    assert decode_pending_profile_token(token)["refresh_token"] == "refresh-secret"


def test_pending_profile_token_rejects_plain_or_foreign_tokens():
    """A token signed with the same key, or encrypted for another audience, is not accepted"""
    signed = jwt.encode({"auth_user_id": "auth-1", "aud": PENDING_PROFILE_AUDIENCE}, settings.SECRET_KEY, algorithm="HS256")
    assert decode_pending_profile_token(signed) is None

    foreign = jwt.encode({"auth_user_id": "auth-1", "aud": "authenticated"}, settings.SECRET_KEY, algorithm="HS256")
    encrypted = jwe.encrypt(foreign, _pending_profile_key(), algorithm="dir", encryption="A256GCM").decode()
    assert decode_pending_profile_token(encrypted) is None
    assert decode_pending_profile_token("garbage") is None


def test_unverified_claims():
    token = jwt.encode({"app_metadata": {"portal_tenant_id": "TNT-1"}}, "any-key", algorithm="HS256")
    assert get_unverified_claims(token)["app_metadata"] == {"portal_tenant_id": "TNT-1"}
    assert get_unverified_claims("not.a.jwt") is None
