from __future__ import annotations

import time

import pytest

from userhub.errors import TokenExpired, TokenInvalid
from userhub.services.passwords import PasswordHasher, credential_fingerprint, is_valid_password_length
from userhub.services.tokens import TokenSigner


def test_hash_then_verify_roundtrip():
    h = PasswordHasher(rounds=4)
    hashed = h.hash("s3cret-pass")
    assert hashed != "s3cret-pass"
    assert hashed.startswith("$2")
    assert h.verify("s3cret-pass", hashed) is True
    assert h.verify("wrong", hashed) is False


def test_hash_rejects_empty_plaintext():
    with pytest.raises(ValueError):
        PasswordHasher(rounds=4).hash("")
    with pytest.raises(ValueError):
        PasswordHasher(rounds=4).hash(None)


def test_verify_malformed_hash_is_false():
    h = PasswordHasher(rounds=4)
    assert h.verify("anything", "not-a-bcrypt-hash") is False
    assert h.verify("anything", None) is False
    assert h.verify("", h.hash("x")) is False


def test_fingerprint_changes_with_hash():
    h = PasswordHasher(rounds=4)
    a = credential_fingerprint(h.hash("one-password"))
    b = credential_fingerprint(h.hash("one-password"))
    assert len(a) == 16
    # Different salts => different hashes => different fingerprints.
    assert a != b


def test_password_length():
    assert is_valid_password_length("12345678", min_length=8)
    assert not is_valid_password_length("1234567", min_length=8)
    assert not is_valid_password_length(None, min_length=1)


def test_recovery_token_roundtrip():
    signer = TokenSigner(secret="k")
    tok = signer.issue_recovery_token(user_id="u1", fingerprint="fp", expires_in=86400)
    claims = signer.verify_recovery_token(tok)
    assert claims["id"] == "u1"
    assert claims["operation"] == "recovery"
    assert claims["fp"] == "fp"
    assert claims["exp"] - claims["iat"] == 86400


def test_token_issued_two_days_ago_is_expired():
    signer = TokenSigner(secret="k")
    two_days_ago = int(time.time()) - 2 * 86400
    tok = signer.issue_recovery_token(user_id="u1", fingerprint="fp", expires_in=86400, now=two_days_ago)
    with pytest.raises(TokenExpired):
        signer.verify_recovery_token(tok)


def test_token_signed_with_other_secret_is_invalid():
    tok = TokenSigner(secret="other").issue_recovery_token(user_id="u1", fingerprint="fp", expires_in=60)
    with pytest.raises(TokenInvalid) as ei:
        TokenSigner(secret="k").verify_recovery_token(tok)
    assert not isinstance(ei.value, TokenExpired)


@pytest.mark.parametrize("garbage", ["", "   ", None, "a.b.c", "not-a-token"])
def test_garbage_tokens_fail_closed(garbage):
    with pytest.raises(TokenInvalid):
        TokenSigner(secret="k").verify(garbage)


def test_access_token_is_not_a_recovery_token():
    signer = TokenSigner(secret="k")
    access = signer.issue_access_token(user={"id": "u1", "username": "ann"}, session_id="sid1", expires_in=60)
    with pytest.raises(TokenInvalid):
        signer.verify_recovery_token(access)

    recovery = signer.issue_recovery_token(user_id="u1", fingerprint="fp", expires_in=60)
    with pytest.raises(TokenInvalid):
        signer.verify_access_token(recovery)


def test_access_token_claims():
    signer = TokenSigner(secret="k")
    tok = signer.issue_access_token(
        user={"id": "u1", "username": "ann", "role": "admin", "groups": ["g2", "g1"]},
        session_id="sid1",
        expires_in=60,
    )
    claims = signer.verify_access_token(tok)
    assert claims.user_id == "u1"
    assert claims.username == "ann"
    assert claims.role == "admin"
    assert claims.session_id == "sid1"
    assert claims.groups == ["g1", "g2"]
    assert claims.claims["jti"] == "u1"


def test_signer_requires_secret():
    with pytest.raises(ValueError):
        TokenSigner(secret="")
