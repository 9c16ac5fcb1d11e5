from __future__ import annotations

import hashlib

import bcrypt


class PasswordHasher:
    """bcrypt with a fixed work factor; plaintext is never stored or returned."""

    def __init__(self, *, rounds: int = 10):
        self.rounds = int(rounds)

    def hash(self, password: str | None) -> str:
        if not password:
            raise ValueError("password must be provided")
        salt = bcrypt.gensalt(rounds=self.rounds)
        return bcrypt.hashpw(str(password).encode("utf-8"), salt).decode("utf-8")

    def verify(self, password: str | None, password_hash: str | None) -> bool:
        if not password or not password_hash:
            return False
        try:
            return bcrypt.checkpw(str(password).encode("utf-8"), str(password_hash).encode("utf-8"))
        except ValueError:
            # Malformed/legacy hash.
            return False


def credential_fingerprint(password_hash: str | None) -> str:
    """Short digest of the stored hash; changes whenever the password changes."""
    raw = str(password_hash or "").encode("utf-8")
    return hashlib.sha256(raw).hexdigest()[:16]


def is_valid_password_length(password: str | None, *, min_length: int) -> bool:
    return bool(password) and len(str(password)) >= int(min_length)
