"""
auth/passwords.py -- bcrypt password hashing.

Using bcrypt directly rather than passlib: passlib's wrap-bug detection
builds a password longer than 72 bytes, which bcrypt 4.x rejects. The API
layer caps passwords at 72 UTF-8 bytes so bcrypt never truncates silently.

bcrypt.checkpw compares in constant time. A malformed stored hash makes
checkpw raise ValueError; verify() reports that as a failed match so the
caller never sees an exception for bad stored data.
"""

from __future__ import annotations

import bcrypt


class PasswordHasher:
    """Adaptive salted one-way hash with a configurable bcrypt cost."""

    def __init__(self, rounds: int = 12) -> None:
        self.rounds = rounds
        # Computed once so the first unknown-email login is not measurably
        # slower than later ones.
        self._dummy_hash = self.hash("nadlan_timing_dummy")

    def hash(self, secret: str) -> str:
        return bcrypt.hashpw(secret.encode("utf-8"), bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def verify(self, secret: str, digest: str | None) -> bool:
        """Return True if secret matches digest. None or malformed digests return False."""
        if not digest:
            return False
        try:
            return bcrypt.checkpw(secret.encode("utf-8"), digest.encode("utf-8"))
        except ValueError:
            return False

    def verify_dummy(self, secret: str) -> None:
        """Spend one bcrypt check on a fixed hash.

        Called when the account does not exist (or has no password) so the
        response time matches a real wrong-password check.
        """
        self.verify(secret, self._dummy_hash)
