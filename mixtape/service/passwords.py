from __future__ import annotations

import asyncio
from typing import Optional

from argon2 import PasswordHasher as Argon2Hasher
from argon2 import Type
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError

from mixtape.config import Settings
from mixtape.logging import get_logger
from mixtape.service.errors import ValidationError

MAX_PASSWORD_LENGTH = 128

logger = get_logger(__name__)


class PasswordHasher:
    """Argon2id password hashing with a per-hash random salt.

    ``verify`` never raises: a mismatch, a malformed digest and a missing
    digest are all reported as ``False``.
    """

    def __init__(
        self,
        *,
        time_cost: int = 3,
        memory_cost: int = 64 * 1024,
        parallelism: int = 4,
    ) -> None:
        self._hasher = Argon2Hasher(
            time_cost=time_cost,
            memory_cost=memory_cost,
            parallelism=parallelism,
            type=Type.ID,
        )
        # Target for dummy_verify
        self._dummy_digest = self._hasher.hash("mixtape-dummy-password")

    @classmethod
    def from_settings(cls, settings: Settings) -> "PasswordHasher":
        return cls(
            time_cost=settings.password_hash_time_cost,
            memory_cost=settings.password_hash_memory_cost,
            parallelism=settings.password_hash_parallelism,
        )

    def hash(self, plaintext: str) -> str:
        if len(plaintext) > MAX_PASSWORD_LENGTH:
            raise ValidationError(
                f"password must be at most {MAX_PASSWORD_LENGTH} characters",
                detail={"field": "password"},
            )
        return self._hasher.hash(plaintext)

    def verify(self, plaintext: str, digest: Optional[str]) -> bool:
        if not digest:
            return False
        try:
            return self._hasher.verify(digest, plaintext)
        except VerifyMismatchError:
            return False
        except (InvalidHashError, VerificationError):
            logger.warning("password_digest_unusable")
            return False

    def dummy_verify(self, plaintext: str) -> bool:
        """Spend one verification's worth of work and report failure."""
        self.verify(plaintext, self._dummy_digest)
        return False

    async def hash_async(self, plaintext: str) -> str:
        return await asyncio.to_thread(self.hash, plaintext)

    async def verify_async(self, plaintext: str, digest: Optional[str]) -> bool:
        return await asyncio.to_thread(self.verify, plaintext, digest)

    async def dummy_verify_async(self, plaintext: str) -> bool:
        return await asyncio.to_thread(self.dummy_verify, plaintext)
