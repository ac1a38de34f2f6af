from __future__ import annotations

import unicodedata
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

USERNAME_MIN_LENGTH = 3
USERNAME_MAX_LENGTH = 50
EMAIL_MAX_LENGTH = 255


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_email(email: str) -> str:
    return unicodedata.normalize("NFKC", email.strip()).lower()


@dataclass
class User:
    id: str
    email: str
    username: str
    password_hash: Optional[str] = None
    federated_provider: Optional[str] = None
    federated_subject_id: Optional[str] = None
    avatar_url: Optional[str] = None
    bio: Optional[str] = None
    playlist_count: int = 0
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def has_password(self) -> bool:
        return bool(self.password_hash)

    @property
    def has_federated_identity(self) -> bool:
        return bool(self.federated_provider and self.federated_subject_id)
