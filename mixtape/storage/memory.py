from __future__ import annotations

import json
import threading
import uuid
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

from mixtape.logging import get_logger
from mixtape.storage.errors import ConstraintViolation
from mixtape.storage.models import User, normalize_email, utcnow


class MemoryStore:
    """In-process user store used for development and tests.

    When ``fs_root`` is given the user table is snapshotted to
    ``<fs_root>/state/users.json`` after every write and reloaded on start.
    """

    def __init__(self, fs_root: str | None = None) -> None:
        self.logger = get_logger(__name__)
        self.users: Dict[str, User] = {}
        # RLock so lookups can be reused inside write paths
        self._data_lock = threading.RLock()
        self.fs_root = Path(fs_root) if fs_root else None
        if self.fs_root is not None:
            self.fs_root.mkdir(parents=True, exist_ok=True)
            if self._load_state():
                self.logger.info("memory_store_loaded", users=len(self.users))

    def _state_path(self) -> Path:
        assert self.fs_root is not None
        state_dir = self.fs_root / "state"
        state_dir.mkdir(parents=True, exist_ok=True)
        return state_dir / "users.json"

    @staticmethod
    def _serialize_datetime(dt: datetime) -> str:
        return dt.isoformat()

    @staticmethod
    def _deserialize_datetime(raw: str) -> datetime:
        return datetime.fromisoformat(raw)

    # uniqueness checks; callers hold the lock
    def _email_taken(self, email: str, *, exclude: Optional[str] = None) -> bool:
        return any(
            u.email == email and u.id != exclude for u in self.users.values()
        )

    def _username_taken(self, username: str) -> bool:
        return any(u.username == username for u in self.users.values())

    def _federated_identity_taken(
        self, provider: str, subject_id: str, *, exclude: Optional[str] = None
    ) -> bool:
        return any(
            u.federated_provider == provider
            and u.federated_subject_id == subject_id
            and u.id != exclude
            for u in self.users.values()
        )

    # users
    def create_user(
        self,
        email: str,
        username: str,
        password_hash: Optional[str] = None,
        *,
        federated_provider: Optional[str] = None,
        federated_subject_id: Optional[str] = None,
        avatar_url: Optional[str] = None,
        bio: Optional[str] = None,
    ) -> User:
        email = normalize_email(email)
        now = utcnow()
        user = User(
            id=str(uuid.uuid4()),
            email=email,
            username=username,
            password_hash=password_hash,
            federated_provider=federated_provider,
            federated_subject_id=federated_subject_id,
            avatar_url=avatar_url,
            bio=bio,
            created_at=now,
            updated_at=now,
        )
        if not user.has_password and not user.has_federated_identity:
            raise ConstraintViolation(
                "user needs a password or a federated identity",
                {"field": "auth_method"},
            )
        with self._data_lock:
            if self._email_taken(email):
                raise ConstraintViolation("email already exists", {"field": "email"})
            if self._username_taken(username):
                raise ConstraintViolation(
                    "username already exists", {"field": "username"}
                )
            if user.has_federated_identity and self._federated_identity_taken(
                federated_provider, federated_subject_id
            ):
                raise ConstraintViolation(
                    "federated identity already linked",
                    {"field": "federated_identity"},
                )
            self._commit(user.id, user)
            return user

    def find_conflicting_user(self, email: str, username: str) -> Optional[User]:
        email = normalize_email(email)
        with self._data_lock:
            return next(
                (
                    u
                    for u in self.users.values()
                    if u.email == email or u.username == username
                ),
                None,
            )

    def get_user(self, user_id: str) -> Optional[User]:
        with self._data_lock:
            return self.users.get(user_id)

    def get_user_by_email(self, email: str) -> Optional[User]:
        email = normalize_email(email)
        with self._data_lock:
            return next((u for u in self.users.values() if u.email == email), None)

    def get_user_by_username(self, username: str) -> Optional[User]:
        with self._data_lock:
            return next(
                (u for u in self.users.values() if u.username == username), None
            )

    def get_user_by_provider(self, provider: str, subject_id: str) -> Optional[User]:
        with self._data_lock:
            return next(
                (
                    u
                    for u in self.users.values()
                    if u.federated_provider == provider
                    and u.federated_subject_id == subject_id
                ),
                None,
            )

    def link_federated_identity(
        self,
        user_id: str,
        provider: str,
        subject_id: str,
        avatar_url: Optional[str] = None,
    ) -> Optional[User]:
        with self._data_lock:
            user = self.users.get(user_id)
            if not user:
                return None
            if self._federated_identity_taken(provider, subject_id, exclude=user_id):
                raise ConstraintViolation(
                    "federated identity already linked",
                    {"field": "federated_identity"},
                )
            updated = replace(
                user,
                federated_provider=provider,
                federated_subject_id=subject_id,
                avatar_url=user.avatar_url or avatar_url,
                updated_at=utcnow(),
            )
            self._commit(user_id, updated)
            return updated

    def update_profile(
        self,
        user_id: str,
        *,
        bio: Optional[str] = None,
        avatar_url: Optional[str] = None,
    ) -> Optional[User]:
        with self._data_lock:
            user = self.users.get(user_id)
            if not user:
                return None
            updated = replace(
                user,
                bio=user.bio if bio is None else bio,
                avatar_url=user.avatar_url if avatar_url is None else avatar_url,
                updated_at=utcnow(),
            )
            self._commit(user_id, updated)
            return updated

    def delete_user(self, user_id: str) -> bool:
        with self._data_lock:
            if user_id not in self.users:
                return False
            self._commit(user_id, None)
            return True

    def _matching(self, search: Optional[str]) -> List[User]:
        needle = (search or "").strip().lower()
        return [
            u
            for u in self.users.values()
            if not needle
            or needle in u.username.lower()
            or needle in (u.bio or "").lower()
        ]

    def list_users(
        self, limit: int = 20, offset: int = 0, search: Optional[str] = None
    ) -> List[User]:
        with self._data_lock:
            results = sorted(
                self._matching(search), key=lambda u: u.created_at, reverse=True
            )
            return results[offset : offset + limit]

    def count_users(self, search: Optional[str] = None) -> int:
        with self._data_lock:
            return len(self._matching(search))

    def verify_connection(self) -> None:
        return None

    def close(self) -> None:
        return None

    # snapshot
    def _commit(self, user_id: str, user: Optional[User]) -> None:
        """Apply one record change and snapshot it, undoing the change if the write fails."""
        previous = self.users.get(user_id)
        if user is None:
            self.users.pop(user_id, None)
        else:
            self.users[user_id] = user
        try:
            self._persist_state()
        except RuntimeError:
            if previous is None:
                self.users.pop(user_id, None)
            else:
                self.users[user_id] = previous
            raise

    def _serialize_user(self, user: User) -> dict:
        return {
            "id": user.id,
            "email": user.email,
            "username": user.username,
            "password_hash": user.password_hash,
            "federated_provider": user.federated_provider,
            "federated_subject_id": user.federated_subject_id,
            "avatar_url": user.avatar_url,
            "bio": user.bio,
            "playlist_count": user.playlist_count,
            "created_at": self._serialize_datetime(user.created_at),
            "updated_at": self._serialize_datetime(user.updated_at),
        }

    def _deserialize_user(self, data: dict) -> User:
        return User(
            id=data["id"],
            email=data["email"],
            username=data["username"],
            password_hash=data.get("password_hash"),
            federated_provider=data.get("federated_provider"),
            federated_subject_id=data.get("federated_subject_id"),
            avatar_url=data.get("avatar_url"),
            bio=data.get("bio"),
            playlist_count=data.get("playlist_count", 0),
            created_at=self._deserialize_datetime(data["created_at"]),
            updated_at=self._deserialize_datetime(data["updated_at"]),
        )

    def _persist_state(self) -> None:
        if self.fs_root is None:
            return
        state = {"users": [self._serialize_user(u) for u in self.users.values()]}
        path = self._state_path()
        try:
            path.write_text(json.dumps(state, indent=2))
        except OSError as exc:
            raise RuntimeError(f"failed to persist in-memory state: {exc}") from exc

    def _load_state(self) -> bool:
        path = self._state_path()
        try:
            data = json.loads(path.read_text())
        except FileNotFoundError:
            return False
        self.users = {u["id"]: self._deserialize_user(u) for u in data.get("users", [])}
        return True
