from __future__ import annotations

from typing import List, Optional, Protocol

from mixtape.storage.models import User


class CredentialStore(Protocol):
    """Operations the identity core needs from a user store.

    Implementations enforce email, username and federated-identity uniqueness
    themselves and raise ``ConstraintViolation`` when a write would break one.
    """

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
    ) -> User: ...

    def find_conflicting_user(self, email: str, username: str) -> Optional[User]: ...

    def get_user(self, user_id: str) -> Optional[User]: ...

    def get_user_by_email(self, email: str) -> Optional[User]: ...

    def get_user_by_username(self, username: str) -> Optional[User]: ...

    def get_user_by_provider(self, provider: str, subject_id: str) -> Optional[User]: ...

    def link_federated_identity(
        self,
        user_id: str,
        provider: str,
        subject_id: str,
        avatar_url: Optional[str] = None,
    ) -> Optional[User]: ...

    def update_profile(
        self,
        user_id: str,
        *,
        bio: Optional[str] = None,
        avatar_url: Optional[str] = None,
    ) -> Optional[User]: ...

    def delete_user(self, user_id: str) -> bool: ...

    def list_users(
        self, limit: int = 20, offset: int = 0, search: Optional[str] = None
    ) -> List[User]: ...

    def count_users(self, search: Optional[str] = None) -> int: ...

    def verify_connection(self) -> None: ...

    def close(self) -> None: ...
