from __future__ import annotations

from typing import List, Optional, Tuple

from mixtape.logging import get_logger
from mixtape.service.errors import ForbiddenError, NotFoundError
from mixtape.service.session import Principal
from mixtape.storage.base import CredentialStore
from mixtape.storage.models import User

logger = get_logger(__name__)


class UserDirectory:
    """Profile lookups and owner-only profile changes."""

    def __init__(self, store: CredentialStore) -> None:
        self.store = store

    def get(self, user_id: str) -> User:
        user = self.store.get_user(user_id)
        if not user:
            raise NotFoundError("User not found")
        return user

    def get_by_username(self, username: str) -> User:
        user = self.store.get_user_by_username(username)
        if not user:
            raise NotFoundError("User not found")
        return user

    def search(
        self, *, page: int, limit: int, search: Optional[str] = None
    ) -> Tuple[List[User], int]:
        offset = (page - 1) * limit
        users = self.store.list_users(limit=limit, offset=offset, search=search)
        return users, self.store.count_users(search=search)

    def _require_owner(self, principal: Principal, user_id: str, action: str) -> None:
        if principal.user_id != user_id:
            logger.warning(
                "profile_forbidden", actor=principal.user_id, target=user_id, action=action
            )
            raise ForbiddenError(f"Not authorized to {action} this profile")

    def update_profile(
        self,
        principal: Principal,
        user_id: str,
        *,
        bio: Optional[str] = None,
        avatar_url: Optional[str] = None,
    ) -> User:
        self._require_owner(principal, user_id, "update")
        user = self.store.update_profile(user_id, bio=bio, avatar_url=avatar_url)
        if not user:
            raise NotFoundError("User not found")
        logger.info("profile_updated", user_id=user_id)
        return user

    def delete_account(self, principal: Principal, user_id: str) -> None:
        self._require_owner(principal, user_id, "delete")
        if not self.store.delete_user(user_id):
            raise NotFoundError("User not found")
        logger.info("account_deleted", user_id=user_id)
