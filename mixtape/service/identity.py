from __future__ import annotations

import re
import secrets
from dataclasses import dataclass
from typing import Any, Callable, Literal, Mapping, Optional

from mixtape.logging import get_logger
from mixtape.service.errors import (
    AccountConflictError,
    MalformedFederatedProfileError,
    UsernameUnavailableError,
)
from mixtape.storage.base import CredentialStore
from mixtape.storage.errors import ConstraintViolation
from mixtape.storage.models import (
    USERNAME_MAX_LENGTH,
    USERNAME_MIN_LENGTH,
    User,
    normalize_email,
)

Outcome = Literal["existing", "linked", "provisioned"]

USERNAME_SUFFIX_RANGE = 1000
_WHITESPACE = re.compile(r"\s+")

logger = get_logger(__name__)


def _clean(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


@dataclass(frozen=True)
class FederatedProfile:
    """Identity asserted by an external login provider."""

    provider: str
    subject_id: str
    email: str
    display_name: Optional[str] = None
    avatar_url: Optional[str] = None

    @classmethod
    def from_claims(cls, provider: str, claims: Mapping[str, Any]) -> "FederatedProfile":
        """Build a profile from provider user-info claims.

        Accepts both the Google v2 user-info shape (``id``, ``name``,
        ``picture``) and OpenID Connect claims (``sub``).
        """
        subject_id = _clean(claims.get("id")) or _clean(claims.get("sub"))
        email = _clean(claims.get("email"))
        if not subject_id or not email:
            missing = [
                name
                for name, value in (("subject_id", subject_id), ("email", email))
                if not value
            ]
            raise MalformedFederatedProfileError(
                "federated profile is missing required fields",
                detail={"missing": missing, "provider": provider},
            )
        return cls(
            provider=provider,
            subject_id=subject_id,
            email=normalize_email(email),
            display_name=_clean(claims.get("name")) or _clean(claims.get("displayName")),
            avatar_url=_clean(claims.get("picture")),
        )


@dataclass(frozen=True)
class Reconciliation:
    user: User
    outcome: Outcome


def _random_suffix() -> int:
    return secrets.randbelow(USERNAME_SUFFIX_RANGE)


def synthesize_username(
    display_name: Optional[str], email: str, suffix: int
) -> str:
    """Derive a candidate username from a display name plus a numeric suffix."""
    base = _WHITESPACE.sub("", display_name or "").lower()
    if not base:
        base = _WHITESPACE.sub("", email.split("@", 1)[0]).lower()
    tail = str(suffix)
    candidate = base[: USERNAME_MAX_LENGTH - len(tail)] + tail
    return candidate.ljust(USERNAME_MIN_LENGTH, "0")


class IdentityReconciler:
    """Maps a federated profile onto exactly one local user.

    Resolution order, first match wins: an existing link on
    ``(provider, subject_id)``, then an account with the same email (linked in
    place), then a freshly provisioned account.
    """

    def __init__(
        self,
        store: CredentialStore,
        *,
        max_username_attempts: int = 5,
        suffix_source: Callable[[], int] = _random_suffix,
    ) -> None:
        self.store = store
        self.max_username_attempts = max_username_attempts
        self._suffix_source = suffix_source

    def reconcile(self, profile: FederatedProfile) -> Reconciliation:
        user = self.store.get_user_by_provider(profile.provider, profile.subject_id)
        if user:
            return Reconciliation(user=user, outcome="existing")

        user = self.store.get_user_by_email(profile.email)
        if user:
            linked = self._link(user, profile)
            if linked:
                return Reconciliation(user=linked, outcome="linked")

        return Reconciliation(user=self._provision(profile), outcome="provisioned")

    def _link(self, user: User, profile: FederatedProfile) -> Optional[User]:
        if user.federated_provider and (
            user.federated_provider != profile.provider
            or user.federated_subject_id != profile.subject_id
        ):
            logger.warning(
                "federated_identity_replaced",
                user_id=user.id,
                previous_provider=user.federated_provider,
                provider=profile.provider,
            )
        try:
            linked = self.store.link_federated_identity(
                user.id, profile.provider, profile.subject_id, profile.avatar_url
            )
        except ConstraintViolation as exc:
            raise AccountConflictError(
                "federated identity is already linked to another account",
                detail={"field": exc.field},
            ) from exc
        if linked:
            logger.info(
                "federated_identity_linked", user_id=linked.id, provider=profile.provider
            )
        return linked

    def _provision(self, profile: FederatedProfile) -> User:
        for attempt in range(1, self.max_username_attempts + 1):
            username = synthesize_username(
                profile.display_name, profile.email, self._suffix_source()
            )
            if self.store.get_user_by_username(username):
                logger.info("username_candidate_taken", attempt=attempt)
                continue
            try:
                user = self.store.create_user(
                    profile.email,
                    username,
                    federated_provider=profile.provider,
                    federated_subject_id=profile.subject_id,
                    avatar_url=profile.avatar_url,
                )
            except ConstraintViolation as exc:
                if exc.field == "username":
                    logger.info("username_candidate_taken", attempt=attempt)
                    continue
                raise AccountConflictError(
                    "an account with this identity already exists",
                    detail={"field": exc.field},
                ) from exc
            logger.info(
                "federated_user_provisioned", user_id=user.id, provider=profile.provider
            )
            return user
        raise UsernameUnavailableError(
            "could not allocate a unique username",
            detail={"attempts": self.max_username_attempts},
        )
