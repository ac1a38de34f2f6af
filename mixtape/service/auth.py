from __future__ import annotations

from typing import Tuple

from mixtape.logging import get_logger
from mixtape.service.errors import (
    AccountConflictError,
    DuplicateEmailError,
    DuplicateUsernameError,
    InvalidCredentialsError,
    InvalidTokenError,
    NotFoundError,
)
from mixtape.service.identity import IdentityReconciler, Outcome
from mixtape.service.oauth import OAuthClient
from mixtape.service.passwords import PasswordHasher
from mixtape.service.session import Principal
from mixtape.service.tokens import TokenIssuer, TokenPair
from mixtape.storage.base import CredentialStore
from mixtape.storage.errors import ConstraintViolation
from mixtape.storage.models import User, normalize_email

logger = get_logger(__name__)


class AuthService:
    """Password and federated authentication on top of the credential store."""

    def __init__(
        self,
        store: CredentialStore,
        hasher: PasswordHasher,
        tokens: TokenIssuer,
        reconciler: IdentityReconciler,
        oauth: OAuthClient,
    ) -> None:
        self.store = store
        self.hasher = hasher
        self.tokens = tokens
        self.reconciler = reconciler
        self.oauth = oauth
        self.logger = logger

    async def register(
        self, email: str, username: str, password: str
    ) -> Tuple[User, TokenPair]:
        email = normalize_email(email)
        existing = self.store.find_conflicting_user(email, username)
        if existing:
            if existing.email == email:
                raise DuplicateEmailError()
            raise DuplicateUsernameError()

        password_hash = await self.hasher.hash_async(password)
        try:
            user = self.store.create_user(email, username, password_hash)
        except ConstraintViolation as exc:
            # Lost a race with a concurrent registration
            self.logger.warning("register_constraint_violation", field=exc.field)
            if exc.field == "email":
                raise DuplicateEmailError() from exc
            if exc.field == "username":
                raise DuplicateUsernameError() from exc
            raise AccountConflictError(exc.message, detail=exc.detail) from exc

        tokens = self.tokens.issue_pair(user.id)
        self.logger.info("user_registered", user_id=user.id)
        return user, tokens

    async def login(self, email: str, password: str) -> Tuple[User, TokenPair]:
        user = self.store.get_user_by_email(email)
        if not user or not user.has_password:
            await self.hasher.dummy_verify_async(password)
            self.logger.info("user_login_failed", reason="unknown_account")
            raise InvalidCredentialsError()
        if not await self.hasher.verify_async(password, user.password_hash):
            self.logger.info("user_login_failed", user_id=user.id, reason="bad_password")
            raise InvalidCredentialsError()
        tokens = self.tokens.issue_pair(user.id)
        self.logger.info("user_login", user_id=user.id)
        return user, tokens

    async def refresh(self, refresh_token: str) -> TokenPair:
        try:
            tokens = self.tokens.refresh(refresh_token)
        except InvalidTokenError as exc:
            raise InvalidTokenError("Invalid refresh token") from exc
        self.logger.info("tokens_refreshed")
        return tokens

    def current_user(self, principal: Principal) -> User:
        user = principal.user or self.store.get_user(principal.user_id)
        if not user:
            raise NotFoundError("User not found")
        return user

    def start_federated_login(self, provider: str) -> str:
        return self.oauth.authorization_url(provider)

    async def complete_federated_login(
        self, provider: str, code: str, state: str | None
    ) -> Tuple[User, TokenPair, Outcome]:
        profile = await self.oauth.exchange_code(provider, code, state)
        result = self.reconciler.reconcile(profile)
        tokens = self.tokens.issue_pair(result.user.id)
        self.logger.info(
            "federated_login",
            user_id=result.user.id,
            provider=provider,
            outcome=result.outcome,
        )
        return result.user, tokens, result.outcome
