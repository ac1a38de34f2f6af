from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar, Optional, Union

from mixtape.logging import get_logger
from mixtape.service.errors import InvalidTokenError, UnauthenticatedError
from mixtape.service.tokens import ACCESS, TokenIssuer
from mixtape.storage.models import User

MISSING_TOKEN = "missing_token"
MALFORMED_HEADER = "malformed_header"
INVALID_TOKEN = "invalid_token"

logger = get_logger(__name__)


@dataclass(frozen=True)
class Principal:
    """The authenticated identity resolved for a request."""

    user_id: str
    user: Optional[User] = None


@dataclass(frozen=True)
class Bound:
    principal: Principal
    is_bound: ClassVar[bool] = True


@dataclass(frozen=True)
class Unbound:
    reason: str
    is_bound: ClassVar[bool] = False
    principal: ClassVar[None] = None


PrincipalResult = Union[Bound, Unbound]


def extract_bearer(header: Optional[str]) -> Optional[str]:
    if not header:
        return None
    scheme, _, token = header.strip().partition(" ")
    if scheme.lower() != "bearer":
        return None
    token = token.strip()
    return token or None


class SessionBoundary:
    """Admits requests by verifying the bearer access token.

    Only the token issuer is consulted; a verified token binds its subject as
    the request principal without touching the user store.
    """

    def __init__(self, tokens: TokenIssuer) -> None:
        self.tokens = tokens

    def admit(self, authorization: Optional[str]) -> PrincipalResult:
        if not authorization or not authorization.strip():
            return Unbound(MISSING_TOKEN)
        token = extract_bearer(authorization)
        if token is None:
            return Unbound(MALFORMED_HEADER)
        try:
            user_id = self.tokens.verify(token, token_type=ACCESS)
        except InvalidTokenError:
            return Unbound(INVALID_TOKEN)
        return Bound(Principal(user_id=user_id))

    def require(self, authorization: Optional[str]) -> Principal:
        result = self.admit(authorization)
        if isinstance(result, Unbound):
            logger.info("request_unauthenticated", reason=result.reason)
            raise UnauthenticatedError(detail={"reason": result.reason})
        return result.principal
