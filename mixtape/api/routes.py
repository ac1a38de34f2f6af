from __future__ import annotations

import math
from typing import Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Header, Path, Query
from fastapi.responses import RedirectResponse
from pydantic import BaseModel

from mixtape.api.schemas import (
    AuthResponse,
    Envelope,
    LoginRequest,
    MessageResponse,
    Pagination,
    RegisterRequest,
    TokenPairResponse,
    TokenRefreshRequest,
    UpdateProfileRequest,
    UserListResponse,
    UserProfileResponse,
    UserResponse,
    UserView,
)
from mixtape.logging import get_logger
from mixtape.service.errors import AuthenticationError
from mixtape.service.runtime import get_runtime
from mixtape.service.session import Bound, Principal, PrincipalResult

logger = get_logger(__name__)

router = APIRouter(prefix="/api")

GOOGLE = "google"


def _ok(data: BaseModel) -> Envelope:
    return Envelope(status="ok", data=data.model_dump(by_alias=True, mode="json"))


async def require_principal(authorization: Optional[str] = Header(None)) -> Principal:
    """Required mode: reject the request unless a valid access token is presented."""
    return get_runtime().sessions.require(authorization)


async def optional_principal(
    authorization: Optional[str] = Header(None),
) -> PrincipalResult:
    """Optional mode: bind a principal when the token verifies, otherwise continue unbound."""
    return get_runtime().sessions.admit(authorization)


def _is_self(viewer: PrincipalResult, user_id: str) -> bool:
    return isinstance(viewer, Bound) and viewer.principal.user_id == user_id


# auth


@router.post("/auth/register", response_model=Envelope, status_code=201, tags=["auth"])
async def register(body: RegisterRequest):
    """Create a local account and return its first token pair.

    Raises:
        409: If the email or username is already taken
    """
    runtime = get_runtime()
    user, tokens = await runtime.auth.register(
        email=body.email, username=body.username, password=body.password
    )
    return _ok(
        AuthResponse(
            user=UserView.from_user(user),
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            token_type=tokens.token_type,
        )
    )


@router.post("/auth/login", response_model=Envelope, tags=["auth"])
async def login(body: LoginRequest):
    """Authenticate with email and password.

    Raises:
        401: If the credentials do not match an account
    """
    runtime = get_runtime()
    user, tokens = await runtime.auth.login(email=body.email, password=body.password)
    return _ok(
        AuthResponse(
            user=UserView.from_user(user),
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            token_type=tokens.token_type,
        )
    )


@router.post("/auth/refresh", response_model=Envelope, tags=["auth"])
async def refresh_tokens(body: TokenRefreshRequest):
    runtime = get_runtime()
    tokens = await runtime.auth.refresh(body.refresh_token)
    return _ok(
        TokenPairResponse(
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            token_type=tokens.token_type,
        )
    )


@router.post("/auth/logout", response_model=Envelope, tags=["auth"])
async def logout():
    # Tokens are stateless; the client discards its pair
    return _ok(MessageResponse(message="Logged out successfully"))


@router.get("/auth/me", response_model=Envelope, tags=["auth"])
async def get_current_user(principal: Principal = Depends(require_principal)):
    runtime = get_runtime()
    user = runtime.auth.current_user(principal)
    return _ok(UserResponse(user=UserView.from_user(user)))


@router.get("/auth/google", tags=["auth"])
async def google_login():
    """Redirect the browser to the Google consent screen."""
    runtime = get_runtime()
    url = runtime.auth.start_federated_login(GOOGLE)
    return RedirectResponse(url, status_code=302)


@router.get("/auth/google/callback", tags=["auth"])
async def google_callback(
    code: Optional[str] = Query(None, max_length=2048),
    state: Optional[str] = Query(None, max_length=256),
    error: Optional[str] = Query(None, max_length=256),
):
    """Finish the Google flow and hand the token pair to the front end."""
    runtime = get_runtime()
    runtime.auth.oauth.ensure_configured(GOOGLE)
    if error or not code:
        logger.warning("oauth_callback_without_code", provider=GOOGLE, error=error)
        raise AuthenticationError(
            "oauth authorization was not granted", detail={"error": error}
        )
    user, tokens, _ = await runtime.auth.complete_federated_login(GOOGLE, code, state)
    query = urlencode(
        {"accessToken": tokens.access_token, "refreshToken": tokens.refresh_token}
    )
    return RedirectResponse(
        f"{runtime.settings.frontend_url}/auth/callback?{query}", status_code=302
    )


# users


@router.get("/users", response_model=Envelope, tags=["users"])
async def list_users(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    search: Optional[str] = Query(None, max_length=100),
):
    runtime = get_runtime()
    users, total = runtime.users.search(page=page, limit=limit, search=search)
    return _ok(
        UserListResponse(
            users=[UserView.from_user(u) for u in users],
            pagination=Pagination(
                page=page, limit=limit, total=total, pages=math.ceil(total / limit)
            ),
        )
    )


@router.get("/users/{username}", response_model=Envelope, tags=["users"])
async def get_user_by_username(
    username: str = Path(..., max_length=50),
    viewer: PrincipalResult = Depends(optional_principal),
):
    runtime = get_runtime()
    user = runtime.users.get_by_username(username)
    return _ok(
        UserProfileResponse(
            user=UserView.from_user(user), is_self=_is_self(viewer, user.id)
        )
    )


@router.get("/users/id/{user_id}", response_model=Envelope, tags=["users"])
async def get_user(
    user_id: str = Path(..., max_length=64),
    viewer: PrincipalResult = Depends(optional_principal),
):
    runtime = get_runtime()
    user = runtime.users.get(user_id)
    return _ok(
        UserProfileResponse(
            user=UserView.from_user(user), is_self=_is_self(viewer, user.id)
        )
    )


@router.put("/users/{user_id}", response_model=Envelope, tags=["users"])
async def update_user(
    body: UpdateProfileRequest,
    user_id: str = Path(..., max_length=64),
    principal: Principal = Depends(require_principal),
):
    """Update the caller's own bio or avatar.

    Raises:
        403: If the target is not the caller's own profile
    """
    runtime = get_runtime()
    user = runtime.users.update_profile(
        principal, user_id, bio=body.bio, avatar_url=body.avatar_url
    )
    return _ok(UserResponse(user=UserView.from_user(user)))


@router.delete("/users/{user_id}", response_model=Envelope, tags=["users"])
async def delete_user(
    user_id: str = Path(..., max_length=64),
    principal: Principal = Depends(require_principal),
):
    runtime = get_runtime()
    runtime.users.delete_account(principal, user_id)
    return _ok(MessageResponse(message="Account deleted successfully"))
