from __future__ import annotations

import base64
import hashlib
import hmac
import json
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

from mixtape.config import Settings
from mixtape.logging import get_logger
from mixtape.service.errors import InvalidTokenError

ACCESS = "access"
REFRESH = "refresh"

logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    access_expires_at: datetime
    refresh_expires_at: datetime
    token_type: str = "bearer"


class TokenIssuer:
    """Issues and verifies HS256-signed access and refresh tokens.

    Tokens are self-contained: verification needs only the signing secret and
    the clock, never the user store.
    """

    def __init__(
        self,
        secret: str,
        *,
        issuer: str = "mixtape",
        audience: str = "mixtape-clients",
        access_ttl: timedelta = timedelta(days=7),
        refresh_ttl: timedelta = timedelta(days=30),
        leeway: timedelta = timedelta(0),
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if not secret:
            raise ValueError("token signing secret must not be empty")
        self._secret = secret.encode()
        self.issuer = issuer
        self.audience = audience
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl
        self.leeway = leeway
        self._clock = clock

    @classmethod
    def from_settings(
        cls, settings: Settings, *, clock: Callable[[], datetime] = _utcnow
    ) -> "TokenIssuer":
        return cls(
            settings.jwt_secret or "",
            issuer=settings.jwt_issuer,
            audience=settings.jwt_audience,
            access_ttl=timedelta(minutes=settings.access_token_ttl_minutes),
            refresh_ttl=timedelta(minutes=settings.refresh_token_ttl_minutes),
            leeway=timedelta(seconds=settings.jwt_leeway_seconds),
            clock=clock,
        )

    def issue_pair(self, user_id: str) -> TokenPair:
        now = self._clock()
        access_exp = now + self.access_ttl
        refresh_exp = now + self.refresh_ttl
        return TokenPair(
            access_token=self._encode_jwt(self._claims(user_id, ACCESS, now, access_exp)),
            refresh_token=self._encode_jwt(
                self._claims(user_id, REFRESH, now, refresh_exp)
            ),
            access_expires_at=access_exp,
            refresh_expires_at=refresh_exp,
        )

    def verify(self, token: str, *, token_type: str = ACCESS) -> str:
        """Return the user id a valid token was issued for.

        Every failure raises the same ``InvalidTokenError``; the cause is only
        logged.
        """
        payload = self._decode_jwt(token)
        if payload is None:
            raise InvalidTokenError()
        if payload.get("token_type") != token_type:
            logger.info("jwt_wrong_token_type", expected=token_type)
            raise InvalidTokenError()
        subject = payload.get("sub")
        if not isinstance(subject, str) or not subject:
            logger.info("jwt_missing_subject")
            raise InvalidTokenError()
        return subject

    def refresh(self, refresh_token: str) -> TokenPair:
        """Mint a fresh pair for the subject of a valid refresh token."""
        return self.issue_pair(self.verify(refresh_token, token_type=REFRESH))

    def _claims(
        self, user_id: str, token_type: str, issued_at: datetime, expires_at: datetime
    ) -> dict[str, Any]:
        return {
            "iss": self.issuer,
            "aud": self.audience,
            "sub": user_id,
            "token_type": token_type,
            "jti": str(uuid.uuid4()),
            "iat": int(issued_at.timestamp()),
            "exp": int(expires_at.timestamp()),
        }

    def _encode_segment(self, data: bytes) -> str:
        return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")

    def _decode_segment(self, segment: str) -> bytes:
        padding = "=" * ((4 - len(segment) % 4) % 4)
        return base64.urlsafe_b64decode(segment + padding)

    def _sign(self, signing_input: str) -> str:
        return self._encode_segment(
            hmac.new(self._secret, signing_input.encode(), hashlib.sha256).digest()
        )

    def _encode_jwt(self, payload: dict[str, Any]) -> str:
        header = {"alg": "HS256", "typ": "JWT"}
        header_enc = self._encode_segment(
            json.dumps(header, separators=(",", ":")).encode()
        )
        payload_enc = self._encode_segment(
            json.dumps(payload, separators=(",", ":")).encode()
        )
        signing_input = f"{header_enc}.{payload_enc}"
        return f"{signing_input}.{self._sign(signing_input)}"

    def _decode_jwt(self, token: str) -> Optional[dict[str, Any]]:
        try:
            header_b64, payload_b64, sig_b64 = token.split(".")
        except (AttributeError, ValueError):
            logger.info("jwt_malformed")
            return None

        # Pin the algorithm so a forged header cannot downgrade verification
        try:
            header = json.loads(self._decode_segment(header_b64))
        except ValueError:
            logger.warning("jwt_header_decode_failed")
            return None
        if not isinstance(header, dict) or header.get("alg") != "HS256":
            logger.warning(
                "jwt_invalid_algorithm",
                alg=header.get("alg") if isinstance(header, dict) else None,
            )
            return None

        expected_sig = self._sign(f"{header_b64}.{payload_b64}")
        if not hmac.compare_digest(expected_sig.encode(), sig_b64.encode()):
            logger.info("jwt_signature_mismatch")
            return None
        try:
            payload = json.loads(self._decode_segment(payload_b64))
        except ValueError as exc:
            logger.warning("jwt_payload_decode_failed", error=str(exc))
            return None
        if not isinstance(payload, dict):
            return None
        if payload.get("iss") != self.issuer:
            logger.info("jwt_issuer_mismatch")
            return None
        aud = payload.get("aud")
        valid_aud = False
        if isinstance(aud, str):
            valid_aud = aud == self.audience
        elif isinstance(aud, list):
            valid_aud = self.audience in aud
        if not valid_aud:
            logger.info("jwt_audience_mismatch")
            return None
        exp = payload.get("exp")
        if not exp:
            return None
        try:
            exp_ts = float(exp)
        except (TypeError, ValueError):
            return None
        now_ts = self._clock().timestamp()
        if exp_ts <= now_ts - self.leeway.total_seconds():
            logger.info("jwt_expired")
            return None
        return payload
