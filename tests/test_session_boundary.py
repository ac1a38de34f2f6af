"""Tests for request admission by bearer token."""

from datetime import datetime, timedelta, timezone

import pytest

from mixtape.service.errors import UnauthenticatedError
from mixtape.service.session import (
    INVALID_TOKEN,
    MALFORMED_HEADER,
    MISSING_TOKEN,
    Bound,
    SessionBoundary,
    Unbound,
    extract_bearer,
)
from mixtape.service.tokens import TokenIssuer

SECRET = "Test-Secret-Key_for-Automation-Only-987654321!"


class FakeClock:
    def __init__(self):
        self.now = datetime(2026, 1, 1, tzinfo=timezone.utc)

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def issuer(clock):
    return TokenIssuer(SECRET, access_ttl=timedelta(minutes=5), clock=clock)


@pytest.fixture
def boundary(issuer):
    return SessionBoundary(issuer)


@pytest.mark.parametrize(
    "header, expected",
    [
        ("Bearer abc", "abc"),
        ("bearer   abc ", "abc"),
        ("Basic abc", None),
        ("Bearer", None),
        ("abc", None),
        (None, None),
    ],
)
def test_extract_bearer(header, expected):
    assert extract_bearer(header) == expected


def test_valid_token_binds_principal(boundary, issuer):
    pair = issuer.issue_pair("user-1")
    result = boundary.admit(f"Bearer {pair.access_token}")
    assert isinstance(result, Bound)
    assert result.is_bound
    assert result.principal.user_id == "user-1"
    assert result.principal.user is None


@pytest.mark.parametrize(
    "header, reason",
    [
        (None, MISSING_TOKEN),
        ("", MISSING_TOKEN),
        ("Token abc", MALFORMED_HEADER),
        ("Bearer not-a-jwt", INVALID_TOKEN),
    ],
)
def test_rejections_are_unbound_with_reason(boundary, header, reason):
    result = boundary.admit(header)
    assert isinstance(result, Unbound)
    assert not result.is_bound
    assert result.principal is None
    assert result.reason == reason


def test_expired_token_is_unbound(boundary, issuer, clock):
    pair = issuer.issue_pair("user-1")
    clock.now += timedelta(minutes=6)
    assert boundary.admit(f"Bearer {pair.access_token}") == Unbound(INVALID_TOKEN)


def test_refresh_token_is_not_admitted(boundary, issuer):
    pair = issuer.issue_pair("user-1")
    assert boundary.admit(f"Bearer {pair.refresh_token}") == Unbound(INVALID_TOKEN)


def test_require_raises_unauthenticated(boundary):
    with pytest.raises(UnauthenticatedError) as excinfo:
        boundary.require(None)
    assert excinfo.value.status_code == 401
    assert excinfo.value.detail == {"reason": MISSING_TOKEN}


def test_require_returns_principal(boundary, issuer):
    pair = issuer.issue_pair("user-1")
    assert boundary.require(f"Bearer {pair.access_token}").user_id == "user-1"
