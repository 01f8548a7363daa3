from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt

from toolgostar.core.errors import ExpiredCredential, InvalidSignature, MalformedCredential
from toolgostar.platform.security.permissions import Role
from toolgostar.platform.security.tokens import ACCESS_TOKEN, REFRESH_TOKEN, TokenService


SECRET = "unit-test-secret-with-more-than-32-characters"


class FakeClock:
    def __init__(self) -> None:
        self.now = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now = self.now + delta


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def service(clock: FakeClock) -> TokenService:
    return TokenService(SECRET, access_ttl=timedelta(hours=2), refresh_ttl=timedelta(days=7), clock=clock)


def test_issued_access_token_verifies_to_principal(service: TokenService, clock: FakeClock) -> None:
    pair = service.issue("user-1", Role.EDITOR, email="editor@toolgostar.com")

    principal = service.verify(pair.access.token)

    assert principal.subject_id == "user-1"
    assert principal.role is Role.EDITOR
    assert principal.email == "editor@toolgostar.com"
    assert principal.token_type == ACCESS_TOKEN
    assert principal.expires_at == clock.now + timedelta(hours=2)
    assert pair.refresh is not None
    assert pair.refresh.expires_at == clock.now + timedelta(days=7)


def test_token_expires_after_access_ttl(service: TokenService, clock: FakeClock) -> None:
    token = service.issue("user-1", Role.VIEWER).access.token

    clock.advance(timedelta(hours=1, minutes=59))
    assert service.verify(token).subject_id == "user-1"

    clock.advance(timedelta(minutes=1))
    with pytest.raises(ExpiredCredential):
        service.verify(token)


def test_token_signed_with_other_secret_is_rejected(service: TokenService, clock: FakeClock) -> None:
    foreign = TokenService("another-secret-that-is-also-long-enough", clock=clock)
    token = foreign.issue("user-1", Role.ADMIN).access.token

    with pytest.raises(InvalidSignature):
        service.verify(token)


def test_tampered_payload_fails_signature_check(service: TokenService) -> None:
    token = service.issue("user-1", Role.VIEWER).access.token
    header, _payload, signature = token.split(".")
    forged_claims = jwt.get_unverified_claims(token) | {"role": "admin"}
    forged_payload = jwt.encode(forged_claims, "attacker", algorithm="HS256").split(".")[1]

    with pytest.raises(InvalidSignature):
        service.verify(f"{header}.{forged_payload}.{signature}")


def test_expired_and_tampered_token_reports_expired(service: TokenService, clock: FakeClock) -> None:
    token = service.issue("user-1", Role.EDITOR).access.token
    tampered = token[:-4] + ("AAAA" if not token.endswith("AAAA") else "BBBB")

    clock.advance(timedelta(hours=3))

    with pytest.raises(ExpiredCredential):
        service.verify(tampered)


@pytest.mark.parametrize("token", ["", "not-a-jwt", "a.b", "abc.def.ghi"])
def test_garbage_tokens_are_malformed(service: TokenService, token: str) -> None:
    with pytest.raises(MalformedCredential):
        service.verify(token)


def test_refresh_token_is_not_accepted_as_access(service: TokenService) -> None:
    pair = service.issue("user-1", Role.EDITOR)
    assert pair.refresh is not None

    with pytest.raises(MalformedCredential):
        service.verify(pair.refresh.token)
    assert service.verify(pair.refresh.token, expected_type=REFRESH_TOKEN).subject_id == "user-1"


def test_refresh_issues_new_access_token(service: TokenService, clock: FakeClock) -> None:
    pair = service.issue("user-1", Role.ADMIN, email="admin@toolgostar.com")
    assert pair.refresh is not None

    clock.advance(timedelta(days=1))
    access = service.refresh(pair.refresh.token)

    principal = service.verify(access.token)
    assert principal.role is Role.ADMIN
    assert principal.email == "admin@toolgostar.com"
    assert access.expires_at == clock.now + timedelta(hours=2)


def test_refresh_rejects_access_token(service: TokenService) -> None:
    access = service.issue("user-1", Role.ADMIN).access.token

    with pytest.raises(MalformedCredential):
        service.refresh(access)


def test_token_for_other_audience_is_malformed(service: TokenService, clock: FakeClock) -> None:
    other = TokenService(SECRET, audience="someone-else", clock=clock)
    token = other.issue("user-1", Role.ADMIN).access.token

    with pytest.raises(MalformedCredential):
        service.verify(token)


def test_unknown_role_claim_is_malformed(service: TokenService, clock: FakeClock) -> None:
    claims = {
        "sub": "user-1",
        "role": "superuser",
        "typ": ACCESS_TOKEN,
        "iat": int(clock.now.timestamp()),
        "exp": int((clock.now + timedelta(hours=1)).timestamp()),
        "iss": "toolgostar-api",
        "aud": "toolgostar-admin",
    }
    token = jwt.encode(claims, SECRET, algorithm="HS256")

    with pytest.raises(MalformedCredential):
        service.verify(token)


@pytest.mark.parametrize("exp", [1e20, -1e20])
def test_out_of_range_expiry_is_malformed(service: TokenService, exp: float) -> None:
    token = jwt.encode({"sub": "user-1", "role": "admin", "typ": ACCESS_TOKEN, "exp": exp}, "any-secret", algorithm="HS256")

    with pytest.raises(MalformedCredential):
        service.verify(token)


def test_out_of_range_issued_at_is_malformed(service: TokenService, clock: FakeClock) -> None:
    claims = {
        "sub": "user-1",
        "role": "admin",
        "typ": ACCESS_TOKEN,
        "iat": 1e20,
        "exp": int((clock.now + timedelta(hours=1)).timestamp()),
        "iss": "toolgostar-api",
        "aud": "toolgostar-admin",
    }
    token = jwt.encode(claims, SECRET, algorithm="HS256")

    with pytest.raises(MalformedCredential):
        service.verify(token)
