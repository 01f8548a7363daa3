from __future__ import annotations

import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from jose import JWTError, jwt
from jose.exceptions import JWTClaimsError

from toolgostar.core.config import Settings, get_settings
from toolgostar.core.errors import ExpiredCredential, InvalidSignature, MalformedCredential
from toolgostar.platform.security.context import Principal
from toolgostar.platform.security.permissions import Role


ACCESS_TOKEN = "access"
REFRESH_TOKEN = "refresh"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class IssuedToken:
    token: str
    token_type: str
    expires_at: datetime


@dataclass(frozen=True, slots=True)
class TokenPair:
    access: IssuedToken
    refresh: IssuedToken | None


class TokenService:
    """Issues and verifies stateless HS256 credentials.

    Verification never touches the database: a credential stays valid for its whole
    lifetime even if the subject is deactivated or changes role in the meantime.
    Logging out is the client discarding its tokens.
    """

    def __init__(
        self,
        secret: str,
        *,
        algorithm: str = "HS256",
        issuer: str = "toolgostar-api",
        audience: str = "toolgostar-admin",
        access_ttl: timedelta = timedelta(hours=2),
        refresh_ttl: timedelta = timedelta(days=7),
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._secret = secret
        self._algorithm = algorithm
        self._issuer = issuer
        self._audience = audience
        self._access_ttl = access_ttl
        self._refresh_ttl = refresh_ttl
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings, clock: Callable[[], datetime] = _utcnow) -> TokenService:
        return cls(
            settings.jwt_secret,
            algorithm=settings.jwt_algorithm,
            issuer=settings.jwt_issuer,
            audience=settings.jwt_audience,
            access_ttl=timedelta(minutes=settings.access_token_expire_minutes),
            refresh_ttl=timedelta(days=settings.refresh_token_expire_days),
            clock=clock,
        )

    @property
    def access_ttl(self) -> timedelta:
        return self._access_ttl

    def issue(
        self,
        subject_id: str,
        role: Role | str,
        *,
        email: str | None = None,
        include_refresh: bool = True,
    ) -> TokenPair:
        access = self._encode(subject_id, Role(role), ACCESS_TOKEN, self._access_ttl, email)
        refresh = self._encode(subject_id, Role(role), REFRESH_TOKEN, self._refresh_ttl, email) if include_refresh else None
        return TokenPair(access=access, refresh=refresh)

    def verify(self, token: str, expected_type: str = ACCESS_TOKEN) -> Principal:
        try:
            unverified = jwt.get_unverified_claims(token)
        except JWTError as exc:
            raise MalformedCredential("Token could not be parsed") from exc

        expires_at = self._timestamp_claim(unverified, "exp")
        # Expiry is decided before the signature so an expired token reports as expired whatever its signature.
        if self._clock() >= expires_at:
            raise ExpiredCredential()

        try:
            claims = jwt.decode(
                token,
                self._secret,
                algorithms=[self._algorithm],
                audience=self._audience,
                issuer=self._issuer,
                options={"verify_exp": False},
            )
        except JWTClaimsError as exc:
            raise MalformedCredential("Token claims are not valid for this service") from exc
        except JWTError as exc:
            raise InvalidSignature() from exc

        if claims.get("typ") != expected_type:
            raise MalformedCredential(f"Expected a {expected_type} token")
        subject_id = claims.get("sub")
        if not isinstance(subject_id, str) or not subject_id:
            raise MalformedCredential("Token has no subject")
        try:
            role = Role(claims.get("role"))
        except ValueError as exc:
            raise MalformedCredential("Token carries an unknown role") from exc

        email = claims.get("email")
        return Principal(
            subject_id=subject_id,
            role=role,
            issued_at=self._timestamp_claim(claims, "iat"),
            expires_at=expires_at,
            token_type=expected_type,
            email=email if isinstance(email, str) else None,
        )

    def refresh(self, refresh_token: str) -> IssuedToken:
        principal = self.verify(refresh_token, expected_type=REFRESH_TOKEN)
        return self._encode(principal.subject_id, principal.role, ACCESS_TOKEN, self._access_ttl, principal.email)

    def _encode(self, subject_id: str, role: Role, token_type: str, ttl: timedelta, email: str | None) -> IssuedToken:
        issued_at = self._clock().replace(microsecond=0)
        expires_at = issued_at + ttl
        claims: dict[str, Any] = {
            "sub": subject_id,
            "role": role.value,
            "typ": token_type,
            "iat": int(issued_at.timestamp()),
            "exp": int(expires_at.timestamp()),
            "iss": self._issuer,
            "aud": self._audience,
            "jti": uuid.uuid4().hex,
        }
        if email:
            claims["email"] = email
        token = jwt.encode(claims, self._secret, algorithm=self._algorithm)
        return IssuedToken(token=token, token_type=token_type, expires_at=expires_at)

    @staticmethod
    def _timestamp_claim(claims: dict[str, Any], name: str) -> datetime:
        value = claims.get(name)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise MalformedCredential(f"Token has no valid '{name}' claim")
        try:
            return datetime.fromtimestamp(value, tz=timezone.utc)
        except (OverflowError, ValueError, OSError) as exc:
            raise MalformedCredential(f"Token has an out-of-range '{name}' claim") from exc


def get_token_service() -> TokenService:
    return TokenService.from_settings(get_settings())
