from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from functools import lru_cache

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from toolgostar import audit
from toolgostar.auth.models import User, utcnow
from toolgostar.auth.schemas import (
    AuthStatusRead,
    LoginRead,
    LoginRequest,
    PasswordChange,
    ProfileUpdate,
    RefreshRequest,
    TokenRead,
    UserCreate,
    UserRead,
    UserUpdate,
    normalize_email,
)
from toolgostar.core.config import get_settings
from toolgostar.core.errors import (
    AuthenticationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from toolgostar.platform.security.context import Principal
from toolgostar.platform.security.passwords import hash_password, verify_password
from toolgostar.platform.security.tokens import TokenService, get_token_service


logger = logging.getLogger("toolgostar.auth")


@lru_cache(maxsize=4)
def _unknown_user_hash(rounds: int) -> str:
    return hash_password("unknown-user-placeholder", rounds=rounds)


def find_user_by_email(session: Session, email: str) -> User | None:
    return session.scalar(select(User).where(User.email == normalize_email(email)))


def get_user(session: Session, user_id: uuid.UUID | str) -> User:
    try:
        resolved = user_id if isinstance(user_id, uuid.UUID) else uuid.UUID(str(user_id))
    except ValueError as exc:
        raise NotFoundError("User not found", code="USER_NOT_FOUND") from exc
    user = session.scalar(select(User).where(User.id == resolved))
    if user is None:
        raise NotFoundError("User not found", code="USER_NOT_FOUND")
    return user


def hash_new_password(password: str, field: str) -> str:
    try:
        return hash_password(password)
    except ValueError as exc:
        raise ValidationError.for_field(field, str(exc)) from exc


def get_assignable_user(session: Session, user_id: uuid.UUID) -> User:
    user = get_user(session, user_id)
    if not user.is_active:
        raise ValidationError.for_field("assigned_to", "user is deactivated")
    return user


class AuthService:
    def __init__(self, token_service_factory: Callable[[], TokenService] = get_token_service) -> None:
        self._token_service_factory = token_service_factory

    def login(self, session: Session, dto: LoginRequest) -> LoginRead:
        user = find_user_by_email(session, dto.email)
        if user is None:
            # Unknown addresses pay the same bcrypt cost as a wrong password.
            verify_password(dto.password, _unknown_user_hash(get_settings().bcrypt_rounds))
        if user is None or not verify_password(dto.password, user.password_hash):
            logger.info("auth.login.failed", extra={"error_code": "INVALID_CREDENTIALS"})
            raise AuthenticationError("Invalid email or password", code="INVALID_CREDENTIALS")
        if not user.is_active:
            logger.info("auth.login.failed", extra={"error_code": "ACCOUNT_DEACTIVATED", "entity_id": str(user.id)})
            raise AuthenticationError("Account is deactivated", code="ACCOUNT_DEACTIVATED")

        user.last_login_at = utcnow()
        session.commit()
        session.refresh(user)

        token_service = self._token_service_factory()
        pair = token_service.issue(str(user.id), user.role, email=user.email)
        logger.info("auth.login.succeeded", extra={"entity_id": str(user.id)})
        return LoginRead(
            access_token=pair.access.token,
            expires_in=int(token_service.access_ttl.total_seconds()),
            expires_at=pair.access.expires_at,
            refresh_token=pair.refresh.token if pair.refresh else None,
            refresh_expires_at=pair.refresh.expires_at if pair.refresh else None,
            user=UserRead.model_validate(user),
        )

    def refresh(self, dto: RefreshRequest) -> TokenRead:
        # The identity store is not consulted again here.
        token_service = self._token_service_factory()
        access = token_service.refresh(dto.refresh_token)
        return TokenRead(
            access_token=access.token,
            expires_in=int(token_service.access_ttl.total_seconds()),
            expires_at=access.expires_at,
        )

    def status(self, token: str | None) -> AuthStatusRead:
        if not token:
            return AuthStatusRead(authenticated=False)
        try:
            principal = self._token_service_factory().verify(token)
        except AuthenticationError:
            return AuthStatusRead(authenticated=False)
        return AuthStatusRead(
            authenticated=True,
            user_id=principal.subject_id,
            role=principal.role,
            expires_at=principal.expires_at,
        )

    def get_profile(self, session: Session, principal: Principal) -> UserRead:
        return UserRead.model_validate(get_user(session, principal.subject_id))

    def update_profile(self, session: Session, principal: Principal, dto: ProfileUpdate) -> UserRead:
        user = get_user(session, principal.subject_id)
        before = UserRead.model_validate(user).model_dump(mode="json")
        changes = dto.model_dump(exclude_unset=True, exclude_none=True)

        new_email = changes.get("email")
        if new_email and new_email != user.email:
            existing = find_user_by_email(session, new_email)
            if existing is not None and existing.id != user.id:
                raise ConflictError("Email is already in use", code="EMAIL_IN_USE")

        for field, value in changes.items():
            setattr(user, field, value)
        user.row_version = user.row_version + 1
        try:
            session.commit()
        except IntegrityError as exc:
            session.rollback()
            raise ConflictError("Email is already in use", code="EMAIL_IN_USE") from exc
        session.refresh(user)

        after = UserRead.model_validate(user)
        audit.record(
            actor_user_id=principal.subject_id,
            entity_type="auth.user",
            entity_id=str(user.id),
            action="profile_update",
            before=before,
            after=after.model_dump(mode="json"),
        )
        return after

    def change_password(self, session: Session, principal: Principal, dto: PasswordChange) -> None:
        user = get_user(session, principal.subject_id)
        if not verify_password(dto.current_password, user.password_hash):
            raise ValidationError.for_field("current_password", "current password is incorrect")
        user.password_hash = hash_new_password(dto.new_password, "new_password")
        user.row_version = user.row_version + 1
        session.commit()
        audit.record(
            actor_user_id=principal.subject_id,
            entity_type="auth.user",
            entity_id=str(user.id),
            action="password_change",
            before=None,
            after=None,
        )
        logger.info("auth.password_changed", extra={"entity_id": str(user.id)})


class UserAdminService:
    entity_type = "auth.user"

    def create_user(self, session: Session, actor: Principal | None, dto: UserCreate) -> UserRead:
        if find_user_by_email(session, dto.email) is not None:
            raise ConflictError("Email is already in use", code="EMAIL_IN_USE")
        user = User(
            email=dto.email,
            password_hash=hash_new_password(dto.password, "password"),
            first_name=dto.first_name.strip(),
            last_name=dto.last_name.strip(),
            role=dto.role.value,
            is_active=True,
        )
        session.add(user)
        try:
            session.commit()
        except IntegrityError as exc:
            session.rollback()
            raise ConflictError("Email is already in use", code="EMAIL_IN_USE") from exc
        session.refresh(user)

        created = UserRead.model_validate(user)
        audit.record(
            actor_user_id=actor.subject_id if actor else "system",
            entity_type=self.entity_type,
            entity_id=str(user.id),
            action="create",
            before=None,
            after=created.model_dump(mode="json"),
        )
        return created

    def list_users(self, session: Session, include_inactive: bool = True) -> list[UserRead]:
        stmt = select(User).order_by(User.created_at.asc())
        if not include_inactive:
            stmt = stmt.where(User.is_active.is_(True))
        return [UserRead.model_validate(row) for row in session.scalars(stmt).all()]

    def update_user(self, session: Session, actor: Principal, user_id: uuid.UUID, dto: UserUpdate) -> UserRead:
        user = get_user(session, user_id)
        if str(user.id) == actor.subject_id and dto.is_active is False:
            raise ValidationError.for_field("is_active", "you cannot deactivate your own account")

        before = UserRead.model_validate(user).model_dump(mode="json")
        changes = dto.model_dump(exclude_unset=True, exclude_none=True)
        if "role" in changes:
            changes["role"] = dto.role.value if dto.role is not None else user.role
        for field, value in changes.items():
            setattr(user, field, value)
        user.row_version = user.row_version + 1
        session.commit()
        session.refresh(user)

        after = UserRead.model_validate(user)
        audit.record(
            actor_user_id=actor.subject_id,
            entity_type=self.entity_type,
            entity_id=str(user.id),
            action="update",
            before=before,
            after=after.model_dump(mode="json"),
        )
        return after

    def count_admins(self, session: Session) -> int:
        return int(session.scalar(select(func.count()).select_from(User).where(User.role == "admin")) or 0)


auth_service = AuthService()
user_admin_service = UserAdminService()
