from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

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
)
from toolgostar.auth.service import auth_service, user_admin_service
from toolgostar.core.auth import extract_bearer_token, get_current_user
from toolgostar.core.database import get_db
from toolgostar.core.rate_limit import rate_limited
from toolgostar.core.rbac import require_permission
from toolgostar.core.responses import ApiResponse, ok
from toolgostar.platform.ratelimit.limiter import AUTH_SURFACE, GENERAL, LOGIN, REFRESH
from toolgostar.platform.security.context import Principal
from toolgostar.platform.security.permissions import Action, Resource


auth_router = APIRouter(prefix="/api/v1/auth", tags=["auth"])
users_router = APIRouter(prefix="/api/v1/users", tags=["users"])


@auth_router.post(
    "/login",
    response_model=ApiResponse[LoginRead],
    dependencies=[Depends(rate_limited(LOGIN, AUTH_SURFACE))],
)
def login(dto: LoginRequest, db: Session = Depends(get_db)) -> ApiResponse[LoginRead]:
    return ok(auth_service.login(db, dto), message="Login successful")


@auth_router.post(
    "/refresh",
    response_model=ApiResponse[TokenRead],
    dependencies=[Depends(rate_limited(REFRESH, AUTH_SURFACE))],
)
def refresh(dto: RefreshRequest) -> ApiResponse[TokenRead]:
    return ok(auth_service.refresh(dto), message="Token refreshed")


@auth_router.get(
    "/status",
    response_model=ApiResponse[AuthStatusRead],
    dependencies=[Depends(rate_limited(GENERAL))],
)
def auth_status(request: Request) -> ApiResponse[AuthStatusRead]:
    return ok(auth_service.status(extract_bearer_token(request)))


@auth_router.post("/logout", response_model=ApiResponse[None])
def logout(_user: Principal = Depends(get_current_user)) -> ApiResponse[None]:
    # Credentials are stateless; the client discards its tokens.
    return ok(None, message="Logout successful")


@auth_router.get("/profile", response_model=ApiResponse[UserRead])
def get_profile(
    db: Session = Depends(get_db),
    user: Principal = Depends(get_current_user),
) -> ApiResponse[UserRead]:
    return ok(auth_service.get_profile(db, user))


@auth_router.put("/profile", response_model=ApiResponse[UserRead])
def update_profile(
    dto: ProfileUpdate,
    db: Session = Depends(get_db),
    user: Principal = Depends(get_current_user),
) -> ApiResponse[UserRead]:
    return ok(auth_service.update_profile(db, user, dto), message="Profile updated")


@auth_router.put("/password", response_model=ApiResponse[None])
def change_password(
    dto: PasswordChange,
    db: Session = Depends(get_db),
    user: Principal = Depends(get_current_user),
) -> ApiResponse[None]:
    auth_service.change_password(db, user, dto)
    return ok(None, message="Password changed")


@users_router.get("", response_model=ApiResponse[list[UserRead]])
def list_users(
    include_inactive: bool = True,
    db: Session = Depends(get_db),
    _user: Principal = Depends(require_permission(Resource.USERS, Action.READ)),
) -> ApiResponse[list[UserRead]]:
    return ok(user_admin_service.list_users(db, include_inactive=include_inactive))


@users_router.post("", response_model=ApiResponse[UserRead], status_code=status.HTTP_201_CREATED)
def create_user(
    dto: UserCreate,
    db: Session = Depends(get_db),
    user: Principal = Depends(require_permission(Resource.USERS, Action.WRITE)),
) -> ApiResponse[UserRead]:
    return ok(user_admin_service.create_user(db, user, dto), message="User created")


@users_router.patch("/{user_id}", response_model=ApiResponse[UserRead])
def update_user(
    user_id: uuid.UUID,
    dto: UserUpdate,
    db: Session = Depends(get_db),
    user: Principal = Depends(require_permission(Resource.USERS, Action.WRITE)),
) -> ApiResponse[UserRead]:
    return ok(user_admin_service.update_user(db, user, user_id, dto), message="User updated")
