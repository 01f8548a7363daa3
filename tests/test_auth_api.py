from __future__ import annotations

import uuid
from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from toolgostar import audit
from toolgostar.auth.models import User
from toolgostar.auth.seed import seed_admin
from toolgostar.core.config import Settings, get_settings
from toolgostar.core.database import Base, get_db
from toolgostar.main import app
from toolgostar.platform.ratelimit.limiter import reset_rate_limiter
from toolgostar.platform.security.passwords import hash_password, verify_password
from toolgostar.platform.security.tokens import get_token_service


PASSWORD = "Filtr4tion-rocks"


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def setup_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("RATE_LIMIT_DISABLED", "true")
    monkeypatch.setenv("APP_ENV", "test")
    monkeypatch.setenv("BCRYPT_ROUNDS", "4")
    get_settings.cache_clear()
    reset_rate_limiter()
    audit.audit_entries.clear()
    yield
    get_settings.cache_clear()
    reset_rate_limiter()
    audit.audit_entries.clear()


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _create_user(db_session: Session, email: str, role: str = "editor", is_active: bool = True) -> User:
    user = User(
        email=email,
        password_hash=hash_password(PASSWORD, rounds=4),
        first_name="Amir",
        last_name="Tehrani",
        role=role,
        is_active=is_active,
    )
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


def _headers(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {get_token_service().issue(str(user.id), user.role).access.token}"}


def test_login_returns_token_pair(client: TestClient, db_session: Session) -> None:
    user = _create_user(db_session, "amir@toolgostar.com")

    response = client.post("/api/v1/auth/login", json={"email": "AMIR@toolgostar.com", "password": PASSWORD})

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["token_type"] == "bearer"
    assert data["expires_in"] == 120 * 60
    assert data["refresh_token"]
    assert data["user"]["id"] == str(user.id)
    assert "password_hash" not in data["user"]
    principal = get_token_service().verify(data["access_token"])
    assert principal.subject_id == str(user.id)
    db_session.refresh(user)
    assert user.last_login_at is not None


def test_login_failures_do_not_reveal_which_part_was_wrong(client: TestClient, db_session: Session) -> None:
    _create_user(db_session, "amir@toolgostar.com")

    wrong_password = client.post("/api/v1/auth/login", json={"email": "amir@toolgostar.com", "password": "nope"})
    unknown_user = client.post("/api/v1/auth/login", json={"email": "ghost@toolgostar.com", "password": PASSWORD})

    assert wrong_password.status_code == unknown_user.status_code == 401
    assert wrong_password.json()["error"] == unknown_user.json()["error"]


def test_unknown_email_still_runs_a_password_check(
    client: TestClient,
    db_session: Session,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    checked: list[str] = []

    def recording_verify(password: str, password_hash: str) -> bool:
        checked.append(password_hash)
        return verify_password(password, password_hash)

    monkeypatch.setattr("toolgostar.auth.service.verify_password", recording_verify)

    response = client.post("/api/v1/auth/login", json={"email": "ghost@toolgostar.com", "password": PASSWORD})

    assert response.status_code == 401
    assert response.json()["error"]["code"] == "INVALID_CREDENTIALS"
    assert len(checked) == 1
    assert checked[0].startswith("$2")


def test_deactivated_account_cannot_login(client: TestClient, db_session: Session) -> None:
    _create_user(db_session, "old@toolgostar.com", is_active=False)

    response = client.post("/api/v1/auth/login", json={"email": "old@toolgostar.com", "password": PASSWORD})

    assert response.status_code == 401
    assert response.json()["error"]["code"] == "ACCOUNT_DEACTIVATED"


def test_refresh_issues_access_token(client: TestClient, db_session: Session) -> None:
    user = _create_user(db_session, "amir@toolgostar.com")
    pair = get_token_service().issue(str(user.id), user.role)
    assert pair.refresh is not None

    response = client.post("/api/v1/auth/refresh", json={"refresh_token": pair.refresh.token})
    rejected = client.post("/api/v1/auth/refresh", json={"refresh_token": pair.access.token})

    assert response.status_code == 200
    assert get_token_service().verify(response.json()["data"]["access_token"]).subject_id == str(user.id)
    assert rejected.status_code == 401
    assert rejected.json()["error"]["code"] == "MALFORMED_TOKEN"


def test_status_reports_authentication_without_failing(client: TestClient, db_session: Session) -> None:
    user = _create_user(db_session, "amir@toolgostar.com", role="viewer")

    anonymous = client.get("/api/v1/auth/status")
    garbage = client.get("/api/v1/auth/status", headers={"Authorization": "Bearer garbage"})
    signed_in = client.get("/api/v1/auth/status", headers=_headers(user))

    assert anonymous.json()["data"]["authenticated"] is False
    assert garbage.status_code == 200
    assert garbage.json()["data"]["authenticated"] is False
    data = signed_in.json()["data"]
    assert data["authenticated"] is True
    assert data["user_id"] == str(user.id)
    assert data["role"] == "viewer"
    assert data["expires_at"]


def test_logout_requires_token(client: TestClient, db_session: Session) -> None:
    user = _create_user(db_session, "amir@toolgostar.com")

    assert client.post("/api/v1/auth/logout").status_code == 401
    assert client.post("/api/v1/auth/logout", headers=_headers(user)).status_code == 200


def test_profile_read_and_update(client: TestClient, db_session: Session) -> None:
    user = _create_user(db_session, "amir@toolgostar.com")
    _create_user(db_session, "taken@toolgostar.com")
    headers = _headers(user)

    assert client.get("/api/v1/auth/profile", headers=headers).json()["data"]["email"] == "amir@toolgostar.com"

    updated = client.put("/api/v1/auth/profile", json={"first_name": "Amirali"}, headers=headers)
    assert updated.status_code == 200
    assert updated.json()["data"]["first_name"] == "Amirali"
    assert any(entry["action"] == "profile_update" for entry in audit.audit_entries)

    conflict = client.put("/api/v1/auth/profile", json={"email": "taken@toolgostar.com"}, headers=headers)
    assert conflict.status_code == 409
    assert conflict.json()["error"]["code"] == "EMAIL_IN_USE"


def test_change_password(client: TestClient, db_session: Session) -> None:
    user = _create_user(db_session, "amir@toolgostar.com")
    headers = _headers(user)

    wrong = client.put(
        "/api/v1/auth/password",
        json={"current_password": "wrong-one", "new_password": "N3w-password", "confirm_password": "N3w-password"},
        headers=headers,
    )
    mismatch = client.put(
        "/api/v1/auth/password",
        json={"current_password": PASSWORD, "new_password": "N3w-password", "confirm_password": "different"},
        headers=headers,
    )
    changed = client.put(
        "/api/v1/auth/password",
        json={"current_password": PASSWORD, "new_password": "N3w-password", "confirm_password": "N3w-password"},
        headers=headers,
    )

    assert wrong.status_code == 422
    assert wrong.json()["error"]["details"][0]["field"] == "current_password"
    assert mismatch.status_code == 422
    assert changed.status_code == 200
    db_session.refresh(user)
    assert verify_password("N3w-password", user.password_hash)


def test_user_administration_is_admin_only(client: TestClient, db_session: Session) -> None:
    admin = _create_user(db_session, "admin@toolgostar.com", role="admin")
    editor = _create_user(db_session, "editor@toolgostar.com", role="editor")
    payload = {
        "email": "new.viewer@toolgostar.com",
        "password": "Viewer-pass1",
        "first_name": "Neda",
        "last_name": "Kazemi",
        "role": "viewer",
    }

    assert client.get("/api/v1/users", headers=_headers(editor)).status_code == 403
    assert client.post("/api/v1/users", json=payload, headers=_headers(editor)).status_code == 403

    created = client.post("/api/v1/users", json=payload, headers=_headers(admin))
    assert created.status_code == 201
    assert created.json()["data"]["role"] == "viewer"
    duplicate = client.post("/api/v1/users", json=payload, headers=_headers(admin))
    assert duplicate.status_code == 409

    listed = client.get("/api/v1/users", headers=_headers(admin))
    assert {row["email"] for row in listed.json()["data"]} == {
        "admin@toolgostar.com",
        "editor@toolgostar.com",
        "new.viewer@toolgostar.com",
    }


def test_admin_cannot_deactivate_self(client: TestClient, db_session: Session) -> None:
    admin = _create_user(db_session, "admin@toolgostar.com", role="admin")
    editor = _create_user(db_session, "editor@toolgostar.com", role="editor")

    self_update = client.patch(f"/api/v1/users/{admin.id}", json={"is_active": False}, headers=_headers(admin))
    other_update = client.patch(
        f"/api/v1/users/{editor.id}",
        json={"is_active": False, "role": "viewer"},
        headers=_headers(admin),
    )
    missing = client.patch(f"/api/v1/users/{uuid.uuid4()}", json={"role": "viewer"}, headers=_headers(admin))

    assert self_update.status_code == 422
    assert other_update.status_code == 200
    assert other_update.json()["data"]["is_active"] is False
    assert other_update.json()["data"]["role"] == "viewer"
    assert missing.status_code == 404


def test_seed_admin_creates_then_promotes(db_session: Session) -> None:
    settings = Settings(admin_email="Owner@ToolGostar.com", admin_password="Owner-pass1", bcrypt_rounds=4)

    created = seed_admin(db_session, settings)
    assert created.role == "admin"
    assert created.email == "owner@toolgostar.com"

    created.role = "viewer"
    created.is_active = False
    db_session.commit()

    promoted = seed_admin(db_session, settings)
    assert promoted.id == created.id
    assert promoted.role == "admin"
    assert promoted.is_active is True


def test_seed_admin_requires_credentials(db_session: Session) -> None:
    with pytest.raises(RuntimeError):
        seed_admin(db_session, Settings(admin_email=None, admin_password=None))
