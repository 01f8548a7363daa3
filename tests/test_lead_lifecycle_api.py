from __future__ import annotations

import csv
import io
import uuid
from collections.abc import Generator
from typing import Any

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, func, select, update
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from toolgostar import audit, events
from toolgostar.auth.models import User
from toolgostar.core.config import get_settings
from toolgostar.core.database import Base, get_db
from toolgostar.core.errors import ConflictError
from toolgostar.leads.models import Contact, QuoteRequest
from toolgostar.leads.service import contact_lifecycle_service
from toolgostar.main import app
from toolgostar.platform.ratelimit.limiter import reset_rate_limiter
from toolgostar.platform.security.context import Principal
from toolgostar.platform.security.passwords import hash_password
from toolgostar.platform.security.tokens import get_token_service


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
    get_settings.cache_clear()
    reset_rate_limiter()
    audit.audit_entries.clear()
    events.published_events.clear()
    yield
    get_settings.cache_clear()
    reset_rate_limiter()
    audit.audit_entries.clear()
    events.published_events.clear()


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _create_user(db_session: Session, role: str, email: str, is_active: bool = True) -> User:
    user = User(
        email=email,
        password_hash=hash_password("Irrelevant-pass1", rounds=4),
        first_name=role.title(),
        last_name="User",
        role=role,
        is_active=is_active,
    )
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


def _headers(user: User) -> dict[str, str]:
    token = get_token_service().issue(str(user.id), user.role).access.token
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def admin(db_session: Session) -> User:
    return _create_user(db_session, "admin", "admin@toolgostar.com")


@pytest.fixture()
def editor(db_session: Session) -> User:
    return _create_user(db_session, "editor", "editor@toolgostar.com")


@pytest.fixture()
def viewer(db_session: Session) -> User:
    return _create_user(db_session, "viewer", "viewer@toolgostar.com")


def _submit_contact(client: TestClient, **overrides: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "first_name": "Nima",
        "last_name": "Rahimi",
        "email": "nima@tehran-textiles.com",
        "company": "Tehran Textiles",
        "subject": "Dye house effluent treatment",
        "message": "Looking for a DAF unit sized for 30 m3/h of dye house effluent.",
        "gdpr_consent": True,
    }
    payload.update(overrides)
    response = client.post("/api/v1/contact/submit", json=payload)
    assert response.status_code == 201
    return response.json()["data"]


def _submit_quote(client: TestClient) -> dict[str, Any]:
    payload = {
        "contact_info": {
            "first_name": "Leila",
            "last_name": "Hosseini",
            "email": "leila@shiraz-water.com",
            "phone": "+98 71 3333 4444",
            "company": "Shiraz Water Works",
            "industry": "municipal",
        },
        "project_details": {
            "required_capacity": "200 m3/h",
            "timeline": "within_6_months",
            "budget": "500k_1m",
        },
        "gdpr_consent": True,
    }
    response = client.post("/api/v1/contact/quote", json=payload)
    assert response.status_code == 201
    return response.json()["data"]["quote_request"]


def test_requests_without_token_are_unauthenticated(client: TestClient) -> None:
    response = client.get("/api/v1/contact")

    assert response.status_code == 401
    assert response.json()["error"]["code"] == "NO_TOKEN"


def test_expired_token_is_reported_as_expired(client: TestClient, admin: User, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ACCESS_TOKEN_EXPIRE_MINUTES", "-1")
    get_settings.cache_clear()
    headers = _headers(admin)
    monkeypatch.delenv("ACCESS_TOKEN_EXPIRE_MINUTES")
    get_settings.cache_clear()

    response = client.get("/api/v1/contact", headers=headers)

    assert response.status_code == 401
    assert response.json()["error"]["code"] == "TOKEN_EXPIRED"


def test_assigning_new_contact_moves_it_in_progress(client: TestClient, admin: User, editor: User) -> None:
    contact = _submit_contact(client)

    response = client.post(
        f"/api/v1/contact/{contact['id']}/assign",
        json={"user_id": str(editor.id)},
        headers=_headers(editor),
    )

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["status"] == "in_progress"
    assert data["assigned_to_id"] == str(editor.id)
    assert data["row_version"] == contact["row_version"] + 1
    assert any(entry["action"] == "assigned" and entry["entity_id"] == contact["id"] for entry in audit.audit_entries)
    assert any(event["event_type"] == "lead.contact.assigned" for event in events.published_events)


def test_assigning_unknown_or_inactive_user_fails(client: TestClient, db_session: Session, editor: User) -> None:
    contact = _submit_contact(client)
    inactive = _create_user(db_session, "editor", "gone@toolgostar.com", is_active=False)

    missing = client.post(
        f"/api/v1/contact/{contact['id']}/assign",
        json={"user_id": str(uuid.uuid4())},
        headers=_headers(editor),
    )
    deactivated = client.post(
        f"/api/v1/contact/{contact['id']}/assign",
        json={"user_id": str(inactive.id)},
        headers=_headers(editor),
    )

    assert missing.status_code == 404
    assert deactivated.status_code == 422
    assert deactivated.json()["error"]["details"][0]["field"] == "assigned_to"


def test_reply_then_close_contact(client: TestClient, editor: User) -> None:
    contact = _submit_contact(client)
    headers = _headers(editor)

    replied = client.post(f"/api/v1/contact/{contact['id']}/reply", json={"internal_note": "Sent brochure"}, headers=headers)
    assert replied.status_code == 200
    assert replied.json()["data"]["status"] == "replied"
    assert replied.json()["data"]["replied_at"] is not None
    assert replied.json()["data"]["internal_notes"].endswith("] Sent brochure")

    closed = client.post(f"/api/v1/contact/{contact['id']}/close", headers=headers)
    assert closed.status_code == 200
    assert closed.json()["data"]["status"] == "closed"

    again = client.post(f"/api/v1/contact/{contact['id']}/reply", headers=headers)
    assert again.status_code == 409
    assert again.json()["error"]["details"] == {"current_status": "closed", "target_status": "replied"}


def test_status_override_appends_timestamped_notes(client: TestClient, editor: User) -> None:
    contact = _submit_contact(client)
    headers = _headers(editor)

    first = client.put(
        f"/api/v1/contact/{contact['id']}/status",
        json={"status": "closed", "priority": "high", "internal_note": "Spam"},
        headers=headers,
    )
    second = client.put(
        f"/api/v1/contact/{contact['id']}/status",
        json={"status": "new", "internal_note": "Actually legitimate"},
        headers=headers,
    )

    assert first.status_code == 200
    assert second.status_code == 200
    data = second.json()["data"]
    assert data["status"] == "new"
    assert data["priority"] == "high"
    lines = data["internal_notes"].split("\n")
    assert len(lines) == 2
    assert lines[0].startswith("[") and lines[0].endswith("] Spam")
    assert lines[1].endswith("] Actually legitimate")


def test_empty_status_update_is_rejected(client: TestClient, editor: User) -> None:
    contact = _submit_contact(client)

    response = client.put(f"/api/v1/contact/{contact['id']}/status", json={}, headers=_headers(editor))

    assert response.status_code == 422


def test_status_update_with_only_nulls_is_rejected(client: TestClient, editor: User) -> None:
    contact = _submit_contact(client)
    headers = _headers(editor)

    response = client.put(
        f"/api/v1/contact/{contact['id']}/status",
        json={"status": None, "priority": None},
        headers=headers,
    )

    assert response.status_code == 422
    assert not any(entry["action"] == "status_updated" for entry in audit.audit_entries)
    unchanged = client.get(f"/api/v1/contact/{contact['id']}", headers=headers).json()["data"]
    assert unchanged["row_version"] == contact["row_version"]


def test_viewer_can_read_but_not_write(client: TestClient, viewer: User) -> None:
    contact = _submit_contact(client)
    headers = _headers(viewer)

    assert client.get(f"/api/v1/contact/{contact['id']}", headers=headers).status_code == 200
    denied = client.post(f"/api/v1/contact/{contact['id']}/close", headers=headers)
    assert denied.status_code == 403
    assert denied.json()["error"]["details"] == {"required": "contacts:write", "role": "viewer"}
    assert client.get("/api/v1/contact/export", headers=headers).status_code == 403


def test_editor_cannot_delete_but_admin_can(client: TestClient, db_session: Session, admin: User, editor: User) -> None:
    quote = _submit_quote(client)
    contact_id = quote["contact_id"]

    denied = client.delete(f"/api/v1/contact/{contact_id}", headers=_headers(editor))
    assert denied.status_code == 403
    assert denied.json()["error"]["code"] == "PERMISSION_DENIED"

    deleted = client.delete(f"/api/v1/contact/{contact_id}", headers=_headers(admin))
    assert deleted.status_code == 200
    assert db_session.scalar(select(func.count()).select_from(Contact)) == 0
    assert db_session.scalar(select(func.count()).select_from(QuoteRequest)) == 0
    assert client.get(f"/api/v1/contact/{contact_id}", headers=_headers(admin)).status_code == 404


def test_contact_detail_includes_quote_number(client: TestClient, viewer: User) -> None:
    quote = _submit_quote(client)

    response = client.get(f"/api/v1/contact/{quote['contact_id']}", headers=_headers(viewer))

    assert response.json()["data"]["quote_number"] == quote["quote_number"]


def test_list_filters_search_and_paginates(client: TestClient, editor: User) -> None:
    for index in range(3):
        _submit_contact(client, email=f"buyer{index}@example.com", company=f"Company {index}")
    _submit_contact(client, email="other@example.com", company="Caspian Foods")
    headers = _headers(editor)

    page = client.get("/api/v1/contact?page=1&limit=2", headers=headers)
    assert page.status_code == 200
    assert len(page.json()["data"]) == 2
    assert page.json()["pagination"] == {"page": 1, "limit": 2, "total": 4, "pages": 2}

    searched = client.get("/api/v1/contact?search=caspian", headers=headers)
    assert [row["company"] for row in searched.json()["data"]] == ["Caspian Foods"]

    by_status = client.get("/api/v1/contact?status=closed", headers=headers)
    assert by_status.json()["data"] == []


def test_contact_stats_and_export(client: TestClient, editor: User) -> None:
    first = _submit_contact(client)
    _submit_contact(client, email="second@example.com")
    headers = _headers(editor)
    client.post(f"/api/v1/contact/{first['id']}/close", headers=headers)

    stats = client.get("/api/v1/contact/stats", headers=headers).json()["data"]
    assert stats["total"] == 2
    assert stats["by_status"]["closed"] == 1
    assert stats["by_status"]["new"] == 1
    assert stats["open"] == 1
    assert stats["unassigned"] == 1

    exported = client.get("/api/v1/contact/export", headers=headers)
    assert exported.status_code == 200
    assert exported.headers["content-type"].startswith("text/csv")
    rows = list(csv.DictReader(io.StringIO(exported.text)))
    assert {row["email"] for row in rows} == {"nima@tehran-textiles.com", "second@example.com"}


def test_quote_lifecycle_to_approval(client: TestClient, editor: User) -> None:
    quote = _submit_quote(client)
    headers = _headers(editor)

    assigned = client.post(f"/api/v1/quotes/{quote['id']}/assign", json={"user_id": str(editor.id)}, headers=headers)
    assert assigned.json()["data"]["status"] == "in_progress"

    quoted = client.post(f"/api/v1/quotes/{quote['id']}/quote", json={"quote_amount": "125000.50"}, headers=headers)
    assert quoted.status_code == 200
    assert quoted.json()["data"]["status"] == "quoted"
    assert quoted.json()["data"]["quoted_at"] is not None

    approved = client.post(f"/api/v1/quotes/{quote['id']}/approve", json={"reason": "PO received"}, headers=headers)
    assert approved.status_code == 200
    data = approved.json()["data"]
    assert data["status"] == "approved"
    assert data["decided_at"] is not None
    assert "Approved: PO received" in data["internal_notes"]

    stats = client.get("/api/v1/quotes/stats", headers=headers).json()["data"]
    assert stats["by_status"]["approved"] == 1
    assert float(stats["quoted_value_total"]) == 125000.50


def test_mark_quoted_from_terminal_state_conflicts(client: TestClient, editor: User) -> None:
    quote = _submit_quote(client)
    headers = _headers(editor)
    cancelled = client.post(f"/api/v1/quotes/{quote['id']}/cancel", json={"reason": "Budget frozen"}, headers=headers)
    assert cancelled.json()["data"]["status"] == "cancelled"

    response = client.post(f"/api/v1/quotes/{quote['id']}/quote", json={"quote_amount": "1000"}, headers=headers)

    assert response.status_code == 409
    assert response.json()["error"]["code"] == "INVALID_TRANSITION"
    assert response.json()["error"]["details"] == {"current_status": "cancelled", "target_status": "quoted"}


def test_approve_requires_quoted_state(client: TestClient, editor: User) -> None:
    quote = _submit_quote(client)

    response = client.post(f"/api/v1/quotes/{quote['id']}/approve", headers=_headers(editor))

    assert response.status_code == 409


@pytest.mark.parametrize("amount", ["0", "-5"])
def test_quote_amount_must_be_positive(client: TestClient, editor: User, amount: str) -> None:
    quote = _submit_quote(client)

    response = client.post(f"/api/v1/quotes/{quote['id']}/quote", json={"quote_amount": amount}, headers=_headers(editor))

    assert response.status_code == 422
    assert response.json()["error"]["details"][0]["field"] == "quote_amount"


def test_rejected_quote_cannot_be_cancelled(client: TestClient, editor: User) -> None:
    quote = _submit_quote(client)
    headers = _headers(editor)
    client.post(f"/api/v1/quotes/{quote['id']}/quote", json={"quote_amount": "900"}, headers=headers)
    rejected = client.post(f"/api/v1/quotes/{quote['id']}/reject", json={"reason": "Too expensive"}, headers=headers)
    assert rejected.json()["data"]["status"] == "rejected"

    response = client.post(f"/api/v1/quotes/{quote['id']}/cancel", headers=headers)

    assert response.status_code == 409


def test_quote_patch_updates_priority_and_notes(client: TestClient, editor: User) -> None:
    quote = _submit_quote(client)

    response = client.patch(
        f"/api/v1/quotes/{quote['id']}",
        json={"priority": "urgent", "internal_note": "Call back Monday"},
        headers=_headers(editor),
    )

    assert response.status_code == 200
    assert response.json()["data"]["priority"] == "urgent"
    assert response.json()["data"]["internal_notes"].endswith("] Call back Monday")


def test_quote_delete_keeps_contact(client: TestClient, db_session: Session, admin: User) -> None:
    quote = _submit_quote(client)

    response = client.delete(f"/api/v1/quotes/{quote['id']}", headers=_headers(admin))

    assert response.status_code == 200
    assert db_session.scalar(select(func.count()).select_from(QuoteRequest)) == 0
    assert db_session.scalar(select(func.count()).select_from(Contact)) == 1


def test_quote_list_and_unknown_id(client: TestClient, viewer: User) -> None:
    quote = _submit_quote(client)
    headers = _headers(viewer)

    listing = client.get("/api/v1/quotes?search=shiraz", headers=headers)
    assert [row["id"] for row in listing.json()["data"]] == [quote["id"]]
    assert client.get(f"/api/v1/quotes/{uuid.uuid4()}", headers=headers).status_code == 404


def test_stale_row_version_raises_conflict(client: TestClient, db_session: Session, editor: User) -> None:
    contact_id = uuid.UUID(_submit_contact(client)["id"])
    contact = db_session.get(Contact, contact_id)
    assert contact is not None
    stale_version = contact.row_version
    db_session.execute(
        update(Contact)
        .where(Contact.id == contact_id)
        .values(row_version=Contact.row_version + 1)
        .execution_options(synchronize_session=False)
    )
    assert contact.row_version == stale_version
    actor = get_token_service().verify(get_token_service().issue(str(editor.id), editor.role).access.token)
    assert isinstance(actor, Principal)

    with pytest.raises(ConflictError):
        contact_lifecycle_service.close(db_session, actor, contact_id)
