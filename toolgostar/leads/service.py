from __future__ import annotations

import csv
import io
import logging
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import Select, and_, func, or_, select, update
from sqlalchemy.orm import Session

from toolgostar import audit, events
from toolgostar.auth.service import get_assignable_user
from toolgostar.core.errors import ConflictError, NotFoundError
from toolgostar.core.responses import Pagination
from toolgostar.leads.lifecycle import (
    OPEN_CONTACT_STATUSES,
    ContactStatus,
    QuoteStatus,
    contact_status_after_assign,
    contact_status_after_close,
    contact_status_after_reply,
    quote_status_after_assign,
    quote_status_after_cancel,
    quote_status_after_decision,
    quote_status_after_quote,
    require_positive_amount,
)
from toolgostar.leads.models import Contact, QuoteRequest, utcnow
from toolgostar.leads.schemas import (
    ContactFilters,
    ContactRead,
    ContactStats,
    ContactStatusUpdate,
    QuoteFilters,
    QuoteRead,
    QuoteStats,
    QuoteUpdate,
)
from toolgostar.metrics import observe_lead_transition
from toolgostar.platform.security.context import Principal


logger = logging.getLogger("toolgostar.leads")

CONTACT_EXPORT_FIELDS = [
    "id",
    "created_at",
    "first_name",
    "last_name",
    "email",
    "phone",
    "company",
    "industry",
    "subject",
    "status",
    "priority",
    "assigned_to_id",
    "source",
    "replied_at",
    "closed_at",
]
QUOTE_EXPORT_FIELDS = [
    "id",
    "quote_number",
    "created_at",
    "contact_id",
    "project_name",
    "required_capacity",
    "timeline",
    "budget",
    "status",
    "priority",
    "assigned_to_id",
    "quote_amount",
    "quoted_at",
    "decided_at",
]


def append_note(existing: str | None, note: str | None, now: datetime) -> str | None:
    if not note or not note.strip():
        return existing
    line = f"[{now.isoformat()}] {note.strip()}"
    return f"{existing}\n{line}" if existing else line


def _parse_id(entity_id: uuid.UUID | str, not_found: str, code: str) -> uuid.UUID:
    if isinstance(entity_id, uuid.UUID):
        return entity_id
    try:
        return uuid.UUID(str(entity_id))
    except ValueError as exc:
        raise NotFoundError(not_found, code=code) from exc


def _page_bounds(page: int, limit: int) -> tuple[int, int]:
    page = max(page, 1)
    limit = min(max(limit, 1), 100)
    return page, limit


def _csv_text(rows: list[dict[str, Any]], fieldnames: list[str]) -> str:
    output = io.StringIO()
    writer = csv.DictWriter(output, fieldnames=fieldnames, extrasaction="ignore")
    writer.writeheader()
    for row in rows:
        writer.writerow({key: "" if value is None else value for key, value in row.items()})
    return output.getvalue()


class _VersionedUpdates:
    """Shared write path: every transition is a conditional UPDATE on the loaded row_version."""

    entity_type: str
    model: Any

    def _apply(
        self,
        session: Session,
        actor: Principal,
        entity: Any,
        values: dict[str, Any],
        *,
        action: str,
        before: dict[str, Any],
    ) -> None:
        values["updated_at"] = utcnow()
        values["row_version"] = entity.row_version + 1
        result = session.execute(
            update(self.model)
            .where(and_(self.model.id == entity.id, self.model.row_version == entity.row_version))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            session.rollback()
            logger.info(
                "lead.transition_conflict",
                extra={"entity_type": self.entity_type, "entity_id": str(entity.id), "status": action},
            )
            raise ConflictError("Record was modified concurrently; reload and retry", code="CONFLICT")
        session.commit()
        session.refresh(entity)

        observe_lead_transition(self.entity_type, action)
        after = self._snapshot(entity)
        audit.record(
            actor_user_id=actor.subject_id,
            entity_type=self.entity_type,
            entity_id=str(entity.id),
            action=action,
            before=before,
            after=after,
        )
        events.publish(
            {
                "event_id": str(uuid.uuid4()),
                "event_type": f"lead.{self.entity_type}.{action}",
                "occurred_at": utcnow().isoformat(),
                "actor_user_id": actor.subject_id,
                "version": 1,
                "payload": {f"{self.entity_type}_id": str(entity.id), "status": entity.status},
            }
        )

    def _snapshot(self, entity: Any) -> dict[str, Any]:
        raise NotImplementedError

    def _delete(self, session: Session, actor: Principal, entity: Any) -> None:
        entity_id = str(entity.id)
        before = self._snapshot(entity)
        session.delete(entity)
        session.commit()
        observe_lead_transition(self.entity_type, "delete")
        audit.record(
            actor_user_id=actor.subject_id,
            entity_type=self.entity_type,
            entity_id=entity_id,
            action="delete",
            before=before,
            after=None,
        )
        events.publish(
            {
                "event_id": str(uuid.uuid4()),
                "event_type": f"lead.{self.entity_type}.deleted",
                "occurred_at": utcnow().isoformat(),
                "actor_user_id": actor.subject_id,
                "version": 1,
                "payload": {f"{self.entity_type}_id": entity_id},
            }
        )


class ContactLifecycleService(_VersionedUpdates):
    entity_type = "contact"
    model = Contact

    def _snapshot(self, entity: Contact) -> dict[str, Any]:
        return self._to_read(entity).model_dump(mode="json")

    @staticmethod
    def _to_read(contact: Contact) -> ContactRead:
        quote = contact.quote_request
        return ContactRead.model_validate(contact).model_copy(
            update={"quote_number": quote.quote_number if quote is not None else None}
        )

    def _load(self, session: Session, contact_id: uuid.UUID | str) -> Contact:
        resolved = _parse_id(contact_id, "Contact not found", "CONTACT_NOT_FOUND")
        contact = session.scalar(select(Contact).where(Contact.id == resolved))
        if contact is None:
            raise NotFoundError("Contact not found", code="CONTACT_NOT_FOUND")
        return contact

    @staticmethod
    def _filtered(filters: ContactFilters) -> Select[tuple[Contact]]:
        stmt = select(Contact)
        if filters.status is not None:
            stmt = stmt.where(Contact.status == filters.status.value)
        if filters.priority is not None:
            stmt = stmt.where(Contact.priority == filters.priority.value)
        if filters.assigned_to is not None:
            stmt = stmt.where(Contact.assigned_to_id == filters.assigned_to)
        if filters.search:
            pattern = f"%{filters.search.strip()}%"
            stmt = stmt.where(
                or_(
                    Contact.first_name.ilike(pattern),
                    Contact.last_name.ilike(pattern),
                    Contact.email.ilike(pattern),
                    Contact.company.ilike(pattern),
                    Contact.subject.ilike(pattern),
                    Contact.message.ilike(pattern),
                )
            )
        if filters.date_from is not None:
            stmt = stmt.where(Contact.created_at >= filters.date_from)
        if filters.date_to is not None:
            stmt = stmt.where(Contact.created_at <= filters.date_to)
        return stmt

    def list_contacts(
        self,
        session: Session,
        filters: ContactFilters,
        page: int = 1,
        limit: int = 20,
    ) -> tuple[list[ContactRead], Pagination]:
        page, limit = _page_bounds(page, limit)
        stmt = self._filtered(filters)
        total = int(session.scalar(select(func.count()).select_from(stmt.subquery())) or 0)
        rows = session.scalars(
            stmt.order_by(Contact.created_at.desc(), Contact.id.desc()).offset((page - 1) * limit).limit(limit)
        ).all()
        return [self._to_read(row) for row in rows], Pagination.build(page, limit, total)

    def stats(self, session: Session) -> ContactStats:
        by_status = {value.value: 0 for value in ContactStatus}
        for status_value, count in session.execute(select(Contact.status, func.count()).group_by(Contact.status)):
            by_status[status_value] = int(count)
        by_priority: dict[str, int] = {}
        for priority_value, count in session.execute(select(Contact.priority, func.count()).group_by(Contact.priority)):
            by_priority[priority_value] = int(count)
        unassigned = session.scalar(
            select(func.count())
            .select_from(Contact)
            .where(Contact.assigned_to_id.is_(None), Contact.status.in_([s.value for s in OPEN_CONTACT_STATUSES]))
        )
        return ContactStats(
            total=sum(by_status.values()),
            by_status=by_status,
            by_priority=by_priority,
            open=sum(by_status[s.value] for s in OPEN_CONTACT_STATUSES),
            unassigned=int(unassigned or 0),
        )

    def export_csv(self, session: Session, filters: ContactFilters) -> str:
        rows = session.scalars(self._filtered(filters).order_by(Contact.created_at.desc())).all()
        return _csv_text([self._to_read(row).model_dump(mode="json") for row in rows], CONTACT_EXPORT_FIELDS)

    def get_contact(self, session: Session, contact_id: uuid.UUID | str) -> ContactRead:
        return self._to_read(self._load(session, contact_id))

    def update_status(
        self,
        session: Session,
        actor: Principal,
        contact_id: uuid.UUID | str,
        dto: ContactStatusUpdate,
    ) -> ContactRead:
        # Administrative override: any status may be set directly.
        contact = self._load(session, contact_id)
        before = self._snapshot(contact)
        now = utcnow()
        values: dict[str, Any] = {}
        if dto.status is not None:
            values["status"] = dto.status.value
            if dto.status is ContactStatus.REPLIED and contact.replied_at is None:
                values["replied_at"] = now
            if dto.status is ContactStatus.CLOSED and contact.closed_at is None:
                values["closed_at"] = now
        if dto.priority is not None:
            values["priority"] = dto.priority.value
        if dto.assigned_to is not None:
            values["assigned_to_id"] = get_assignable_user(session, dto.assigned_to).id
        if dto.internal_note:
            values["internal_notes"] = append_note(contact.internal_notes, dto.internal_note, now)
        self._apply(session, actor, contact, values, action="status_updated", before=before)
        return self._to_read(contact)

    def assign(
        self,
        session: Session,
        actor: Principal,
        contact_id: uuid.UUID | str,
        user_id: uuid.UUID,
    ) -> ContactRead:
        contact = self._load(session, contact_id)
        assignee = get_assignable_user(session, user_id)
        before = self._snapshot(contact)
        values = {"assigned_to_id": assignee.id, "status": contact_status_after_assign(contact.status).value}
        self._apply(session, actor, contact, values, action="assigned", before=before)
        return self._to_read(contact)

    def mark_replied(
        self,
        session: Session,
        actor: Principal,
        contact_id: uuid.UUID | str,
        note: str | None = None,
    ) -> ContactRead:
        contact = self._load(session, contact_id)
        target = contact_status_after_reply(contact.status)
        before = self._snapshot(contact)
        now = utcnow()
        values: dict[str, Any] = {"status": target.value, "replied_at": now}
        if note:
            values["internal_notes"] = append_note(contact.internal_notes, note, now)
        self._apply(session, actor, contact, values, action="replied", before=before)
        return self._to_read(contact)

    def close(
        self,
        session: Session,
        actor: Principal,
        contact_id: uuid.UUID | str,
        note: str | None = None,
    ) -> ContactRead:
        contact = self._load(session, contact_id)
        target = contact_status_after_close(contact.status)
        before = self._snapshot(contact)
        now = utcnow()
        values: dict[str, Any] = {"status": target.value, "closed_at": now}
        if note:
            values["internal_notes"] = append_note(contact.internal_notes, note, now)
        self._apply(session, actor, contact, values, action="closed", before=before)
        return self._to_read(contact)

    def delete(self, session: Session, actor: Principal, contact_id: uuid.UUID | str) -> None:
        self._delete(session, actor, self._load(session, contact_id))


class QuoteLifecycleService(_VersionedUpdates):
    entity_type = "quote"
    model = QuoteRequest

    def _snapshot(self, entity: QuoteRequest) -> dict[str, Any]:
        return QuoteRead.model_validate(entity).model_dump(mode="json")

    def _load(self, session: Session, quote_id: uuid.UUID | str) -> QuoteRequest:
        resolved = _parse_id(quote_id, "Quote request not found", "QUOTE_NOT_FOUND")
        quote = session.scalar(select(QuoteRequest).where(QuoteRequest.id == resolved))
        if quote is None:
            raise NotFoundError("Quote request not found", code="QUOTE_NOT_FOUND")
        return quote

    @staticmethod
    def _filtered(filters: QuoteFilters) -> Select[tuple[QuoteRequest]]:
        stmt = select(QuoteRequest).join(Contact, Contact.id == QuoteRequest.contact_id)
        if filters.status is not None:
            stmt = stmt.where(QuoteRequest.status == filters.status.value)
        if filters.priority is not None:
            stmt = stmt.where(QuoteRequest.priority == filters.priority.value)
        if filters.assigned_to is not None:
            stmt = stmt.where(QuoteRequest.assigned_to_id == filters.assigned_to)
        if filters.search:
            pattern = f"%{filters.search.strip()}%"
            stmt = stmt.where(
                or_(
                    QuoteRequest.quote_number.ilike(pattern),
                    QuoteRequest.project_name.ilike(pattern),
                    QuoteRequest.required_capacity.ilike(pattern),
                    Contact.first_name.ilike(pattern),
                    Contact.last_name.ilike(pattern),
                    Contact.email.ilike(pattern),
                    Contact.company.ilike(pattern),
                )
            )
        if filters.date_from is not None:
            stmt = stmt.where(QuoteRequest.created_at >= filters.date_from)
        if filters.date_to is not None:
            stmt = stmt.where(QuoteRequest.created_at <= filters.date_to)
        return stmt

    def list_quotes(
        self,
        session: Session,
        filters: QuoteFilters,
        page: int = 1,
        limit: int = 20,
    ) -> tuple[list[QuoteRead], Pagination]:
        page, limit = _page_bounds(page, limit)
        stmt = self._filtered(filters)
        total = int(session.scalar(select(func.count()).select_from(stmt.subquery())) or 0)
        rows = session.scalars(
            stmt.order_by(QuoteRequest.created_at.desc(), QuoteRequest.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        ).all()
        return [QuoteRead.model_validate(row) for row in rows], Pagination.build(page, limit, total)

    def stats(self, session: Session) -> QuoteStats:
        by_status = {value.value: 0 for value in QuoteStatus}
        for status_value, count in session.execute(
            select(QuoteRequest.status, func.count()).group_by(QuoteRequest.status)
        ):
            by_status[status_value] = int(count)
        by_priority: dict[str, int] = {}
        for priority_value, count in session.execute(
            select(QuoteRequest.priority, func.count()).group_by(QuoteRequest.priority)
        ):
            by_priority[priority_value] = int(count)
        quoted_value = session.scalar(
            select(func.coalesce(func.sum(QuoteRequest.quote_amount), 0)).where(
                QuoteRequest.quote_amount.is_not(None)
            )
        )
        return QuoteStats(
            total=sum(by_status.values()),
            by_status=by_status,
            by_priority=by_priority,
            quoted_value_total=Decimal(str(quoted_value or 0)).quantize(Decimal("0.01")),
        )

    def export_csv(self, session: Session, filters: QuoteFilters) -> str:
        rows = session.scalars(self._filtered(filters).order_by(QuoteRequest.created_at.desc())).all()
        return _csv_text([QuoteRead.model_validate(row).model_dump(mode="json") for row in rows], QUOTE_EXPORT_FIELDS)

    def get_quote(self, session: Session, quote_id: uuid.UUID | str) -> QuoteRead:
        return QuoteRead.model_validate(self._load(session, quote_id))

    def update_quote(
        self,
        session: Session,
        actor: Principal,
        quote_id: uuid.UUID | str,
        dto: QuoteUpdate,
    ) -> QuoteRead:
        quote = self._load(session, quote_id)
        values: dict[str, Any] = {}
        if dto.priority is not None:
            values["priority"] = dto.priority.value
        if dto.internal_note:
            values["internal_notes"] = append_note(quote.internal_notes, dto.internal_note, utcnow())
        if not values:
            return QuoteRead.model_validate(quote)
        before = self._snapshot(quote)
        self._apply(session, actor, quote, values, action="updated", before=before)
        return QuoteRead.model_validate(quote)

    def assign(
        self,
        session: Session,
        actor: Principal,
        quote_id: uuid.UUID | str,
        user_id: uuid.UUID,
    ) -> QuoteRead:
        quote = self._load(session, quote_id)
        assignee = get_assignable_user(session, user_id)
        before = self._snapshot(quote)
        values = {"assigned_to_id": assignee.id, "status": quote_status_after_assign(quote.status).value}
        self._apply(session, actor, quote, values, action="assigned", before=before)
        return QuoteRead.model_validate(quote)

    def mark_quoted(
        self,
        session: Session,
        actor: Principal,
        quote_id: uuid.UUID | str,
        amount: Decimal,
        note: str | None = None,
    ) -> QuoteRead:
        quote = self._load(session, quote_id)
        target = quote_status_after_quote(quote.status)
        before = self._snapshot(quote)
        now = utcnow()
        values: dict[str, Any] = {
            "status": target.value,
            "quote_amount": require_positive_amount(amount),
            "quoted_at": now,
        }
        if note:
            values["internal_notes"] = append_note(quote.internal_notes, note, now)
        self._apply(session, actor, quote, values, action="quoted", before=before)
        return QuoteRead.model_validate(quote)

    def approve(
        self,
        session: Session,
        actor: Principal,
        quote_id: uuid.UUID | str,
        reason: str | None = None,
    ) -> QuoteRead:
        return self._decide(session, actor, quote_id, approved=True, reason=reason)

    def reject(
        self,
        session: Session,
        actor: Principal,
        quote_id: uuid.UUID | str,
        reason: str | None = None,
    ) -> QuoteRead:
        return self._decide(session, actor, quote_id, approved=False, reason=reason)

    def _decide(
        self,
        session: Session,
        actor: Principal,
        quote_id: uuid.UUID | str,
        *,
        approved: bool,
        reason: str | None,
    ) -> QuoteRead:
        quote = self._load(session, quote_id)
        target = quote_status_after_decision(quote.status, approved)
        before = self._snapshot(quote)
        now = utcnow()
        values: dict[str, Any] = {"status": target.value, "decided_at": now}
        if reason:
            label = "Approved" if approved else "Rejected"
            values["internal_notes"] = append_note(quote.internal_notes, f"{label}: {reason}", now)
        self._apply(session, actor, quote, values, action=target.value, before=before)
        return QuoteRead.model_validate(quote)

    def cancel(
        self,
        session: Session,
        actor: Principal,
        quote_id: uuid.UUID | str,
        reason: str | None = None,
    ) -> QuoteRead:
        quote = self._load(session, quote_id)
        target = quote_status_after_cancel(quote.status)
        before = self._snapshot(quote)
        now = utcnow()
        values: dict[str, Any] = {"status": target.value, "decided_at": now}
        if reason:
            values["internal_notes"] = append_note(quote.internal_notes, f"Cancelled: {reason}", now)
        self._apply(session, actor, quote, values, action="cancelled", before=before)
        return QuoteRead.model_validate(quote)

    def delete(self, session: Session, actor: Principal, quote_id: uuid.UUID | str) -> None:
        self._delete(session, actor, self._load(session, quote_id))


contact_lifecycle_service = ContactLifecycleService()
quote_lifecycle_service = QuoteLifecycleService()
