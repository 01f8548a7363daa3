from __future__ import annotations

import uuid
from datetime import datetime

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request, Response, status
from sqlalchemy.orm import Session

from toolgostar.core.context import get_request_context
from toolgostar.core.database import get_db
from toolgostar.core.rate_limit import rate_limited
from toolgostar.core.rbac import require_permission
from toolgostar.core.responses import ApiResponse, ok
from toolgostar.leads.analytics import SubmissionEvent, analytics_recorder
from toolgostar.leads.intake import lead_intake_service
from toolgostar.leads.lifecycle import ContactStatus, Priority, QuoteStatus
from toolgostar.leads.schemas import (
    AnalyticsSummary,
    AssignRequest,
    ContactFilters,
    ContactRead,
    ContactStats,
    ContactStatusUpdate,
    ContactSubmit,
    DecisionRequest,
    MarkQuotedRequest,
    NoteRequest,
    QuoteFilters,
    QuoteRead,
    QuoteStats,
    QuoteSubmissionRead,
    QuoteSubmit,
    QuoteUpdate,
)
from toolgostar.leads.service import contact_lifecycle_service, quote_lifecycle_service
from toolgostar.leads.tasks import dispatch_submission
from toolgostar.platform.ratelimit.limiter import CONTACT, QUOTE
from toolgostar.platform.security.context import Principal
from toolgostar.platform.security.permissions import Action, Resource


contact_router = APIRouter(prefix="/api/v1/contact", tags=["contact"])
quotes_router = APIRouter(prefix="/api/v1/quotes", tags=["quotes"])
analytics_router = APIRouter(prefix="/api/v1/analytics", tags=["analytics"])


def _csv_response(content: str, filename: str) -> Response:
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


def contact_filters(
    status_filter: ContactStatus | None = Query(default=None, alias="status"),
    priority: Priority | None = None,
    assigned_to: uuid.UUID | None = None,
    search: str | None = Query(default=None, max_length=200),
    date_from: datetime | None = None,
    date_to: datetime | None = None,
) -> ContactFilters:
    return ContactFilters(
        status=status_filter,
        priority=priority,
        assigned_to=assigned_to,
        search=search,
        date_from=date_from,
        date_to=date_to,
    )


def quote_filters(
    status_filter: QuoteStatus | None = Query(default=None, alias="status"),
    priority: Priority | None = None,
    assigned_to: uuid.UUID | None = None,
    search: str | None = Query(default=None, max_length=200),
    date_from: datetime | None = None,
    date_to: datetime | None = None,
) -> QuoteFilters:
    return QuoteFilters(
        status=status_filter,
        priority=priority,
        assigned_to=assigned_to,
        search=search,
        date_from=date_from,
        date_to=date_to,
    )


@contact_router.post(
    "/submit",
    response_model=ApiResponse[ContactRead],
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limited(CONTACT))],
)
def submit_contact(
    dto: ContactSubmit,
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
) -> ApiResponse[ContactRead]:
    context = get_request_context(request)
    created = lead_intake_service.submit_contact(
        db,
        dto,
        ip_address=context.client_ip,
        user_agent=context.user_agent,
    )
    background_tasks.add_task(
        dispatch_submission,
        SubmissionEvent.from_submission(
            "contact",
            created.id,
            dto,
            ip_address=context.client_ip,
            user_agent=context.user_agent,
            correlation_id=context.correlation_id,
        ),
    )
    return ok(created, message="Thank you for contacting us. We will get back to you soon.")


@contact_router.post(
    "/quote",
    response_model=ApiResponse[QuoteSubmissionRead],
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limited(QUOTE))],
)
def submit_quote(
    dto: QuoteSubmit,
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
) -> ApiResponse[QuoteSubmissionRead]:
    context = get_request_context(request)
    created = lead_intake_service.submit_quote(
        db,
        dto,
        ip_address=context.client_ip,
        user_agent=context.user_agent,
    )
    background_tasks.add_task(
        dispatch_submission,
        SubmissionEvent.from_submission(
            "quote",
            created.contact.id,
            dto,
            ip_address=context.client_ip,
            user_agent=context.user_agent,
            correlation_id=context.correlation_id,
        ),
    )
    return ok(
        created,
        message=f"Quote request {created.quote_request.quote_number} received. We will prepare your quote shortly.",
    )


@contact_router.get("", response_model=ApiResponse[list[ContactRead]])
def list_contacts(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    filters: ContactFilters = Depends(contact_filters),
    db: Session = Depends(get_db),
    _user: Principal = Depends(require_permission(Resource.CONTACTS, Action.READ)),
) -> ApiResponse[list[ContactRead]]:
    items, pagination = contact_lifecycle_service.list_contacts(db, filters, page=page, limit=limit)
    return ok(items, pagination=pagination)


@contact_router.get("/stats", response_model=ApiResponse[ContactStats])
def contact_stats(
    db: Session = Depends(get_db),
    _user: Principal = Depends(require_permission(Resource.CONTACTS, Action.READ)),
) -> ApiResponse[ContactStats]:
    return ok(contact_lifecycle_service.stats(db))


@contact_router.get("/export")
def export_contacts(
    filters: ContactFilters = Depends(contact_filters),
    db: Session = Depends(get_db),
    _user: Principal = Depends(require_permission(Resource.CONTACTS, Action.EXPORT)),
) -> Response:
    return _csv_response(contact_lifecycle_service.export_csv(db, filters), "contacts.csv")


@contact_router.get("/{contact_id}", response_model=ApiResponse[ContactRead])
def get_contact(
    contact_id: uuid.UUID,
    db: Session = Depends(get_db),
    _user: Principal = Depends(require_permission(Resource.CONTACTS, Action.READ)),
) -> ApiResponse[ContactRead]:
    return ok(contact_lifecycle_service.get_contact(db, contact_id))


@contact_router.put("/{contact_id}/status", response_model=ApiResponse[ContactRead])
def update_contact_status(
    contact_id: uuid.UUID,
    dto: ContactStatusUpdate,
    db: Session = Depends(get_db),
    user: Principal = Depends(require_permission(Resource.CONTACTS, Action.WRITE)),
) -> ApiResponse[ContactRead]:
    return ok(contact_lifecycle_service.update_status(db, user, contact_id, dto), message="Contact updated")


@contact_router.post("/{contact_id}/assign", response_model=ApiResponse[ContactRead])
def assign_contact(
    contact_id: uuid.UUID,
    dto: AssignRequest,
    db: Session = Depends(get_db),
    user: Principal = Depends(require_permission(Resource.CONTACTS, Action.WRITE)),
) -> ApiResponse[ContactRead]:
    return ok(contact_lifecycle_service.assign(db, user, contact_id, dto.user_id), message="Contact assigned")


@contact_router.post("/{contact_id}/reply", response_model=ApiResponse[ContactRead])
def mark_contact_replied(
    contact_id: uuid.UUID,
    dto: NoteRequest | None = None,
    db: Session = Depends(get_db),
    user: Principal = Depends(require_permission(Resource.CONTACTS, Action.WRITE)),
) -> ApiResponse[ContactRead]:
    return ok(
        contact_lifecycle_service.mark_replied(db, user, contact_id, dto.internal_note if dto else None),
        message="Contact marked as replied",
    )


@contact_router.post("/{contact_id}/close", response_model=ApiResponse[ContactRead])
def close_contact(
    contact_id: uuid.UUID,
    dto: NoteRequest | None = None,
    db: Session = Depends(get_db),
    user: Principal = Depends(require_permission(Resource.CONTACTS, Action.WRITE)),
) -> ApiResponse[ContactRead]:
    note = dto.internal_note if dto else None
    return ok(contact_lifecycle_service.close(db, user, contact_id, note), message="Contact closed")


@contact_router.delete("/{contact_id}", response_model=ApiResponse[None])
def delete_contact(
    contact_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: Principal = Depends(require_permission(Resource.CONTACTS, Action.DELETE)),
) -> ApiResponse[None]:
    contact_lifecycle_service.delete(db, user, contact_id)
    return ok(None, message="Contact deleted")


@quotes_router.get("", response_model=ApiResponse[list[QuoteRead]])
def list_quotes(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    filters: QuoteFilters = Depends(quote_filters),
    db: Session = Depends(get_db),
    _user: Principal = Depends(require_permission(Resource.QUOTES, Action.READ)),
) -> ApiResponse[list[QuoteRead]]:
    items, pagination = quote_lifecycle_service.list_quotes(db, filters, page=page, limit=limit)
    return ok(items, pagination=pagination)


@quotes_router.get("/stats", response_model=ApiResponse[QuoteStats])
def quote_stats(
    db: Session = Depends(get_db),
    _user: Principal = Depends(require_permission(Resource.QUOTES, Action.READ)),
) -> ApiResponse[QuoteStats]:
    return ok(quote_lifecycle_service.stats(db))


@quotes_router.get("/export")
def export_quotes(
    filters: QuoteFilters = Depends(quote_filters),
    db: Session = Depends(get_db),
    _user: Principal = Depends(require_permission(Resource.QUOTES, Action.EXPORT)),
) -> Response:
    return _csv_response(quote_lifecycle_service.export_csv(db, filters), "quote_requests.csv")


@quotes_router.get("/{quote_id}", response_model=ApiResponse[QuoteRead])
def get_quote(
    quote_id: uuid.UUID,
    db: Session = Depends(get_db),
    _user: Principal = Depends(require_permission(Resource.QUOTES, Action.READ)),
) -> ApiResponse[QuoteRead]:
    return ok(quote_lifecycle_service.get_quote(db, quote_id))


@quotes_router.patch("/{quote_id}", response_model=ApiResponse[QuoteRead])
def update_quote(
    quote_id: uuid.UUID,
    dto: QuoteUpdate,
    db: Session = Depends(get_db),
    user: Principal = Depends(require_permission(Resource.QUOTES, Action.WRITE)),
) -> ApiResponse[QuoteRead]:
    return ok(quote_lifecycle_service.update_quote(db, user, quote_id, dto), message="Quote request updated")


@quotes_router.post("/{quote_id}/assign", response_model=ApiResponse[QuoteRead])
def assign_quote(
    quote_id: uuid.UUID,
    dto: AssignRequest,
    db: Session = Depends(get_db),
    user: Principal = Depends(require_permission(Resource.QUOTES, Action.WRITE)),
) -> ApiResponse[QuoteRead]:
    return ok(quote_lifecycle_service.assign(db, user, quote_id, dto.user_id), message="Quote request assigned")


@quotes_router.post("/{quote_id}/quote", response_model=ApiResponse[QuoteRead])
def mark_quoted(
    quote_id: uuid.UUID,
    dto: MarkQuotedRequest,
    db: Session = Depends(get_db),
    user: Principal = Depends(require_permission(Resource.QUOTES, Action.WRITE)),
) -> ApiResponse[QuoteRead]:
    return ok(
        quote_lifecycle_service.mark_quoted(db, user, quote_id, dto.quote_amount, dto.internal_note),
        message="Quote sent",
    )


@quotes_router.post("/{quote_id}/approve", response_model=ApiResponse[QuoteRead])
def approve_quote(
    quote_id: uuid.UUID,
    dto: DecisionRequest | None = None,
    db: Session = Depends(get_db),
    user: Principal = Depends(require_permission(Resource.QUOTES, Action.WRITE)),
) -> ApiResponse[QuoteRead]:
    reason = dto.reason if dto else None
    return ok(quote_lifecycle_service.approve(db, user, quote_id, reason), message="Quote approved")


@quotes_router.post("/{quote_id}/reject", response_model=ApiResponse[QuoteRead])
def reject_quote(
    quote_id: uuid.UUID,
    dto: DecisionRequest | None = None,
    db: Session = Depends(get_db),
    user: Principal = Depends(require_permission(Resource.QUOTES, Action.WRITE)),
) -> ApiResponse[QuoteRead]:
    reason = dto.reason if dto else None
    return ok(quote_lifecycle_service.reject(db, user, quote_id, reason), message="Quote rejected")


@quotes_router.post("/{quote_id}/cancel", response_model=ApiResponse[QuoteRead])
def cancel_quote(
    quote_id: uuid.UUID,
    dto: DecisionRequest | None = None,
    db: Session = Depends(get_db),
    user: Principal = Depends(require_permission(Resource.QUOTES, Action.WRITE)),
) -> ApiResponse[QuoteRead]:
    reason = dto.reason if dto else None
    return ok(quote_lifecycle_service.cancel(db, user, quote_id, reason), message="Quote request cancelled")


@quotes_router.delete("/{quote_id}", response_model=ApiResponse[None])
def delete_quote(
    quote_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: Principal = Depends(require_permission(Resource.QUOTES, Action.DELETE)),
) -> ApiResponse[None]:
    quote_lifecycle_service.delete(db, user, quote_id)
    return ok(None, message="Quote request deleted")


@analytics_router.get("/summary", response_model=ApiResponse[AnalyticsSummary])
def analytics_summary(
    days: int = Query(default=30, ge=1, le=365),
    db: Session = Depends(get_db),
    _user: Principal = Depends(require_permission(Resource.ANALYTICS, Action.READ)),
) -> ApiResponse[AnalyticsSummary]:
    return ok(analytics_recorder.summary(db, days=days))
