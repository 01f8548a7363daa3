"""Status rules for contacts and quote requests.

Every function here is pure: it takes the current status and returns the next one or
raises ``InvalidTransition``. Persistence lives in ``toolgostar.leads.service``.
"""

from __future__ import annotations

from decimal import Decimal
from enum import StrEnum

from toolgostar.core.errors import InvalidTransition, ValidationError


class ContactStatus(StrEnum):
    NEW = "new"
    IN_PROGRESS = "in_progress"
    REPLIED = "replied"
    CLOSED = "closed"


class QuoteStatus(StrEnum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    QUOTED = "quoted"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class Priority(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


OPEN_CONTACT_STATUSES = frozenset({ContactStatus.NEW, ContactStatus.IN_PROGRESS})
TERMINAL_QUOTE_STATUSES = frozenset({QuoteStatus.APPROVED, QuoteStatus.REJECTED, QuoteStatus.CANCELLED})


def contact_status_after_assign(current: ContactStatus | str) -> ContactStatus:
    status = ContactStatus(current)
    return ContactStatus.IN_PROGRESS if status is ContactStatus.NEW else status


def contact_status_after_reply(current: ContactStatus | str) -> ContactStatus:
    status = ContactStatus(current)
    if status not in OPEN_CONTACT_STATUSES:
        raise InvalidTransition("contact", status.value, ContactStatus.REPLIED.value)
    return ContactStatus.REPLIED


def contact_status_after_close(current: ContactStatus | str) -> ContactStatus:
    status = ContactStatus(current)
    if status is ContactStatus.CLOSED:
        raise InvalidTransition("contact", status.value, ContactStatus.CLOSED.value)
    return ContactStatus.CLOSED


def quote_status_after_assign(current: QuoteStatus | str) -> QuoteStatus:
    status = QuoteStatus(current)
    return QuoteStatus.IN_PROGRESS if status is QuoteStatus.PENDING else status


def quote_status_after_quote(current: QuoteStatus | str) -> QuoteStatus:
    status = QuoteStatus(current)
    if status not in {QuoteStatus.PENDING, QuoteStatus.IN_PROGRESS}:
        raise InvalidTransition("quote request", status.value, QuoteStatus.QUOTED.value)
    return QuoteStatus.QUOTED


def quote_status_after_decision(current: QuoteStatus | str, approved: bool) -> QuoteStatus:
    status = QuoteStatus(current)
    target = QuoteStatus.APPROVED if approved else QuoteStatus.REJECTED
    if status is not QuoteStatus.QUOTED:
        raise InvalidTransition("quote request", status.value, target.value)
    return target


def quote_status_after_cancel(current: QuoteStatus | str) -> QuoteStatus:
    status = QuoteStatus(current)
    if status in TERMINAL_QUOTE_STATUSES:
        raise InvalidTransition("quote request", status.value, QuoteStatus.CANCELLED.value)
    return QuoteStatus.CANCELLED


def require_positive_amount(amount: Decimal | None) -> Decimal:
    if amount is None or amount <= 0:
        raise ValidationError.for_field("quote_amount", "quote amount must be greater than zero")
    return amount.quantize(Decimal("0.01"))
