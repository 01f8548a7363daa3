from __future__ import annotations

import logging
from typing import Protocol

from toolgostar.leads.analytics import SubmissionEvent


logger = logging.getLogger("toolgostar.notifications")


class LeadNotifier(Protocol):
    """Outbound channel telling staff about a new lead; delivery itself lives outside this service."""

    def notify_new_lead(self, event: SubmissionEvent) -> None:
        ...


class LoggingLeadNotifier:
    def notify_new_lead(self, event: SubmissionEvent) -> None:
        logger.info("lead.notification_requested", extra={"form_type": event.form_type, "entity_id": event.contact_id})


_notifier: LeadNotifier = LoggingLeadNotifier()


def get_lead_notifier() -> LeadNotifier:
    return _notifier


def set_lead_notifier(notifier: LeadNotifier) -> None:
    global _notifier
    _notifier = notifier
