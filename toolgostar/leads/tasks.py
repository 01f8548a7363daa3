from __future__ import annotations

import logging
from typing import Any

from toolgostar.core.celery_app import celery_app
from toolgostar.core.config import get_settings
from toolgostar.leads.analytics import SubmissionEvent, analytics_recorder
from toolgostar.leads.notifications import get_lead_notifier


logger = logging.getLogger("toolgostar.analytics")


@celery_app.task(name="toolgostar.leads.track_submission", ignore_result=True)
def track_submission_task(payload: dict[str, Any]) -> None:
    analytics_recorder.track(SubmissionEvent(**payload))


def _notify(event: SubmissionEvent) -> None:
    try:
        get_lead_notifier().notify_new_lead(event)
    except Exception as exc:
        logger.warning("lead.notification_failed", extra={"form_type": event.form_type, "error": str(exc)})


def dispatch_submission(event: SubmissionEvent) -> None:
    """Runs after the response is sent; nothing raised here reaches the submitter."""

    _notify(event)
    if get_settings().analytics_dispatch.lower() != "celery":
        analytics_recorder.track(event)
        return
    try:
        track_submission_task.delay(event.as_payload())
    except Exception as exc:
        # Broker outages drop the event rather than retrying in the request path.
        logger.warning("analytics.enqueue_failed", extra={"form_type": event.form_type, "error": str(exc)})
