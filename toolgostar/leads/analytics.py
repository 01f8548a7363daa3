from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Iterator
from contextlib import AbstractContextManager, contextmanager
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from typing import Any
from urllib.parse import urlsplit

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from toolgostar.core.database import SessionLocal
from toolgostar.leads.models import ContactAnalytics
from toolgostar.leads.schemas import AnalyticsSummary, TrackingFields
from toolgostar.metrics import observe_analytics_failure


logger = logging.getLogger("toolgostar.analytics")

SEARCH_HOSTS = ("google.", "bing.", "yahoo.", "duckduckgo.", "baidu.", "yandex.")
SOCIAL_DOMAINS = (
    "facebook.com",
    "fb.com",
    "linkedin.com",
    "lnkd.in",
    "twitter.com",
    "x.com",
    "t.co",
    "instagram.com",
    "youtube.com",
)


def determine_conversion_source(
    referrer: str | None,
    utm_medium: str | None = None,
    frontend_host: str | None = None,
) -> str:
    if utm_medium and utm_medium.strip().lower() in {"email", "e-mail", "newsletter"}:
        return "email"
    if not referrer:
        return "direct"
    try:
        host = (urlsplit(referrer).hostname or "").lower()
    except ValueError:
        return "other"
    if not host:
        return "other"
    if frontend_host and (host == frontend_host or host.endswith(f".{frontend_host}")):
        return "direct"
    if any(marker in host for marker in SEARCH_HOSTS):
        return "search"
    if any(host == domain or host.endswith(f".{domain}") for domain in SOCIAL_DOMAINS):
        return "social"
    return "referral"


@dataclass(frozen=True, slots=True)
class SubmissionEvent:
    form_type: str
    contact_id: str | None
    page_url: str | None = None
    referrer_url: str | None = None
    time_on_page: int | None = None
    form_completion_time: int | None = None
    session_id: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    utm_source: str | None = None
    utm_medium: str | None = None
    utm_campaign: str | None = None
    utm_term: str | None = None
    utm_content: str | None = None
    correlation_id: str | None = None

    @classmethod
    def from_submission(
        cls,
        form_type: str,
        contact_id: uuid.UUID,
        tracking: TrackingFields,
        *,
        ip_address: str | None,
        user_agent: str | None,
        correlation_id: str | None = None,
    ) -> SubmissionEvent:
        fields = tracking.model_dump(include=set(TrackingFields.model_fields))
        return cls(
            form_type=form_type,
            contact_id=str(contact_id),
            ip_address=ip_address,
            user_agent=user_agent,
            correlation_id=correlation_id,
            **fields,
        )

    def as_payload(self) -> dict[str, Any]:
        return asdict(self)


SessionScope = Callable[[], AbstractContextManager[Session]]


@contextmanager
def _default_session_scope() -> Iterator[Session]:
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


class AnalyticsRecorder:
    """Best-effort writer for submission analytics.

    Runs outside the intake transaction with its own session. Failures are logged and
    reported as ``None``; they never reach the caller.
    """

    def __init__(self, session_scope: SessionScope = _default_session_scope, frontend_host: str | None = None) -> None:
        self._session_scope = session_scope
        self._frontend_host = frontend_host

    def configure(self, *, session_scope: SessionScope | None = None, frontend_host: str | None = None) -> None:
        if session_scope is not None:
            self._session_scope = session_scope
        if frontend_host is not None:
            self._frontend_host = frontend_host.lower()

    def track(self, event: SubmissionEvent) -> ContactAnalytics | None:
        try:
            with self._session_scope() as session:
                try:
                    row = ContactAnalytics(
                        form_type=event.form_type,
                        contact_id=uuid.UUID(event.contact_id) if event.contact_id else None,
                        page_url=event.page_url,
                        referrer_url=event.referrer_url,
                        conversion_source=determine_conversion_source(
                            event.referrer_url,
                            event.utm_medium,
                            self._frontend_host,
                        ),
                        time_on_page=event.time_on_page,
                        form_completion_time=event.form_completion_time,
                        session_id=event.session_id,
                        ip_address=event.ip_address,
                        user_agent=event.user_agent,
                        utm_source=event.utm_source,
                        utm_medium=event.utm_medium,
                        utm_campaign=event.utm_campaign,
                        utm_term=event.utm_term,
                        utm_content=event.utm_content,
                    )
                    session.add(row)
                    session.commit()
                    session.refresh(row)
                    return row
                except Exception:
                    session.rollback()
                    raise
        except Exception as exc:
            observe_analytics_failure(event.form_type)
            logger.warning(
                "analytics.track_failed",
                exc_info=True,
                extra={"form_type": event.form_type, "entity_id": event.contact_id, "error": str(exc)},
            )
            return None

    def summary(self, session: Session, days: int = 30, now: datetime | None = None) -> AnalyticsSummary:
        since = (now or datetime.now(timezone.utc)) - timedelta(days=days)
        window = ContactAnalytics.created_at >= since

        by_form_type = {
            str(form_type): int(count)
            for form_type, count in session.execute(
                select(ContactAnalytics.form_type, func.count()).where(window).group_by(ContactAnalytics.form_type)
            ).all()
        }
        by_source = {
            str(source): int(count)
            for source, count in session.execute(
                select(ContactAnalytics.conversion_source, func.count())
                .where(window)
                .group_by(ContactAnalytics.conversion_source)
            ).all()
        }
        average = session.scalar(select(func.avg(ContactAnalytics.form_completion_time)).where(window))
        return AnalyticsSummary(
            period_days=days,
            total_submissions=sum(by_form_type.values()),
            by_form_type=by_form_type,
            by_conversion_source=by_source,
            average_completion_seconds=round(float(average), 2) if average is not None else None,
        )


analytics_recorder = AnalyticsRecorder()
