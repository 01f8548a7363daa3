from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from toolgostar import events
from toolgostar.auth.schemas import normalize_email
from toolgostar.core.errors import ConflictError, InternalError
from toolgostar.leads.lifecycle import ContactStatus, Priority, QuoteStatus
from toolgostar.leads.models import Contact, QuoteRequest, utcnow
from toolgostar.leads.quote_numbers import generate_quote_number
from toolgostar.leads.schemas import ContactRead, ContactSubmit, QuoteRead, QuoteSubmit, QuoteSubmissionRead
from toolgostar.metrics import observe_lead_submission
from toolgostar.otel import get_tracer


logger = logging.getLogger("toolgostar.leads.intake")
tracer = get_tracer("toolgostar.leads")

QUOTE_CONTACT_SUBJECT = "Quote Request"
_GENERATED_NUMBER_ATTEMPTS = 3


def _dump(model: Any) -> dict[str, Any] | None:
    return model.model_dump(mode="json", exclude_none=True) if model is not None else None


def build_contact(dto: ContactSubmit, *, ip_address: str | None, user_agent: str | None) -> Contact:
    return Contact(
        first_name=dto.first_name,
        last_name=dto.last_name,
        email=normalize_email(str(dto.email)),
        phone=dto.phone,
        company=dto.company,
        industry=dto.industry,
        project_type=dto.project_type,
        subject=dto.subject,
        message=dto.message,
        urgency=dto.urgency,
        preferred_contact_method=dto.preferred_contact_method,
        capacity=dto.capacity,
        budget=dto.budget,
        timeline=dto.timeline,
        status=ContactStatus.NEW.value,
        priority=Priority.MEDIUM.value,
        gdpr_consent=dto.gdpr_consent,
        marketing_consent=dto.marketing_consent,
        source=dto.source,
        ip_address=ip_address,
        user_agent=user_agent,
    )


def build_quote_submission(
    dto: QuoteSubmit,
    quote_number: str,
    *,
    ip_address: str | None,
    user_agent: str | None,
) -> Contact:
    info = dto.contact_info
    details = dto.project_details
    contact = Contact(
        first_name=info.first_name,
        last_name=info.last_name,
        email=normalize_email(str(info.email)),
        phone=info.phone,
        company=info.company,
        job_title=info.job_title,
        industry=info.industry,
        subject=QUOTE_CONTACT_SUBJECT,
        message=f"Quote request for: {details.required_capacity}",
        capacity=details.required_capacity,
        budget=details.budget,
        timeline=details.timeline,
        status=ContactStatus.NEW.value,
        priority=Priority.MEDIUM.value,
        gdpr_consent=dto.gdpr_consent,
        marketing_consent=dto.marketing_consent,
        source="quote_form",
        ip_address=ip_address,
        user_agent=user_agent,
    )
    contact.quote_request = QuoteRequest(
        quote_number=quote_number,
        project_name=details.project_name,
        project_type=details.project_type,
        application_area=details.application_area,
        required_capacity=details.required_capacity,
        flow_rate=_dump(details.flow_rate),
        pressure=_dump(details.pressure),
        temperature=_dump(details.temperature),
        water_quality=_dump(details.water_quality),
        site_conditions=_dump(details.site_conditions),
        site_address=_dump(info.address),
        timeline=details.timeline,
        budget=details.budget,
        additional_requirements=details.additional_requirements,
        services_required=list(dto.services_required),
        certification_requirements=list(dto.certification_requirements),
        warranty_requirements=dto.warranty_requirements,
        special_requirements=dto.special_requirements,
        status=QuoteStatus.PENDING.value,
        priority=Priority.MEDIUM.value,
    )
    return contact


class LeadIntakeService:
    def __init__(self, quote_number_factory: Callable[[], str] = generate_quote_number) -> None:
        self._quote_number_factory = quote_number_factory

    def submit_contact(
        self,
        session: Session,
        dto: ContactSubmit,
        *,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> ContactRead:
        contact = build_contact(dto, ip_address=ip_address, user_agent=user_agent)
        session.add(contact)
        try:
            session.commit()
        except Exception:
            session.rollback()
            raise
        session.refresh(contact)

        created = ContactRead.model_validate(contact)
        observe_lead_submission("contact")
        self._publish("lead.contact.submitted", {"contact_id": str(contact.id), "source": contact.source})
        logger.info("lead.contact_submitted", extra={"entity_id": str(contact.id)})
        return created

    def submit_quote(
        self,
        session: Session,
        dto: QuoteSubmit,
        *,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> QuoteSubmissionRead:
        if dto.quote_number and session.scalar(
            select(QuoteRequest.id).where(QuoteRequest.quote_number == dto.quote_number)
        ):
            raise ConflictError(
                "Quote number already exists",
                code="DUPLICATE_ENTRY",
                details={"field": "quote_number"},
            )

        attempts = 1 if dto.quote_number else _GENERATED_NUMBER_ATTEMPTS
        with tracer.start_as_current_span("lead.quote.persist") as span:
            for attempt in range(1, attempts + 1):
                quote_number = dto.quote_number or self._quote_number_factory()
                contact = build_quote_submission(dto, quote_number, ip_address=ip_address, user_agent=user_agent)
                session.add(contact)
                try:
                    # Contact and quote commit together or not at all.
                    session.commit()
                    break
                except IntegrityError as exc:
                    session.rollback()
                    if attempt == attempts:
                        raise ConflictError(
                            "Quote number already exists",
                            code="DUPLICATE_ENTRY",
                            details={"field": "quote_number"},
                        ) from exc
                    logger.warning("lead.quote_number_collision", extra={"status": f"attempt={attempt}"})
                except Exception:
                    session.rollback()
                    raise
            span.set_attribute("lead.quote_number", quote_number)
            span.set_attribute("lead.attempts", attempt)

        session.refresh(contact)
        quote = contact.quote_request
        if quote is None:
            raise InternalError("Quote request was not persisted")
        contact_read = ContactRead.model_validate(contact).model_copy(update={"quote_number": quote.quote_number})
        quote_read = QuoteRead.model_validate(quote)

        observe_lead_submission("quote")
        self._publish(
            "lead.quote.submitted",
            {"contact_id": str(contact.id), "quote_id": str(quote.id), "quote_number": quote.quote_number},
        )
        logger.info("lead.quote_submitted", extra={"entity_id": str(quote.id)})
        return QuoteSubmissionRead(contact=contact_read, quote_request=quote_read)

    @staticmethod
    def _publish(event_type: str, payload: dict[str, Any]) -> None:
        events.publish(
            {
                "event_id": str(uuid.uuid4()),
                "event_type": event_type,
                "occurred_at": utcnow().isoformat(),
                "actor_user_id": None,
                "version": 1,
                "payload": payload,
            }
        )


lead_intake_service = LeadIntakeService()
