from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from toolgostar.core.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Contact(Base):
    __tablename__ = "contacts"
    __table_args__ = (
        Index("ix_contacts_workflow", "status", "priority", "assigned_to_id", "created_at"),
        Index("ix_contacts_email", "email"),
        CheckConstraint("gdpr_consent", name="ck_contacts_gdpr_consent"),
        CheckConstraint("status IN ('new', 'in_progress', 'replied', 'closed')", name="ck_contacts_status"),
        CheckConstraint("priority IN ('low', 'medium', 'high', 'urgent')", name="ck_contacts_priority"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    first_name: Mapped[str] = mapped_column(String(50), nullable=False)
    last_name: Mapped[str] = mapped_column(String(50), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    company: Mapped[str | None] = mapped_column(String(100), nullable=True)
    job_title: Mapped[str | None] = mapped_column(String(100), nullable=True)
    industry: Mapped[str | None] = mapped_column(String(32), nullable=True)
    project_type: Mapped[str | None] = mapped_column(String(32), nullable=True)
    subject: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    urgency: Mapped[str | None] = mapped_column(String(16), nullable=True)
    preferred_contact_method: Mapped[str | None] = mapped_column(String(16), nullable=True)
    capacity: Mapped[str | None] = mapped_column(String(100), nullable=True)
    budget: Mapped[str | None] = mapped_column(String(100), nullable=True)
    timeline: Mapped[str | None] = mapped_column(String(100), nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="new", server_default="new")
    priority: Mapped[str] = mapped_column(String(16), nullable=False, default="medium", server_default="medium")
    assigned_to_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=True,
    )
    internal_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    gdpr_consent: Mapped[bool] = mapped_column(Boolean, nullable=False)
    marketing_consent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    source: Mapped[str] = mapped_column(String(32), nullable=False, default="contact_form", server_default="contact_form")
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
    replied_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )
    row_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")

    quote_request: Mapped[QuoteRequest | None] = relationship(
        "QuoteRequest",
        back_populates="contact",
        uselist=False,
        cascade="all, delete-orphan",
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class QuoteRequest(Base):
    __tablename__ = "quote_requests"
    __table_args__ = (
        Index("ix_quote_requests_workflow", "status", "priority", "assigned_to_id", "created_at"),
        CheckConstraint("quote_amount IS NULL OR quote_amount > 0", name="ck_quote_requests_amount_positive"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    contact_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("contacts.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    quote_number: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    project_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    project_type: Mapped[str | None] = mapped_column(String(32), nullable=True)
    application_area: Mapped[str | None] = mapped_column(String(32), nullable=True)
    required_capacity: Mapped[str] = mapped_column(String(100), nullable=False)
    flow_rate: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    pressure: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    temperature: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    water_quality: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    site_conditions: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    site_address: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    timeline: Mapped[str] = mapped_column(String(32), nullable=False)
    budget: Mapped[str] = mapped_column(String(32), nullable=False)
    additional_requirements: Mapped[str | None] = mapped_column(Text, nullable=True)
    services_required: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    certification_requirements: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    warranty_requirements: Mapped[str | None] = mapped_column(String(500), nullable=True)
    special_requirements: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending", server_default="pending")
    priority: Mapped[str] = mapped_column(String(16), nullable=False, default="medium", server_default="medium")
    assigned_to_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=True,
    )
    quote_amount: Mapped[Decimal | None] = mapped_column(Numeric(15, 2), nullable=True)
    internal_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    quoted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    decided_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )
    row_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")

    contact: Mapped[Contact] = relationship("Contact", back_populates="quote_request")


class ContactAnalytics(Base):
    """Append-only submission event; contact_id is a soft reference so analytics never block lead deletes."""

    __tablename__ = "contact_analytics"
    __table_args__ = (Index("ix_contact_analytics_form_created", "form_type", "created_at"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    form_type: Mapped[str] = mapped_column(String(16), nullable=False)
    contact_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    page_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    referrer_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    conversion_source: Mapped[str] = mapped_column(String(16), nullable=False, default="direct")
    time_on_page: Mapped[int | None] = mapped_column(Integer, nullable=True)
    form_completion_time: Mapped[int | None] = mapped_column(Integer, nullable=True)
    session_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
    utm_source: Mapped[str | None] = mapped_column(String(100), nullable=True)
    utm_medium: Mapped[str | None] = mapped_column(String(100), nullable=True)
    utm_campaign: Mapped[str | None] = mapped_column(String(100), nullable=True)
    utm_term: Mapped[str | None] = mapped_column(String(100), nullable=True)
    utm_content: Mapped[str | None] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
