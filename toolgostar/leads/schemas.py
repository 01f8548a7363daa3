from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field, StrictBool, field_validator, model_validator

from toolgostar.leads.lifecycle import ContactStatus, Priority, QuoteStatus
from toolgostar.leads.quote_numbers import QUOTE_NUMBER_PATTERN


PHONE_PATTERN = r"^\+?[\d\s\-\(\)]+$"

Industry = Literal[
    "manufacturing",
    "chemical",
    "pharmaceutical",
    "food-beverage",
    "oil-gas",
    "mining",
    "municipal",
    "agriculture",
    "textile",
    "paper-pulp",
    "power-generation",
    "other",
]
ContactProjectType = Literal["new-installation", "upgrade", "maintenance", "consultation", "spare-parts"]
Urgency = Literal["low", "medium", "high", "urgent"]
ContactMethod = Literal["email", "phone", "sms", "whatsapp"]
ContactSource = Literal["contact_form", "website", "referral", "social_media", "advertisement", "trade_show", "other"]
QuoteProjectType = Literal["new_installation", "upgrade", "replacement", "expansion", "other"]
ApplicationArea = Literal[
    "drinking_water",
    "wastewater",
    "industrial_process",
    "swimming_pool",
    "cooling_tower",
    "boiler_feedwater",
    "other",
]
Timeline = Literal["immediate", "within_month", "within_quarter", "within_6_months", "within_year"]
Budget = Literal["under_10k", "10k_50k", "50k_100k", "100k_500k", "500k_1m", "over_1m"]
Service = Literal["design", "installation", "commissioning", "training", "maintenance", "monitoring", "consulting"]
Certification = Literal["iso_9001", "iso_14001", "nsf", "ce_marking", "ul_listed", "wqa", "other"]


def _strip(value: str | None) -> str | None:
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


class TrackingFields(BaseModel):
    page_url: str | None = Field(default=None, max_length=500)
    referrer_url: str | None = Field(default=None, max_length=500)
    session_id: str | None = Field(default=None, max_length=255)
    time_on_page: int | None = Field(default=None, ge=0)
    form_completion_time: int | None = Field(default=None, ge=0)
    utm_source: str | None = Field(default=None, max_length=100)
    utm_medium: str | None = Field(default=None, max_length=100)
    utm_campaign: str | None = Field(default=None, max_length=100)
    utm_term: str | None = Field(default=None, max_length=100)
    utm_content: str | None = Field(default=None, max_length=100)


class ConsentFields(BaseModel):
    # Only a literal JSON true counts as consent; "yes", 1 and "true" are refused.
    gdpr_consent: StrictBool
    marketing_consent: bool = False

    @field_validator("gdpr_consent")
    @classmethod
    def gdpr_must_be_given(cls, value: bool) -> bool:
        if value is not True:
            raise ValueError("GDPR consent is required")
        return value


class ContactSubmit(TrackingFields, ConsentFields):
    first_name: str = Field(min_length=2, max_length=50)
    last_name: str = Field(min_length=2, max_length=50)
    email: EmailStr
    phone: str | None = Field(default=None, max_length=50, pattern=PHONE_PATTERN)
    company: str | None = Field(default=None, max_length=100)
    industry: Industry | None = None
    project_type: ContactProjectType | None = None
    subject: str = Field(min_length=5, max_length=255)
    message: str = Field(min_length=10, max_length=5000)
    urgency: Urgency | None = None
    preferred_contact_method: ContactMethod | None = None
    capacity: str | None = Field(default=None, max_length=100)
    budget: str | None = Field(default=None, max_length=100)
    timeline: str | None = Field(default=None, max_length=100)
    source: ContactSource = "contact_form"

    @field_validator("first_name", "last_name", "subject", "message", mode="before")
    @classmethod
    def strip_required(cls, value: object) -> object:
        return value.strip() if isinstance(value, str) else value

    @field_validator("company", "capacity", "budget", "timeline", "phone")
    @classmethod
    def strip_optional(cls, value: str | None) -> str | None:
        return _strip(value)


class Address(BaseModel):
    street: str | None = Field(default=None, max_length=255)
    city: str | None = Field(default=None, max_length=100)
    state: str | None = Field(default=None, max_length=100)
    country: str | None = Field(default=None, max_length=100)
    postal_code: str | None = Field(default=None, max_length=20)


class QuoteContactInfo(BaseModel):
    first_name: str = Field(min_length=2, max_length=50)
    last_name: str = Field(min_length=2, max_length=50)
    email: EmailStr
    phone: str = Field(min_length=5, max_length=50, pattern=PHONE_PATTERN)
    company: str = Field(min_length=2, max_length=100)
    job_title: str | None = Field(default=None, max_length=100)
    industry: Industry
    address: Address | None = None

    @field_validator("first_name", "last_name", "company", mode="before")
    @classmethod
    def strip_required(cls, value: object) -> object:
        return value.strip() if isinstance(value, str) else value


class FlowRate(BaseModel):
    value: float = Field(gt=0)
    unit: Literal["lph", "gpm", "m3h", "mgd"]


class Pressure(BaseModel):
    value: float = Field(ge=0)
    unit: Literal["bar", "psi", "kpa"]


class Temperature(BaseModel):
    min: float | None = None
    max: float | None = None
    unit: Literal["celsius", "fahrenheit"] = "celsius"

    @model_validator(mode="after")
    def ordered_range(self) -> "Temperature":
        if self.min is not None and self.max is not None and self.min > self.max:
            raise ValueError("minimum temperature exceeds maximum")
        return self


class WaterQuality(BaseModel):
    tds: float | None = Field(default=None, ge=0)
    ph: float | None = Field(default=None, ge=0, le=14)
    turbidity: float | None = Field(default=None, ge=0)
    hardness: float | None = Field(default=None, ge=0)
    chlorine: float | None = Field(default=None, ge=0)
    iron: float | None = Field(default=None, ge=0)
    other_contaminants: str | None = Field(default=None, max_length=1000)


class SiteConditions(BaseModel):
    location: Literal["indoor", "outdoor", "both"] | None = None
    power_supply: Literal["single_phase", "three_phase", "dc", "solar"] | None = None
    space_constraints: str | None = Field(default=None, max_length=1000)
    access_limitations: str | None = Field(default=None, max_length=1000)
    environmental_factors: str | None = Field(default=None, max_length=1000)


class ProjectDetails(BaseModel):
    project_name: str | None = Field(default=None, max_length=255)
    project_type: QuoteProjectType | None = None
    application_area: ApplicationArea | None = None
    required_capacity: str = Field(min_length=1, max_length=100)
    flow_rate: FlowRate | None = None
    pressure: Pressure | None = None
    temperature: Temperature | None = None
    water_quality: WaterQuality | None = None
    site_conditions: SiteConditions | None = None
    timeline: Timeline
    budget: Budget
    additional_requirements: str | None = Field(default=None, max_length=5000)


class QuoteSubmit(TrackingFields, ConsentFields):
    contact_info: QuoteContactInfo
    project_details: ProjectDetails
    services_required: list[Service] = Field(default_factory=list)
    certification_requirements: list[Certification] = Field(default_factory=list)
    warranty_requirements: str | None = Field(default=None, max_length=500)
    special_requirements: str | None = Field(default=None, max_length=5000)
    quote_number: str | None = Field(default=None, pattern=QUOTE_NUMBER_PATTERN)

    @field_validator("services_required", "certification_requirements")
    @classmethod
    def unique_items(cls, value: list[str]) -> list[str]:
        return list(dict.fromkeys(value))


class ContactRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    first_name: str
    last_name: str
    email: str
    phone: str | None
    company: str | None
    job_title: str | None
    industry: str | None
    project_type: str | None
    subject: str
    message: str
    urgency: str | None
    preferred_contact_method: str | None
    capacity: str | None
    budget: str | None
    timeline: str | None
    status: ContactStatus
    priority: Priority
    assigned_to_id: UUID | None
    internal_notes: str | None
    gdpr_consent: bool
    marketing_consent: bool
    source: str
    ip_address: str | None
    user_agent: str | None
    replied_at: datetime | None
    closed_at: datetime | None
    created_at: datetime
    updated_at: datetime
    row_version: int
    quote_number: str | None = None


class QuoteRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    contact_id: UUID
    quote_number: str
    project_name: str | None
    project_type: str | None
    application_area: str | None
    required_capacity: str
    flow_rate: dict | None
    pressure: dict | None
    temperature: dict | None
    water_quality: dict | None
    site_conditions: dict | None
    site_address: dict | None
    timeline: str
    budget: str
    additional_requirements: str | None
    services_required: list[str]
    certification_requirements: list[str]
    warranty_requirements: str | None
    special_requirements: str | None
    status: QuoteStatus
    priority: Priority
    assigned_to_id: UUID | None
    quote_amount: Decimal | None
    internal_notes: str | None
    quoted_at: datetime | None
    decided_at: datetime | None
    created_at: datetime
    updated_at: datetime
    row_version: int


class QuoteSubmissionRead(BaseModel):
    contact: ContactRead
    quote_request: QuoteRead


class ContactStatusUpdate(BaseModel):
    """Administrative override; ignores the usual status ordering."""

    status: ContactStatus | None = None
    priority: Priority | None = None
    assigned_to: UUID | None = None
    internal_note: str | None = Field(default=None, max_length=2000)

    @model_validator(mode="after")
    def something_to_change(self) -> "ContactStatusUpdate":
        if all(getattr(self, name) is None for name in ("status", "priority", "assigned_to", "internal_note")):
            raise ValueError("at least one of status, priority, assigned_to or internal_note is required")
        return self


class AssignRequest(BaseModel):
    user_id: UUID


class NoteRequest(BaseModel):
    internal_note: str | None = Field(default=None, max_length=2000)


class QuoteUpdate(BaseModel):
    priority: Priority | None = None
    internal_note: str | None = Field(default=None, max_length=2000)


class MarkQuotedRequest(BaseModel):
    quote_amount: Decimal = Field(gt=0, max_digits=15, decimal_places=2)
    internal_note: str | None = Field(default=None, max_length=2000)


class DecisionRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=2000)


class ContactFilters(BaseModel):
    status: ContactStatus | None = None
    priority: Priority | None = None
    assigned_to: UUID | None = None
    search: str | None = None
    date_from: datetime | None = None
    date_to: datetime | None = None


class QuoteFilters(BaseModel):
    status: QuoteStatus | None = None
    priority: Priority | None = None
    assigned_to: UUID | None = None
    search: str | None = None
    date_from: datetime | None = None
    date_to: datetime | None = None


class ContactStats(BaseModel):
    total: int
    by_status: dict[str, int]
    by_priority: dict[str, int]
    open: int
    unassigned: int


class QuoteStats(BaseModel):
    total: int
    by_status: dict[str, int]
    by_priority: dict[str, int]
    quoted_value_total: Decimal


class AnalyticsSummary(BaseModel):
    period_days: int
    total_submissions: int
    by_form_type: dict[str, int]
    by_conversion_source: dict[str, int]
    average_completion_seconds: float | None
