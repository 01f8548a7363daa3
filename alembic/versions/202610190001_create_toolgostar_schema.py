"""create users, contacts, quote requests and contact analytics

Revision ID: 202610190001
Revises:
Create Date: 2026-10-19 00:01:00
"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa


revision: str = "202610190001"
down_revision: str | None = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("first_name", sa.String(length=100), nullable=False),
        sa.Column("last_name", sa.String(length=100), nullable=False),
        sa.Column("role", sa.String(length=16), nullable=False, server_default="editor"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("last_login_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("row_version", sa.Integer(), nullable=False, server_default="1"),
        sa.CheckConstraint("role IN ('admin', 'editor', 'viewer')", name="ck_users_role"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "contacts",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("first_name", sa.String(length=50), nullable=False),
        sa.Column("last_name", sa.String(length=50), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("phone", sa.String(length=50), nullable=True),
        sa.Column("company", sa.String(length=100), nullable=True),
        sa.Column("job_title", sa.String(length=100), nullable=True),
        sa.Column("industry", sa.String(length=32), nullable=True),
        sa.Column("project_type", sa.String(length=32), nullable=True),
        sa.Column("subject", sa.String(length=255), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("urgency", sa.String(length=16), nullable=True),
        sa.Column("preferred_contact_method", sa.String(length=16), nullable=True),
        sa.Column("capacity", sa.String(length=100), nullable=True),
        sa.Column("budget", sa.String(length=100), nullable=True),
        sa.Column("timeline", sa.String(length=100), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="new"),
        sa.Column("priority", sa.String(length=16), nullable=False, server_default="medium"),
        sa.Column("assigned_to_id", sa.Uuid(), nullable=True),
        sa.Column("internal_notes", sa.Text(), nullable=True),
        sa.Column("gdpr_consent", sa.Boolean(), nullable=False),
        sa.Column("marketing_consent", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("source", sa.String(length=32), nullable=False, server_default="contact_form"),
        sa.Column("ip_address", sa.String(length=64), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column("replied_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("row_version", sa.Integer(), nullable=False, server_default="1"),
        sa.CheckConstraint("gdpr_consent", name="ck_contacts_gdpr_consent"),
        sa.CheckConstraint("status IN ('new', 'in_progress', 'replied', 'closed')", name="ck_contacts_status"),
        sa.CheckConstraint("priority IN ('low', 'medium', 'high', 'urgent')", name="ck_contacts_priority"),
        sa.ForeignKeyConstraint(["assigned_to_id"], ["users.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_contacts_email", "contacts", ["email"], unique=False)
    op.create_index(
        "ix_contacts_workflow",
        "contacts",
        ["status", "priority", "assigned_to_id", "created_at"],
        unique=False,
    )

    op.create_table(
        "quote_requests",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("contact_id", sa.Uuid(), nullable=False),
        sa.Column("quote_number", sa.String(length=50), nullable=False),
        sa.Column("project_name", sa.String(length=255), nullable=True),
        sa.Column("project_type", sa.String(length=32), nullable=True),
        sa.Column("application_area", sa.String(length=32), nullable=True),
        sa.Column("required_capacity", sa.String(length=100), nullable=False),
        sa.Column("flow_rate", sa.JSON(), nullable=True),
        sa.Column("pressure", sa.JSON(), nullable=True),
        sa.Column("temperature", sa.JSON(), nullable=True),
        sa.Column("water_quality", sa.JSON(), nullable=True),
        sa.Column("site_conditions", sa.JSON(), nullable=True),
        sa.Column("site_address", sa.JSON(), nullable=True),
        sa.Column("timeline", sa.String(length=32), nullable=False),
        sa.Column("budget", sa.String(length=32), nullable=False),
        sa.Column("additional_requirements", sa.Text(), nullable=True),
        sa.Column("services_required", sa.JSON(), nullable=False),
        sa.Column("certification_requirements", sa.JSON(), nullable=False),
        sa.Column("warranty_requirements", sa.String(length=500), nullable=True),
        sa.Column("special_requirements", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="pending"),
        sa.Column("priority", sa.String(length=16), nullable=False, server_default="medium"),
        sa.Column("assigned_to_id", sa.Uuid(), nullable=True),
        sa.Column("quote_amount", sa.Numeric(precision=15, scale=2), nullable=True),
        sa.Column("internal_notes", sa.Text(), nullable=True),
        sa.Column("quoted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("decided_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("row_version", sa.Integer(), nullable=False, server_default="1"),
        sa.CheckConstraint(
            "status IN ('pending', 'in_progress', 'quoted', 'approved', 'rejected', 'cancelled')",
            name="ck_quote_requests_status",
        ),
        sa.CheckConstraint("quote_amount IS NULL OR quote_amount > 0", name="ck_quote_requests_amount_positive"),
        sa.ForeignKeyConstraint(["contact_id"], ["contacts.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["assigned_to_id"], ["users.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("contact_id", name="uq_quote_requests_contact_id"),
        sa.UniqueConstraint("quote_number", name="uq_quote_requests_quote_number"),
    )
    op.create_index(
        "ix_quote_requests_workflow",
        "quote_requests",
        ["status", "priority", "assigned_to_id", "created_at"],
        unique=False,
    )

    op.create_table(
        "contact_analytics",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("form_type", sa.String(length=16), nullable=False),
        sa.Column("contact_id", sa.Uuid(), nullable=True),
        sa.Column("page_url", sa.String(length=500), nullable=True),
        sa.Column("referrer_url", sa.String(length=500), nullable=True),
        sa.Column("conversion_source", sa.String(length=16), nullable=False),
        sa.Column("time_on_page", sa.Integer(), nullable=True),
        sa.Column("form_completion_time", sa.Integer(), nullable=True),
        sa.Column("session_id", sa.String(length=255), nullable=True),
        sa.Column("ip_address", sa.String(length=64), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column("utm_source", sa.String(length=100), nullable=True),
        sa.Column("utm_medium", sa.String(length=100), nullable=True),
        sa.Column("utm_campaign", sa.String(length=100), nullable=True),
        sa.Column("utm_term", sa.String(length=100), nullable=True),
        sa.Column("utm_content", sa.String(length=100), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_contact_analytics_form_created",
        "contact_analytics",
        ["form_type", "created_at"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_contact_analytics_form_created", table_name="contact_analytics")
    op.drop_table("contact_analytics")
    op.drop_index("ix_quote_requests_workflow", table_name="quote_requests")
    op.drop_table("quote_requests")
    op.drop_index("ix_contacts_workflow", table_name="contacts")
    op.drop_index("ix_contacts_email", table_name="contacts")
    op.drop_table("contacts")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
