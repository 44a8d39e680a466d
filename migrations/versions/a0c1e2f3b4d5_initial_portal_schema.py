"""initial portal schema

Revision ID: a0c1e2f3b4d5
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect


# revision identifiers, used by Alembic.
revision: str = 'a0c1e2f3b4d5'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


# Free-text answer columns on applications, in form order.
_APPLICATION_TEXT_COLUMNS = (
    "full_name",
    "nric",
    "contact_number",
    "gender",
    "address",
    "postcode",
    "city_country",
    "status",
    "account_holder_name",
    "bank_name",
    "account_number",
    "previous_experience",
    "currently_promoting",
    "working_style",
    "beneficiary_full_name",
    "beneficiary_nric",
    "beneficiary_postcode",
    "beneficiary_city_country",
    "beneficiary_relation",
    "beneficiary_contact_number",
    "beneficiary_email_address",
    "beneficiary_account_holder_name",
    "beneficiary_bank_name",
    "beneficiary_account_number",
    "applicant_signature",
    "signature_name",
    "introducer_name",
    "introducer_id",
)
_APPLICATION_DATE_COLUMNS = ("date_of_birth", "beneficiary_date_of_birth", "signature_date")


def upgrade() -> None:
    """Upgrade schema."""
    bind = op.get_bind()
    insp = inspect(bind)
    existing_tables = set(insp.get_table_names())

    def _has_index(table: str, name: str) -> bool:
        try:
            return any(ix.get("name") == name for ix in insp.get_indexes(table))
        except Exception:
            return False

    if "users" not in existing_tables:
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("email", sa.String(320), nullable=False),
            sa.Column("full_name", sa.String(255), nullable=True),
            sa.Column("password_hash", sa.String(255), nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
            sa.Column("must_change_password", sa.Boolean(), nullable=False, server_default=sa.text("false")),
            sa.Column("created_at", sa.DateTime(timezone=False), nullable=False),
            sa.UniqueConstraint("email"),
        )

    if "roles" not in existing_tables:
        op.create_table(
            "roles",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("key", sa.String(64), nullable=False),
            sa.Column("name", sa.String(128), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=False), nullable=False),
            sa.UniqueConstraint("key"),
        )

    if "permissions" not in existing_tables:
        op.create_table(
            "permissions",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("key", sa.String(128), nullable=False),
            sa.Column("name", sa.String(128), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=False), nullable=False),
            sa.UniqueConstraint("key"),
        )

    if "user_roles" not in existing_tables:
        op.create_table(
            "user_roles",
            sa.Column("user_id", sa.Integer(), nullable=False),
            sa.Column("role_id", sa.Integer(), nullable=False),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["role_id"], ["roles.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("user_id", "role_id"),
        )

    if "role_permissions" not in existing_tables:
        op.create_table(
            "role_permissions",
            sa.Column("role_id", sa.Integer(), nullable=False),
            sa.Column("permission_id", sa.Integer(), nullable=False),
            sa.ForeignKeyConstraint(["role_id"], ["roles.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["permission_id"], ["permissions.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("role_id", "permission_id"),
        )

    if "audit_events" not in existing_tables:
        op.create_table(
            "audit_events",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=False), nullable=False),
            sa.Column("request_id", sa.String(64), nullable=True),
            sa.Column("actor_user_id", sa.Integer(), nullable=True),
            sa.Column("actor_user_email", sa.String(320), nullable=True),
            sa.Column("action", sa.String(128), nullable=False),
            sa.Column("entity_type", sa.String(128), nullable=True),
            sa.Column("entity_id", sa.String(128), nullable=True),
            sa.Column("reason", sa.String(512), nullable=True),
            sa.Column("metadata_json", sa.Text(), nullable=True),
            sa.Column("client_ip", sa.String(64), nullable=True),
            sa.ForeignKeyConstraint(["actor_user_id"], ["users.id"], ondelete="SET NULL"),
            sa.UniqueConstraint("request_id", "id", name="uq_audit_request_id_id"),
        )

    if "rate_limit_counters" not in existing_tables:
        op.create_table(
            "rate_limit_counters",
            sa.Column("key", sa.String(320), primary_key=True, nullable=False),
            sa.Column("count", sa.Integer(), nullable=False),
            sa.Column("reset_at_ms", sa.BigInteger(), nullable=False),
        )
    if not _has_index("rate_limit_counters", "ix_rate_limit_counters_reset_at_ms"):
        op.create_index("ix_rate_limit_counters_reset_at_ms", "rate_limit_counters", ["reset_at_ms"])

    if "applications" not in existing_tables:
        op.create_table(
            "applications",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("jotform_submission_id", sa.String(64), nullable=False),
            sa.Column("jotform_form_id", sa.String(64), nullable=True),
            sa.Column("application_status", sa.String(16), nullable=False, server_default="PENDING"),
            sa.Column("kyc_status", sa.String(16), nullable=False, server_default="PENDING"),
            sa.Column("email", sa.String(320), nullable=True),
            *[sa.Column(name, sa.Text(), nullable=True) for name in _APPLICATION_TEXT_COLUMNS],
            *[sa.Column(name, sa.Text(), nullable=True) for name in _APPLICATION_DATE_COLUMNS],
            sa.Column("declaration", sa.Boolean(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=False), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=False), nullable=False),
            sa.Column("reviewed_at", sa.DateTime(timezone=False), nullable=True),
            sa.Column("reviewed_by_user_id", sa.Integer(), nullable=True),
            sa.Column("review_notes", sa.Text(), nullable=True),
            sa.ForeignKeyConstraint(["reviewed_by_user_id"], ["users.id"], ondelete="SET NULL"),
            sa.UniqueConstraint("jotform_submission_id", name="uq_applications_jotform_submission_id"),
            sa.UniqueConstraint("email", name="uq_applications_email"),
        )
    if not _has_index("applications", "idx_applications_status"):
        op.create_index("idx_applications_status", "applications", ["application_status"])

    if "application_documents" not in existing_tables:
        op.create_table(
            "application_documents",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("application_id", sa.Integer(), nullable=True),
            sa.Column("submission_id", sa.String(64), nullable=False),
            sa.Column("field_name", sa.String(255), nullable=False),
            sa.Column("file_url", sa.Text(), nullable=False),
            sa.Column("document_type", sa.String(32), nullable=False, server_default="other"),
            sa.Column("created_at", sa.DateTime(timezone=False), nullable=False),
            sa.ForeignKeyConstraint(["application_id"], ["applications.id"], ondelete="CASCADE"),
        )
    if not _has_index("application_documents", "idx_application_documents_submission_id"):
        op.create_index("idx_application_documents_submission_id", "application_documents", ["submission_id"])

    if "webhook_logs" not in existing_tables:
        op.create_table(
            "webhook_logs",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("webhook_type", sa.String(32), nullable=False, server_default="jotform"),
            sa.Column("event_type", sa.String(16), nullable=False),
            sa.Column("submission_id", sa.String(64), nullable=True),
            sa.Column("details_json", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=False), nullable=False),
        )
    if not _has_index("webhook_logs", "idx_webhook_logs_submission_id"):
        op.create_index("idx_webhook_logs_submission_id", "webhook_logs", ["submission_id"])


def downgrade() -> None:
    """Downgrade schema."""
    for table in (
        "webhook_logs",
        "application_documents",
        "applications",
        "rate_limit_counters",
        "audit_events",
        "role_permissions",
        "user_roles",
        "permissions",
        "roles",
        "users",
    ):
        op.drop_table(table)
