"""consultant onboarding and investments

Revision ID: b7e2c9d4a1f3
Revises: a0c1e2f3b4d5
Create Date: 2026-10-18 15:00:00.000000

- applications date columns widened to TEXT (unparsable answers are kept raw)
- applications.invite_sent
- agents, investors, investments
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect


# revision identifiers, used by Alembic.
revision: str = 'b7e2c9d4a1f3'
down_revision: Union[str, Sequence[str], None] = 'a0c1e2f3b4d5'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


_APPLICATION_DATE_COLUMNS = ("date_of_birth", "beneficiary_date_of_birth", "signature_date")

_AGENT_TEXT_COLUMNS = (
    "nric",
    "date_of_birth",
    "address",
    "postcode",
    "city",
    "country",
    "contact_number",
    "introducer_name",
    "introducer_id",
    "bank_name",
    "account_number",
)

_INVESTOR_TEXT_COLUMNS = (
    "date_of_birth",
    "gender",
    "nationality",
    "address",
    "postcode",
    "city",
    "country",
    "contact_number",
    "occupation",
    "company_name",
    "type_of_dividend",
    "bank_account_beneficiary_name",
    "bank_name",
    "account_no",
    "emergency_contact_name",
    "emergency_contact_mobile",
)


def upgrade() -> None:
    bind = op.get_bind()
    insp = inspect(bind)
    existing_tables = set(insp.get_table_names())

    def _has_index(table: str, name: str) -> bool:
        try:
            return any(ix.get("name") == name for ix in insp.get_indexes(table))
        except Exception:
            return False

    if "applications" in existing_tables:
        cols = {c["name"]: c for c in insp.get_columns("applications")}
        narrow = [n for n in _APPLICATION_DATE_COLUMNS if n in cols and not isinstance(cols[n]["type"], sa.Text)]
        if narrow or "invite_sent" not in cols:
            with op.batch_alter_table("applications") as batch_op:
                for name in narrow:
                    batch_op.alter_column(name, type_=sa.Text(), existing_nullable=True)
                if "invite_sent" not in cols:
                    batch_op.add_column(
                        sa.Column("invite_sent", sa.Boolean(), nullable=False, server_default=sa.text("false"))
                    )

    if "agents" not in existing_tables:
        op.create_table(
            "agents",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("agent_id", sa.String(16), nullable=False),
            sa.Column("user_id", sa.Integer(), nullable=False),
            sa.Column("application_id", sa.Integer(), nullable=True),
            sa.Column("level", sa.String(32), nullable=False, server_default="VC_CONSULTANT"),
            *[sa.Column(name, sa.Text(), nullable=True) for name in _AGENT_TEXT_COLUMNS],
            sa.Column("created_at", sa.DateTime(timezone=False), nullable=False),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["application_id"], ["applications.id"], ondelete="SET NULL"),
            sa.UniqueConstraint("agent_id", name="uq_agents_agent_id"),
            sa.UniqueConstraint("user_id", name="uq_agents_user_id"),
        )

    if "investors" not in existing_tables:
        op.create_table(
            "investors",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("user_id", sa.Integer(), nullable=False),
            sa.Column("agent_id", sa.Integer(), nullable=True),
            sa.Column("nric", sa.Text(), nullable=False),
            *[sa.Column(name, sa.Text(), nullable=True) for name in _INVESTOR_TEXT_COLUMNS],
            sa.Column("politically_exposed", sa.Boolean(), nullable=False, server_default=sa.text("false")),
            sa.Column("created_at", sa.DateTime(timezone=False), nullable=False),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["agent_id"], ["agents.id"], ondelete="SET NULL"),
            sa.UniqueConstraint("user_id", name="uq_investors_user_id"),
        )
    if not _has_index("investors", "idx_investors_agent_id"):
        op.create_index("idx_investors_agent_id", "investors", ["agent_id"])

    if "investments" not in existing_tables:
        op.create_table(
            "investments",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("investor_id", sa.Integer(), nullable=False),
            sa.Column("agent_id", sa.Integer(), nullable=True),
            sa.Column("investment_type", sa.String(16), nullable=False),
            sa.Column("investment_tier", sa.String(8), nullable=False),
            sa.Column("investment_amount", sa.Numeric(14, 2), nullable=False),
            sa.Column("quarterly_rate", sa.Numeric(5, 2), nullable=False),
            sa.Column("yearly_rate", sa.Numeric(5, 2), nullable=False),
            sa.Column("period_years", sa.Integer(), nullable=False, server_default="5"),
            sa.Column("start_date", sa.Date(), nullable=False),
            sa.Column("status", sa.String(16), nullable=False, server_default="ACTIVE"),
            sa.Column("created_at", sa.DateTime(timezone=False), nullable=False),
            sa.ForeignKeyConstraint(["investor_id"], ["investors.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["agent_id"], ["agents.id"], ondelete="SET NULL"),
        )
    if not _has_index("investments", "idx_investments_investor_id"):
        op.create_index("idx_investments_investor_id", "investments", ["investor_id"])


def downgrade() -> None:
    for table in ("investments", "investors", "agents"):
        op.drop_table(table)
    with op.batch_alter_table("applications") as batch_op:
        batch_op.drop_column("invite_sent")
