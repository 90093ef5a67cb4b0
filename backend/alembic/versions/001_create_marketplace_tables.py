"""create marketplace tables

Revision ID: 001
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), autoincrement=True, primary_key=True),
        sa.Column("email", sa.String(255), nullable=False, unique=True, index=True),
        sa.Column("company_name", sa.String(255), nullable=True),
        sa.Column("user_type", sa.String(20), nullable=False),
        sa.Column("status", sa.String(20), server_default="active", nullable=False),
        sa.Column("dsp_id", sa.Integer(), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "sections",
        sa.Column("id", sa.Integer(), autoincrement=True, primary_key=True),
        sa.Column("publisher_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("status", sa.String(20), server_default="active", nullable=False),
        *_timestamps(),
    )

    op.create_table(
        "proposals",
        sa.Column("id", sa.Integer(), autoincrement=True, primary_key=True),
        sa.Column("owner_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), server_default="", nullable=False),
        sa.Column("status", sa.String(20), server_default="active", nullable=False, index=True),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=True),
        sa.Column("price", sa.Numeric(18, 6), nullable=True),
        sa.Column("impressions", sa.Integer(), nullable=True),
        sa.Column("budget", sa.Numeric(18, 6), nullable=True),
        sa.Column("auction_type", sa.String(20), nullable=False),
        sa.Column("currency", sa.String(10), server_default="USD", nullable=False),
        sa.Column("terms", sa.Text(), server_default="", nullable=False),
        *_timestamps(),
    )

    op.create_table(
        "proposal_sections",
        sa.Column("proposal_id", sa.Integer(), sa.ForeignKey("proposals.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("section_id", sa.Integer(), sa.ForeignKey("sections.id", ondelete="CASCADE"), primary_key=True),
    )

    op.create_table(
        "proposal_targets",
        sa.Column("proposal_id", sa.Integer(), sa.ForeignKey("proposals.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("buyer_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    )

    op.create_table(
        "negotiations",
        sa.Column("id", sa.Integer(), autoincrement=True, primary_key=True),
        sa.Column("proposal_id", sa.Integer(), sa.ForeignKey("proposals.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("publisher_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("buyer_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("price", sa.Numeric(18, 6), nullable=True),
        sa.Column("start_date", sa.Date(), nullable=True),
        sa.Column("end_date", sa.Date(), nullable=True),
        sa.Column("impressions", sa.Integer(), nullable=True),
        sa.Column("budget", sa.Numeric(18, 6), nullable=True),
        sa.Column("terms", sa.Text(), nullable=True),
        sa.Column("sender", sa.String(20), nullable=False),
        sa.Column("turn", sa.String(30), nullable=False),
        sa.Column("owner_status", sa.String(20), server_default="active", nullable=False),
        sa.Column("partner_status", sa.String(20), server_default="active", nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("proposal_id", "buyer_id", name="uq_negotiations_proposal_buyer"),
    )

    op.create_table(
        "settled_deals",
        sa.Column("id", sa.Integer(), autoincrement=True, primary_key=True),
        sa.Column("publisher_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("buyer_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("dsp_id", sa.Integer(), nullable=True),
        sa.Column("proposal_id", sa.Integer(), sa.ForeignKey("proposals.id", ondelete="RESTRICT"), nullable=False, index=True),
        sa.Column("negotiation_id", sa.Integer(), sa.ForeignKey("negotiations.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("auction_type", sa.String(20), nullable=False),
        sa.Column("rate", sa.Numeric(18, 6), nullable=True),
        sa.Column("status", sa.String(20), server_default="new", nullable=False),
        sa.Column("start_date", sa.Date(), nullable=True),
        sa.Column("end_date", sa.Date(), nullable=True),
        sa.Column("impressions", sa.Integer(), nullable=True),
        sa.Column("budget", sa.Numeric(18, 6), nullable=True),
        sa.Column("terms", sa.Text(), server_default="", nullable=False),
        sa.Column("external_id", sa.String(128), nullable=False),
        sa.Column("priority", sa.Integer(), server_default="5", nullable=False),
        sa.Column("section_ids", sa.JSON(), nullable=False),
        *_timestamps(),
        # At most one settled deal per negotiation, enforced by the store.
        sa.UniqueConstraint("negotiation_id", name="uq_settled_deals_negotiation_id"),
        sa.UniqueConstraint("external_id", name="uq_settled_deals_external_id"),
    )

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), autoincrement=True, primary_key=True),
        sa.Column("actor_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True),
        sa.Column("action", sa.String(64), nullable=False, index=True),
        sa.Column("entity_type", sa.String(32), nullable=False),
        sa.Column("entity_id", sa.Integer(), nullable=False),
        sa.Column("request_id", sa.String(64), nullable=True),
        sa.Column("details", sa.Text(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_audit_logs_entity", "audit_logs", ["entity_type", "entity_id"])


def downgrade() -> None:
    op.drop_index("ix_audit_logs_entity", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_table("settled_deals")
    op.drop_table("negotiations")
    op.drop_table("proposal_targets")
    op.drop_table("proposal_sections")
    op.drop_table("proposals")
    op.drop_table("sections")
    op.drop_table("users")
