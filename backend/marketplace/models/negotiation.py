from datetime import date
from decimal import Decimal

from sqlalchemy import (
    Date,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from marketplace.db.base import Base


class Negotiation(Base):
    """One buyer's counter-offer thread against one proposal.

    Term columns are nullable overrides; a null falls back to the proposal's
    value. ``version`` is the optimistic-concurrency token: every flush bumps
    it and a flush against a stale version fails.
    """

    __tablename__ = "negotiations"

    proposal_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("proposals.id", ondelete="CASCADE"), nullable=False, index=True
    )
    publisher_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    buyer_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )

    price: Mapped[Decimal | None] = mapped_column(Numeric(18, 6), nullable=True)
    start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    impressions: Mapped[int | None] = mapped_column(Integer, nullable=True)
    budget: Mapped[Decimal | None] = mapped_column(Numeric(18, 6), nullable=True)
    terms: Mapped[str | None] = mapped_column(Text, nullable=True)

    sender: Mapped[str] = mapped_column(String(20), nullable=False)
    turn: Mapped[str] = mapped_column(String(30), nullable=False)
    owner_status: Mapped[str] = mapped_column(
        String(20), default="active", server_default="active", nullable=False
    )
    partner_status: Mapped[str] = mapped_column(
        String(20), default="active", server_default="active", nullable=False
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    proposal = relationship("Proposal", lazy="selectin")

    __table_args__ = (
        UniqueConstraint("proposal_id", "buyer_id", name="uq_negotiations_proposal_buyer"),
    )
    __mapper_args__ = {"version_id_col": version}
