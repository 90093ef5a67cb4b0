from datetime import date
from decimal import Decimal

from sqlalchemy import JSON, Date, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from marketplace.db.base import Base


class SettledDeal(Base):
    """Servable outcome of a mutually accepted negotiation.

    ``negotiation_id`` is provenance only and is unique: at most one settled
    deal per negotiation. Status is independent of the proposal and the
    negotiation once created.
    """

    __tablename__ = "settled_deals"

    publisher_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    buyer_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    dsp_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    proposal_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("proposals.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    negotiation_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("negotiations.id", ondelete="RESTRICT"),
        nullable=False,
        unique=True,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    auction_type: Mapped[str] = mapped_column(String(20), nullable=False)
    rate: Mapped[Decimal | None] = mapped_column(Numeric(18, 6), nullable=True)
    status: Mapped[str] = mapped_column(String(20), default="new", server_default="new")
    start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    impressions: Mapped[int | None] = mapped_column(Integer, nullable=True)
    budget: Mapped[Decimal | None] = mapped_column(Numeric(18, 6), nullable=True)
    terms: Mapped[str] = mapped_column(Text, default="", server_default="")
    external_id: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    priority: Mapped[int] = mapped_column(Integer, default=5, server_default="5")
    section_ids: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
