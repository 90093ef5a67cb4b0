from datetime import date
from decimal import Decimal

from sqlalchemy import (
    Column,
    Date,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Table,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from marketplace.db.base import Base

proposal_sections = Table(
    "proposal_sections",
    Base.metadata,
    Column("proposal_id", Integer, ForeignKey("proposals.id", ondelete="CASCADE"), primary_key=True),
    Column("section_id", Integer, ForeignKey("sections.id", ondelete="CASCADE"), primary_key=True),
)

# Buyers a targeted proposal is restricted to; no rows means open to every buyer.
proposal_targets = Table(
    "proposal_targets",
    Base.metadata,
    Column("proposal_id", Integer, ForeignKey("proposals.id", ondelete="CASCADE"), primary_key=True),
    Column("buyer_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
)


class Proposal(Base):
    __tablename__ = "proposals"

    owner_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="", server_default="")
    status: Mapped[str] = mapped_column(
        String(20), default="active", server_default="active", index=True
    )
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    price: Mapped[Decimal | None] = mapped_column(Numeric(18, 6), nullable=True)
    impressions: Mapped[int | None] = mapped_column(Integer, nullable=True)
    budget: Mapped[Decimal | None] = mapped_column(Numeric(18, 6), nullable=True)
    auction_type: Mapped[str] = mapped_column(String(20), nullable=False)
    currency: Mapped[str] = mapped_column(String(10), default="USD", server_default="USD")
    terms: Mapped[str] = mapped_column(Text, default="", server_default="")

    sections = relationship("Section", secondary=proposal_sections, lazy="selectin")
    targeted_buyers = relationship("User", secondary=proposal_targets, lazy="selectin")
    owner = relationship("User", foreign_keys=[owner_id], lazy="selectin")

    @property
    def section_ids(self) -> list[int]:
        return sorted(section.id for section in self.sections)

    @property
    def targeted_buyer_ids(self) -> list[int]:
        return sorted(buyer.id for buyer in self.targeted_buyers)
