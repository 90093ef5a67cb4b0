from datetime import date, datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Proposals
# ---------------------------------------------------------------------------


class ProposalCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: str = ""
    auction_type: Literal["first", "second", "fixed"]
    price: Decimal | None = Field(default=None, ge=0)
    impressions: int | None = Field(default=None, ge=0)
    budget: Decimal | None = Field(default=None, ge=0)
    currency: str = Field(default="USD", min_length=3, max_length=10)
    start_date: date | None = None
    end_date: date | None = None
    terms: str = ""
    section_ids: list[int] = Field(..., min_length=1)
    partner_ids: list[int] = Field(default_factory=list)


class ProposalResponse(BaseModel):
    id: int
    owner_id: int
    name: str
    description: str
    status: str
    start_date: date
    end_date: date | None
    price: Decimal | None
    impressions: int | None
    budget: Decimal | None
    auction_type: str
    currency: str
    terms: str
    section_ids: list[int]
    targeted_buyer_ids: list[int]
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


# ---------------------------------------------------------------------------
# Negotiations
# ---------------------------------------------------------------------------


class NegotiationTerms(BaseModel):
    price: Decimal | None = Field(default=None, ge=0)
    start_date: date | None = None
    end_date: date | None = None
    impressions: int | None = Field(default=None, ge=0)
    budget: Decimal | None = Field(default=None, ge=0)
    terms: str | None = None

    def offered_fields(self) -> dict:
        return self.model_dump(include=set(NegotiationTerms.model_fields), exclude_none=True)


class NegotiationSubmit(NegotiationTerms):
    proposal_id: int
    # Buyer id when a publisher responds; the proposal owner when a buyer does.
    partner_id: int | None = None
    response: Literal["counter-offer", "accept", "reject"]
    # Optimistic-concurrency token the client last saw, if any.
    version: int | None = None


class NegotiationWithdraw(BaseModel):
    status: Literal["archived", "deleted"]


class NegotiationResponse(BaseModel):
    id: int
    proposal_id: int
    publisher_id: int
    buyer_id: int
    price: Decimal | None
    start_date: date | None
    end_date: date | None
    impressions: int | None
    budget: Decimal | None
    terms: str | None
    sender: str
    turn: str
    owner_status: str
    partner_status: str
    version: int
    status: str | None = None
    phase: str | None = None
    settled_deal_id: int | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


# ---------------------------------------------------------------------------
# Settled deals
# ---------------------------------------------------------------------------


class SettledDealResponse(BaseModel):
    id: int
    publisher_id: int
    buyer_id: int
    dsp_id: int | None
    proposal_id: int
    negotiation_id: int
    name: str
    auction_type: str
    rate: Decimal | None
    status: str
    start_date: date | None
    end_date: date | None
    impressions: int | None = None
    budget: Decimal | None = None
    terms: str = ""
    external_id: str
    priority: int
    section_ids: list[int]
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class SettledDealStatusUpdate(BaseModel):
    status: str = Field(..., min_length=1, max_length=20)


# ---------------------------------------------------------------------------
# Orchestrated results
# ---------------------------------------------------------------------------


class ProposalDeleteResponse(BaseModel):
    proposal: ProposalResponse
    negotiations: list[NegotiationResponse]


class NegotiationSubmitResponse(BaseModel):
    negotiation: NegotiationResponse
    settled_deal: SettledDealResponse | None = None
