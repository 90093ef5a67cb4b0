from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.api.schemas import (
    NegotiationResponse,
    NegotiationSubmit,
    NegotiationSubmitResponse,
    NegotiationWithdraw,
    SettledDealResponse,
)
from marketplace.core.config import settings
from marketplace.core.deps import Pagination, get_db
from marketplace.core.rate_limit import limiter
from marketplace.core.security import get_current_user
from marketplace.models.negotiation import Negotiation
from marketplace.models.user import User
from marketplace.services import negotiation as negotiation_svc
from marketplace.services import orchestrator
from marketplace.services import settlement as settlement_svc
from marketplace.services.deal_state_machine import negotiation_phase, status_for_party

router = APIRouter(prefix="/deals/negotiations", tags=["negotiations"])


def negotiation_payload(
    negotiation: Negotiation, viewer: User, settled_deal_id: int | None = None
) -> NegotiationResponse:
    """Negotiation as seen by ``viewer``, with its phase and settled deal link."""
    resp = NegotiationResponse.model_validate(negotiation)
    party = negotiation_svc.party_of(viewer, negotiation)
    resp.status = status_for_party(negotiation, party)
    resp.phase = negotiation_phase(negotiation, settled=settled_deal_id is not None).value
    resp.settled_deal_id = settled_deal_id
    return resp


async def negotiation_payloads(
    db: AsyncSession, negotiations: list[Negotiation], viewer: User
) -> list[NegotiationResponse]:
    deal_ids = await settlement_svc.get_settled_deal_ids_by_negotiation(
        db, [n.id for n in negotiations]
    )
    return [negotiation_payload(n, viewer, deal_ids.get(n.id)) for n in negotiations]


@router.put("", response_model=NegotiationSubmitResponse)
@limiter.limit(settings.rate_limit_negotiation)
async def submit_negotiation(
    request: Request,
    body: NegotiationSubmit,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Open a negotiation or take your turn on it: counter-offer, accept or reject.

    When the submission completes mutual acceptance the settled deal is
    returned alongside the negotiation.
    """
    outcome = await orchestrator.submit_negotiation(db, user, body)
    deal = outcome.settled_deal
    return NegotiationSubmitResponse(
        negotiation=negotiation_payload(
            outcome.negotiation, user, deal.id if deal is not None else None
        ),
        settled_deal=SettledDealResponse.model_validate(deal) if deal is not None else None,
    )


@router.get("", response_model=list[NegotiationResponse])
async def list_negotiations(
    page: Pagination = Depends(),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    negotiations = await negotiation_svc.get_negotiations_for_user(
        db, user, offset=page.offset, limit=page.limit
    )
    return await negotiation_payloads(db, negotiations, user)


@router.get("/proposal/{proposal_id}", response_model=list[NegotiationResponse])
async def list_proposal_negotiations(
    proposal_id: int,
    page: Pagination = Depends(),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    negotiations = await negotiation_svc.get_negotiations_for_user(
        db, user, proposal_id=proposal_id, offset=page.offset, limit=page.limit
    )
    return await negotiation_payloads(db, negotiations, user)


@router.get("/{negotiation_id}", response_model=NegotiationResponse)
async def get_negotiation(
    negotiation_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    negotiation = await negotiation_svc.get_negotiation_for_user(db, negotiation_id, user)
    (payload,) = await negotiation_payloads(db, [negotiation], user)
    return payload


@router.patch("/{negotiation_id}/status", response_model=NegotiationResponse)
async def withdraw_negotiation(
    negotiation_id: int,
    body: NegotiationWithdraw,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Archive or delete your own side of a negotiation. No turn needed."""
    negotiation = await orchestrator.withdraw_negotiation(db, negotiation_id, user, body.status)
    return negotiation_payload(negotiation, user)


@router.post("/{negotiation_id}/settle", response_model=SettledDealResponse)
@limiter.limit(settings.rate_limit_negotiation)
async def settle_negotiation(
    request: Request,
    negotiation_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Settle a mutually accepted negotiation. Repeated calls return the same deal."""
    return await orchestrator.settle(db, negotiation_id, user)
