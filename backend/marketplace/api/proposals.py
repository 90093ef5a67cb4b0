from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.api.negotiations import negotiation_payload
from marketplace.api.schemas import ProposalCreate, ProposalDeleteResponse, ProposalResponse
from marketplace.core.deps import Pagination, get_db
from marketplace.core.security import get_current_user
from marketplace.models.user import User
from marketplace.services import orchestrator
from marketplace.services import proposal as proposal_svc

router = APIRouter(prefix="/deals/proposals", tags=["proposals"])


@router.post("", response_model=ProposalResponse, status_code=201)
async def create_proposal(
    body: ProposalCreate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await orchestrator.create_proposal(db, user, body)


@router.get("/owned", response_model=list[ProposalResponse])
async def list_owned_proposals(
    page: Pagination = Depends(),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await proposal_svc.get_owned_proposals(
        db, user.id, offset=page.offset, limit=page.limit
    )


@router.get("/incoming", response_model=list[ProposalResponse])
async def list_incoming_proposals(
    page: Pagination = Depends(),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Proposals the current buyer can open a negotiation on."""
    if not user.is_buyer:
        return []
    return await proposal_svc.get_incoming_proposals(
        db, user, offset=page.offset, limit=page.limit
    )


@router.get("/{proposal_id}", response_model=ProposalResponse)
async def get_proposal(
    proposal_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await proposal_svc.get_readable_proposal(db, proposal_id, user)


@router.post("/{proposal_id}/pause", response_model=ProposalResponse)
async def pause_proposal(
    proposal_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await orchestrator.pause_proposal(db, proposal_id, user)


@router.post("/{proposal_id}/resume", response_model=ProposalResponse)
async def resume_proposal(
    proposal_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await orchestrator.resume_proposal(db, proposal_id, user)


@router.delete("/{proposal_id}", response_model=ProposalDeleteResponse)
async def delete_proposal(
    proposal_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Delete a proposal. Returns the negotiations it closed so clients can reconcile."""
    deletion = await orchestrator.delete_proposal(db, proposal_id, user)
    return ProposalDeleteResponse(
        proposal=ProposalResponse.model_validate(deletion.proposal),
        negotiations=[negotiation_payload(n, user) for n in deletion.negotiations],
    )
