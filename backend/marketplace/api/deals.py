from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.api.schemas import SettledDealResponse, SettledDealStatusUpdate
from marketplace.core.deps import Pagination, get_db
from marketplace.core.security import get_current_user
from marketplace.models.user import User
from marketplace.services import orchestrator
from marketplace.services import settlement as settlement_svc

router = APIRouter(prefix="/deals/active", tags=["deals"])


@router.get("", response_model=list[SettledDealResponse])
async def list_deals(
    page: Pagination = Depends(),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await settlement_svc.get_settled_deals_for_user(
        db, user, offset=page.offset, limit=page.limit
    )


@router.get("/{deal_id}", response_model=SettledDealResponse)
async def get_deal(
    deal_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await settlement_svc.get_settled_deal_for_user(db, deal_id, user)


@router.patch("/{deal_id}", response_model=SettledDealResponse)
async def update_deal_status(
    deal_id: int,
    body: SettledDealStatusUpdate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Publisher-only: set a settled deal to active, paused or deleted."""
    return await orchestrator.update_deal_status(db, deal_id, body.status, user)
