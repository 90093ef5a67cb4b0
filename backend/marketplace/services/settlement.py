"""Settlement: turn a mutually accepted negotiation into a servable deal."""

import logging
import uuid

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.core.config import settings
from marketplace.core.errors import ConflictError, ForbiddenError, NotFoundError
from marketplace.db import store
from marketplace.models.negotiation import Negotiation
from marketplace.models.proposal import Proposal
from marketplace.models.settled_deal import SettledDeal
from marketplace.models.user import User
from marketplace.services.deal_state_machine import (
    SettledDealStatus,
    effective_terms,
    is_mutually_accepted,
    validate_deal_status_change,
)
from marketplace.services.ownership import actor_owns

logger = logging.getLogger(__name__)


async def get_settled_deal(
    db: AsyncSession, deal_id: int, *, for_update: bool = False
) -> SettledDeal:
    deal = await store.find_one(db, SettledDeal, SettledDeal.id == deal_id, for_update=for_update)
    if deal is None:
        raise NotFoundError("Deal not found", code="DEAL_NOT_FOUND")
    return deal


async def get_settled_deal_for_user(db: AsyncSession, deal_id: int, user: User) -> SettledDeal:
    deal = await get_settled_deal(db, deal_id)
    if user.id not in (deal.publisher_id, deal.buyer_id):
        raise NotFoundError("Deal not found", code="DEAL_NOT_FOUND")
    return deal


async def get_settled_deals_for_user(
    db: AsyncSession, user: User, offset: int = 0, limit: int = 25
) -> list[SettledDeal]:
    return await store.find(
        db,
        SettledDeal,
        or_(SettledDeal.publisher_id == user.id, SettledDeal.buyer_id == user.id),
        order_by=(SettledDeal.id.desc(),),
        offset=offset,
        limit=limit,
    )


async def find_settled_deal_for_negotiation(
    db: AsyncSession, negotiation_id: int
) -> SettledDeal | None:
    return await store.find_one(db, SettledDeal, SettledDeal.negotiation_id == negotiation_id)


async def get_settled_negotiation_ids(db: AsyncSession, proposal_id: int) -> set[int]:
    """Ids of the proposal's negotiations that already produced a settled deal."""
    deals = await store.find(db, SettledDeal, SettledDeal.proposal_id == proposal_id)
    return {d.negotiation_id for d in deals}


async def get_settled_deal_ids_by_negotiation(
    db: AsyncSession, negotiation_ids: list[int]
) -> dict[int, int]:
    """negotiation id → settled deal id, for the negotiations that have one."""
    if not negotiation_ids:
        return {}
    deals = await store.find(db, SettledDeal, SettledDeal.negotiation_id.in_(negotiation_ids))
    return {d.negotiation_id: d.id for d in deals}


def generate_external_id(proposal_id: int) -> str:
    """Bidder-facing deal id, unique across all settled deals."""
    return f"{settings.external_id_prefix}-{proposal_id}-{uuid.uuid4().hex[:12]}"


async def settle(
    db: AsyncSession, negotiation: Negotiation, proposal: Proposal, buyer: User
) -> SettledDeal:
    """Create the one settled deal for a mutually accepted negotiation.

    Raises ConflictError(ALREADY_SETTLED) if the negotiation has a deal
    already, including when a concurrent settlement wins the unique index.
    """
    if not is_mutually_accepted(negotiation):
        raise ForbiddenError("Both parties must accept before settlement", code="NOT_ACCEPTED")
    if await find_settled_deal_for_negotiation(db, negotiation.id) is not None:
        raise ConflictError("Negotiation is already settled", code="ALREADY_SETTLED")

    terms = effective_terms(negotiation, proposal)
    deal = SettledDeal(
        publisher_id=negotiation.publisher_id,
        buyer_id=negotiation.buyer_id,
        dsp_id=buyer.dsp_id,
        proposal_id=proposal.id,
        negotiation_id=negotiation.id,
        name=proposal.name,
        auction_type=proposal.auction_type,
        rate=terms["price"],
        status=SettledDealStatus.NEW.value,
        start_date=terms["start_date"],
        end_date=terms["end_date"],
        impressions=terms["impressions"],
        budget=terms["budget"],
        terms=terms["terms"] or "",
        external_id=generate_external_id(proposal.id),
        priority=settings.settled_deal_priority,
        section_ids=proposal.section_ids,
    )
    try:
        await store.insert(db, deal)
    except IntegrityError as exc:
        raise ConflictError("Negotiation is already settled", code="ALREADY_SETTLED") from exc

    deal.status = SettledDealStatus.ACTIVE.value
    logger.info(
        "Negotiation %d settled into deal %d (%s)", negotiation.id, deal.id, deal.external_id
    )
    return deal


async def update_status(
    db: AsyncSession, deal_id: int, new_status: str, actor: User
) -> SettledDeal:
    """Publisher-only status change. Never called by proposal or negotiation flows."""
    deal = await get_settled_deal(db, deal_id, for_update=True)
    if not await actor_owns(db, "settled_deal", deal_id, actor.id):
        raise ForbiddenError("Only the publisher can change a deal's status", code="NOT_OWNER")

    target = validate_deal_status_change(deal.status, new_status)
    old_status = deal.status
    deal.status = target.value
    logger.info("Deal %d status %s -> %s by %d", deal.id, old_status, target.value, actor.id)
    return deal
