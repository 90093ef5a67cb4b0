"""Proposal lifecycle: creation, pause/resume, deletion, visibility."""

import logging
from datetime import date, datetime, timezone

from sqlalchemy import or_
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.api.schemas import ProposalCreate
from marketplace.core.errors import ForbiddenError, NotFoundError, ValidationError
from marketplace.db import store
from marketplace.models.proposal import Proposal
from marketplace.models.section import Section
from marketplace.models.user import User
from marketplace.services.deal_state_machine import (
    ProposalAction,
    ProposalStatus,
    is_readable,
    validate_dates,
    validate_proposal_transition,
)
from marketplace.services.ownership import actor_owns
from marketplace.services.user import get_users_by_ids

logger = logging.getLogger(__name__)


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


async def get_proposal(
    db: AsyncSession, proposal_id: int, *, for_update: bool = False
) -> Proposal:
    proposal = await store.find_one(
        db, Proposal, Proposal.id == proposal_id, for_update=for_update
    )
    if proposal is None:
        raise NotFoundError("Proposal not found", code="PROPOSAL_NOT_FOUND")
    return proposal


async def get_readable_proposal(db: AsyncSession, proposal_id: int, user: User) -> Proposal:
    """Fetch a proposal the user may see; anything else looks like a 404."""
    proposal = await get_proposal(db, proposal_id)
    if not is_readable(proposal, user, utc_today()):
        raise NotFoundError("Proposal not found", code="PROPOSAL_NOT_FOUND")
    return proposal


async def get_owned_proposals(
    db: AsyncSession, owner_id: int, offset: int = 0, limit: int = 25
) -> list[Proposal]:
    return await store.find(
        db,
        Proposal,
        Proposal.owner_id == owner_id,
        Proposal.status != ProposalStatus.DELETED,
        order_by=(Proposal.id.desc(),),
        offset=offset,
        limit=limit,
    )


async def get_incoming_proposals(
    db: AsyncSession, buyer: User, offset: int = 0, limit: int = 25
) -> list[Proposal]:
    """Proposals the buyer could open a negotiation on today."""
    return await store.find(
        db,
        Proposal,
        Proposal.status == ProposalStatus.ACTIVE,
        Proposal.owner_id != buyer.id,
        or_(Proposal.end_date.is_(None), Proposal.end_date >= utc_today()),
        Proposal.sections.any(),
        or_(
            ~Proposal.targeted_buyers.any(),
            Proposal.targeted_buyers.any(User.id == buyer.id),
        ),
        order_by=(Proposal.id.desc(),),
        offset=offset,
        limit=limit,
    )


async def _load_sections(db: AsyncSession, owner: User, section_ids: list[int]) -> list[Section]:
    wanted = set(section_ids)
    if not wanted:
        raise ValidationError("At least one section is required", code="NO_SECTIONS")

    sections = await store.find(db, Section, Section.id.in_(wanted))
    missing = wanted - {s.id for s in sections}
    if missing:
        raise ValidationError(
            f"Sections not found: {sorted(missing)}",
            code="SECTION_NOT_FOUND",
            details={"section_ids": sorted(missing)},
        )
    for section in sections:
        if section.publisher_id != owner.id:
            raise ForbiddenError(
                f"Section {section.id} belongs to another publisher", code="SECTION_OWNED"
            )
        if section.status != "active":
            raise ForbiddenError(f"Section {section.id} is not active", code="SECTION_NOT_ACTIVE")
    return sections


async def _load_targets(db: AsyncSession, partner_ids: list[int]) -> list[User]:
    wanted = set(partner_ids)
    buyers = await get_users_by_ids(db, sorted(wanted))
    missing = wanted - {b.id for b in buyers}
    if missing:
        raise ValidationError(
            f"Partners not found: {sorted(missing)}", code="PARTNER_NOT_FOUND"
        )
    for buyer in buyers:
        if not buyer.is_active:
            raise ValidationError(f"Partner {buyer.id} is not active", code="PARTNER_NOT_ACTIVE")
        if not buyer.is_buyer:
            raise ValidationError(f"Partner {buyer.id} is not a buyer", code="PARTNER_INVALID_USERTYPE")
    return buyers


async def create_proposal(db: AsyncSession, owner: User, data: ProposalCreate) -> Proposal:
    if not owner.is_publisher or not owner.is_active:
        raise ForbiddenError("Only active publishers can create proposals", code="NOT_PUBLISHER")

    today = utc_today()
    start_date = data.start_date or today
    validate_dates(start_date, data.end_date)
    if data.end_date is not None and data.end_date < today:
        raise ValidationError("End date cannot be in the past", code="INVALID_DATES")

    sections = await _load_sections(db, owner, data.section_ids)
    targets = await _load_targets(db, data.partner_ids)

    proposal = Proposal(
        owner_id=owner.id,
        name=data.name,
        description=data.description,
        status=ProposalStatus.ACTIVE.value,
        start_date=start_date,
        end_date=data.end_date,
        price=data.price,
        impressions=data.impressions,
        budget=data.budget,
        auction_type=data.auction_type,
        currency=data.currency,
        terms=data.terms,
        sections=sections,
        targeted_buyers=targets,
    )
    await store.insert(db, proposal)
    logger.info("Proposal %d created by publisher %d", proposal.id, owner.id)
    return proposal


async def transition_proposal(
    db: AsyncSession, proposal_id: int, actor: User, action: str
) -> Proposal:
    """Apply a status action on behalf of the owning publisher."""
    proposal = await get_proposal(db, proposal_id, for_update=True)
    if not await actor_owns(db, "proposal", proposal_id, actor.id):
        raise ForbiddenError("You do not own this proposal", code="NOT_OWNER")

    new_status = validate_proposal_transition(proposal.status, action)
    old_status = proposal.status
    proposal.status = new_status.value
    logger.info(
        "Proposal %d status %s -> %s by %d", proposal.id, old_status, new_status.value, actor.id
    )
    return proposal


async def pause_proposal(db: AsyncSession, proposal_id: int, actor: User) -> Proposal:
    return await transition_proposal(db, proposal_id, actor, ProposalAction.PAUSE)


async def resume_proposal(db: AsyncSession, proposal_id: int, actor: User) -> Proposal:
    return await transition_proposal(db, proposal_id, actor, ProposalAction.RESUME)


async def delete_proposal(db: AsyncSession, proposal_id: int, actor: User) -> Proposal:
    """Mark the proposal deleted. Expired proposals delete like any other.

    Closing its negotiations is the caller's half of the same unit of work
    (see ``orchestrator.delete_proposal``).
    """
    return await transition_proposal(db, proposal_id, actor, ProposalAction.DELETE)
