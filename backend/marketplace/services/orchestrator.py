"""Deal orchestration: one unit of work per API operation.

Each function here opens the transaction, drives the lifecycle services in
order and returns the now-current entities. Cross-entity rules live here:
deleting a proposal closes its open negotiations but never a settled deal,
and a negotiation reaching mutual acceptance is settled in the same unit of
work that accepted it.
"""

import logging
from dataclasses import dataclass, field

from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.api.schemas import NegotiationSubmit, ProposalCreate
from marketplace.core.errors import ConflictError, DealError, ForbiddenError, ValidationError
from marketplace.db import store
from marketplace.models.negotiation import Negotiation
from marketplace.models.proposal import Proposal
from marketplace.models.settled_deal import SettledDeal
from marketplace.models.user import User
from marketplace.services import negotiation as negotiation_svc
from marketplace.services import proposal as proposal_svc
from marketplace.services import settlement as settlement_svc
from marketplace.services.audit import log_audit
from marketplace.services.deal_state_machine import is_mutually_accepted
from marketplace.services.user import get_user_by_id

logger = logging.getLogger(__name__)


@dataclass
class ProposalDeletion:
    proposal: Proposal
    # Negotiations whose owner status the deletion changed.
    negotiations: list[Negotiation] = field(default_factory=list)


@dataclass
class NegotiationOutcome:
    negotiation: Negotiation
    settled_deal: SettledDeal | None = None


# ---------------------------------------------------------------------------
# Proposals
# ---------------------------------------------------------------------------


async def create_proposal(db: AsyncSession, actor: User, data: ProposalCreate) -> Proposal:
    async with store.transaction(db):
        proposal = await proposal_svc.create_proposal(db, actor, data)
    await db.refresh(proposal)
    return proposal


async def pause_proposal(db: AsyncSession, proposal_id: int, actor: User) -> Proposal:
    async with store.transaction(db):
        proposal = await proposal_svc.pause_proposal(db, proposal_id, actor)
    await db.refresh(proposal)
    return proposal


async def resume_proposal(db: AsyncSession, proposal_id: int, actor: User) -> Proposal:
    async with store.transaction(db):
        proposal = await proposal_svc.resume_proposal(db, proposal_id, actor)
    await db.refresh(proposal)
    return proposal


async def delete_proposal(db: AsyncSession, proposal_id: int, actor: User) -> ProposalDeletion:
    """Delete a proposal and close the owner side of its unsettled negotiations.

    The proposal row stays locked until commit, so no negotiation can be
    opened against it halfway through the cascade. Settled deals are never
    touched.
    """
    async with store.transaction(db):
        proposal = await proposal_svc.delete_proposal(db, proposal_id, actor)
        changed = await negotiation_svc.cascade_owner_deleted(db, proposal_id)
        log_audit(
            db,
            action="proposal.deleted",
            entity_type="proposal",
            entity_id=proposal_id,
            actor_id=actor.id,
            details={"negotiation_ids": [n.id for n in changed]},
        )

    logger.info(
        "Proposal %d deleted by %d; closed %d negotiations",
        proposal_id, actor.id, len(changed),
    )
    await db.refresh(proposal)
    for negotiation in changed:
        await db.refresh(negotiation)
    return ProposalDeletion(proposal=proposal, negotiations=changed)


# ---------------------------------------------------------------------------
# Negotiations
# ---------------------------------------------------------------------------


def _buyer_id_for(actor: User, data: NegotiationSubmit) -> int:
    if actor.is_publisher:
        if data.partner_id is None:
            raise ValidationError(
                "partner_id is required when a publisher responds", code="MISSING_PARTNER"
            )
        return data.partner_id
    if actor.is_buyer:
        return actor.id
    raise ForbiddenError("Unknown account type", code="INVALID_USERTYPE")


async def _settle_in_place(
    db: AsyncSession, negotiation: Negotiation, actor: User | None
) -> SettledDeal:
    if actor is not None and actor.id == negotiation.buyer_id:
        buyer = actor
    else:
        buyer = await get_user_by_id(db, negotiation.buyer_id)
    deal = await settlement_svc.settle(db, negotiation, negotiation.proposal, buyer)
    log_audit(
        db,
        action="deal.settled",
        entity_type="settled_deal",
        entity_id=deal.id,
        actor_id=actor.id if actor is not None else None,
        details={"negotiation_id": negotiation.id, "external_id": deal.external_id},
    )
    return deal


async def submit_negotiation(
    db: AsyncSession, actor: User, data: NegotiationSubmit
) -> NegotiationOutcome:
    """Open, counter, accept or reject; settles on mutual acceptance."""
    buyer_id = _buyer_id_for(actor, data)

    async with store.transaction(db):
        opened = await negotiation_svc.find_negotiation(db, data.proposal_id, buyer_id) is None
        negotiation = await negotiation_svc.create_or_update(
            db,
            data.proposal_id,
            buyer_id,
            actor,
            data.response,
            data.offered_fields(),
            expected_version=data.version,
        )
        if (
            actor.is_buyer
            and data.partner_id is not None
            and data.partner_id != negotiation.publisher_id
        ):
            raise ValidationError(
                "partner_id does not match the proposal owner", code="PARTNER_MISMATCH"
            )

        deal = None
        if is_mutually_accepted(negotiation):
            deal = await _settle_in_place(db, negotiation, actor)

    await db.refresh(negotiation)
    if deal is not None:
        await db.refresh(deal)
        from marketplace.services.notification import notify_deal_settled

        # Opened with an accept: the proposal was bought as offered.
        await notify_deal_settled(db, deal, negotiation, direct=opened)
    return NegotiationOutcome(negotiation=negotiation, settled_deal=deal)


async def withdraw_negotiation(
    db: AsyncSession, negotiation_id: int, actor: User, status: str
) -> Negotiation:
    async with store.transaction(db):
        negotiation = await negotiation_svc.withdraw(db, negotiation_id, actor, status)
    await db.refresh(negotiation)
    return negotiation


# ---------------------------------------------------------------------------
# Settlement
# ---------------------------------------------------------------------------


async def settle(
    db: AsyncSession, negotiation_id: int, actor: User | None = None
) -> SettledDeal:
    """Settle a mutually accepted negotiation, or return its existing deal.

    Safe to call any number of times and from concurrent triggers: the unique
    index on ``negotiation_id`` lets exactly one insert win, and every other
    caller gets that same deal back.
    """
    try:
        async with store.transaction(db):
            negotiation = await negotiation_svc.get_negotiation(db, negotiation_id, for_update=True)
            if actor is not None:
                negotiation_svc.party_of(actor, negotiation)
            deal = await settlement_svc.find_settled_deal_for_negotiation(db, negotiation_id)
            created = deal is None
            if created:
                deal = await _settle_in_place(db, negotiation, actor)
    except ConflictError as exc:
        if exc.code != "ALREADY_SETTLED":
            raise
        deal = await settlement_svc.find_settled_deal_for_negotiation(db, negotiation_id)
        if deal is None:
            raise
        logger.info("Negotiation %d was settled concurrently as deal %d", negotiation_id, deal.id)
        return deal

    await db.refresh(deal)
    if created:
        from marketplace.services.notification import notify_deal_settled

        await notify_deal_settled(db, deal, negotiation, direct=False)
    return deal


async def settle_pending(db: AsyncSession, limit: int = 100) -> int:
    """Settle accepted negotiations that have no deal yet. Returns how many were settled."""
    pending = await negotiation_svc.get_unsettled_accepted(db, limit=limit)
    negotiation_ids = [n.id for n in pending]
    if not negotiation_ids:
        await db.rollback()
        return 0

    settled = 0
    for negotiation_id in negotiation_ids:
        try:
            await settle(db, negotiation_id)
            settled += 1
        except DealError as exc:
            logger.warning(
                "Settlement sweep skipped negotiation %d: %s (%s)",
                negotiation_id, exc.message, exc.code,
            )
    return settled


# ---------------------------------------------------------------------------
# Settled deals
# ---------------------------------------------------------------------------


async def update_deal_status(
    db: AsyncSession, deal_id: int, status: str, actor: User
) -> SettledDeal:
    async with store.transaction(db):
        deal = await settlement_svc.update_status(db, deal_id, status, actor)
        log_audit(
            db,
            action="deal.status_changed",
            entity_type="settled_deal",
            entity_id=deal_id,
            actor_id=actor.id,
            details={"status": deal.status},
        )
    await db.refresh(deal)
    return deal
