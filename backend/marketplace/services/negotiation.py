"""Negotiation lifecycle: turn-taking, counter-offers, cascade on proposal deletion."""

import logging
from typing import Any

from sqlalchemy import exists, or_
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.core.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from marketplace.db import store
from marketplace.models.negotiation import Negotiation
from marketplace.models.proposal import Proposal
from marketplace.models.settled_deal import SettledDeal
from marketplace.models.user import User
from marketplace.services import settlement as settlement_svc
from marketplace.services.deal_state_machine import (
    NegotiationResponse,
    Party,
    ProposalStatus,
    SideStatus,
    Turn,
    apply_response,
    apply_terms,
    apply_withdrawal,
    check_can_respond,
    effective_terms,
    is_expired,
    is_mutually_accepted,
    is_purchasable,
    select_for_owner_deletion,
    validate_dates,
)
from marketplace.services.proposal import get_proposal, utc_today

logger = logging.getLogger(__name__)


def party_of(user: User, negotiation: Negotiation) -> Party:
    if user.id == negotiation.publisher_id:
        return Party.PUBLISHER
    if user.id == negotiation.buyer_id:
        return Party.BUYER
    raise ForbiddenError("You are not a party to this negotiation", code="NOT_PARTICIPANT")


async def get_negotiation(
    db: AsyncSession, negotiation_id: int, *, for_update: bool = False
) -> Negotiation:
    negotiation = await store.find_one(
        db, Negotiation, Negotiation.id == negotiation_id, for_update=for_update
    )
    if negotiation is None:
        raise NotFoundError("Negotiation not found", code="NEGOTIATION_NOT_FOUND")
    return negotiation


async def get_negotiation_for_user(db: AsyncSession, negotiation_id: int, user: User) -> Negotiation:
    negotiation = await get_negotiation(db, negotiation_id)
    if user.id not in (negotiation.publisher_id, negotiation.buyer_id):
        raise NotFoundError("Negotiation not found", code="NEGOTIATION_NOT_FOUND")
    return negotiation


async def find_negotiation(
    db: AsyncSession, proposal_id: int, buyer_id: int, *, for_update: bool = False
) -> Negotiation | None:
    return await store.find_one(
        db,
        Negotiation,
        Negotiation.proposal_id == proposal_id,
        Negotiation.buyer_id == buyer_id,
        for_update=for_update,
    )


async def get_negotiations_for_user(
    db: AsyncSession,
    user: User,
    *,
    proposal_id: int | None = None,
    offset: int = 0,
    limit: int = 25,
) -> list[Negotiation]:
    criteria = [or_(Negotiation.publisher_id == user.id, Negotiation.buyer_id == user.id)]
    if proposal_id is not None:
        criteria.append(Negotiation.proposal_id == proposal_id)
    return await store.find(
        db,
        Negotiation,
        *criteria,
        order_by=(Negotiation.updated_at.desc(), Negotiation.id.desc()),
        offset=offset,
        limit=limit,
    )


def _check_fields(response: NegotiationResponse, fields: dict[str, Any]) -> None:
    if response == NegotiationResponse.COUNTER_OFFER and not fields:
        raise ValidationError(
            "A counter-offer must include at least one term", code="MISSING_NEG_FIELD"
        )
    if response != NegotiationResponse.COUNTER_OFFER and fields:
        raise ValidationError(
            "Terms can only be sent with a counter-offer", code="EXTRA_NEG_FIELD"
        )


def _apply_counter_terms(negotiation: Negotiation, proposal: Proposal, fields: dict[str, Any]) -> None:
    if not apply_terms(negotiation, fields):
        raise ValidationError("The counter-offer does not change any term", code="NO_CHANGE")
    terms = effective_terms(negotiation, proposal)
    validate_dates(terms["start_date"], terms["end_date"])


async def _open_negotiation(
    db: AsyncSession,
    proposal: Proposal,
    buyer: User,
    response: NegotiationResponse,
    fields: dict[str, Any],
) -> Negotiation:
    if proposal.status == ProposalStatus.DELETED:
        raise ForbiddenError("Proposal has been deleted", code="PROPOSAL_DELETED")
    if not is_purchasable(proposal, buyer, utc_today()):
        raise ForbiddenError(
            "You cannot start a negotiation on this proposal", code="CANNOT_START_NEGOTIATION"
        )
    if response == NegotiationResponse.REJECT:
        raise ForbiddenError("There is no negotiation to reject", code="NO_NEGOTIATION")

    negotiation = Negotiation(
        proposal_id=proposal.id,
        publisher_id=proposal.owner_id,
        buyer_id=buyer.id,
        price=proposal.price,
        start_date=proposal.start_date,
        end_date=proposal.end_date,
        impressions=proposal.impressions,
        budget=proposal.budget,
        terms=proposal.terms,
        sender=Party.BUYER.value,
        turn=Turn.AWAITING_PUBLISHER.value,
        owner_status=SideStatus.ACTIVE.value,
        partner_status=SideStatus.ACTIVE.value,
    )
    negotiation.proposal = proposal

    if response == NegotiationResponse.COUNTER_OFFER:
        _apply_counter_terms(negotiation, proposal, fields)
    else:
        # Buying the proposal as offered.
        apply_response(negotiation, Party.BUYER, NegotiationResponse.ACCEPT)

    await store.insert(db, negotiation)
    logger.info(
        "Negotiation %d opened by buyer %d on proposal %d (%s)",
        negotiation.id, buyer.id, proposal.id, response.value,
    )
    return negotiation


async def create_or_update(
    db: AsyncSession,
    proposal_id: int,
    buyer_id: int,
    actor: User,
    response: str,
    fields: dict[str, Any],
    *,
    expected_version: int | None = None,
) -> Negotiation:
    """Open the (proposal, buyer) negotiation or take the actor's turn on it."""
    try:
        response = NegotiationResponse(response)
    except ValueError:
        raise ValidationError(f"Unknown response: {response}", code="INVALID_RESPONSE")
    _check_fields(response, fields)

    negotiation = await find_negotiation(db, proposal_id, buyer_id, for_update=True)

    if negotiation is None:
        if actor.id != buyer_id or not actor.is_buyer:
            raise ForbiddenError("Only the buyer can start a negotiation", code="NO_NEGOTIATION")
        # Locks the proposal row so it cannot be deleted mid-creation.
        proposal = await get_proposal(db, proposal_id, for_update=True)
        return await _open_negotiation(db, proposal, actor, response, fields)

    party = party_of(actor, negotiation)
    if expected_version is not None and expected_version != negotiation.version:
        raise ConflictError(
            "The negotiation changed since you last saw it", code="STALE_VERSION"
        )

    proposal = await get_proposal(db, proposal_id)
    if proposal.status == ProposalStatus.DELETED:
        raise ForbiddenError("Proposal has been deleted", code="PROPOSAL_DELETED")
    check_can_respond(negotiation, party)

    if response == NegotiationResponse.COUNTER_OFFER:
        _apply_counter_terms(negotiation, proposal, fields)
    elif response == NegotiationResponse.ACCEPT:
        terms = effective_terms(negotiation, proposal)
        if is_expired(proposal, utc_today()) or (
            terms["end_date"] is not None and terms["end_date"] < utc_today()
        ):
            raise ForbiddenError("These terms can no longer be accepted", code="CANT_ACCEPT")

    apply_response(negotiation, party, response)
    logger.info(
        "Negotiation %d: %s by %s %d", negotiation.id, response.value, party.value, actor.id
    )
    return negotiation


async def check_mutual_acceptance(db: AsyncSession, negotiation_id: int) -> bool:
    """True iff both sides accepted. Pure read; safe to call any number of times."""
    negotiation = await get_negotiation(db, negotiation_id)
    return is_mutually_accepted(negotiation)


async def cascade_owner_deleted(db: AsyncSession, proposal_id: int) -> list[Negotiation]:
    """Close the publisher side of every unsettled negotiation of a proposal.

    The buyer's side keeps its last stated position. Returns the negotiations
    whose owner status changed.
    """
    negotiations = await store.find(
        db,
        Negotiation,
        Negotiation.proposal_id == proposal_id,
        for_update=True,
        order_by=(Negotiation.id,),
    )
    settled_ids = await settlement_svc.get_settled_negotiation_ids(db, proposal_id)
    targets = select_for_owner_deletion(negotiations, settled_ids)

    for negotiation in targets:
        negotiation.owner_status = SideStatus.DELETED.value

    skipped = len(negotiations) - len(targets)
    if skipped:
        logger.debug(
            "Proposal %d cascade skipped %d settled or already-deleted negotiations",
            proposal_id, skipped,
        )
    return targets


async def withdraw(db: AsyncSession, negotiation_id: int, actor: User, status: str) -> Negotiation:
    """Archive or delete the actor's own side. Does not need the turn."""
    negotiation = await get_negotiation(db, negotiation_id, for_update=True)
    party = party_of(actor, negotiation)
    if await settlement_svc.find_settled_deal_for_negotiation(db, negotiation_id) is not None:
        raise ForbiddenError("A settled negotiation cannot be changed", code="NEGOTIATION_SETTLED")

    apply_withdrawal(negotiation, party, status)
    logger.info("Negotiation %d: %s side set to %s", negotiation.id, party.value, status)
    return negotiation


async def get_unsettled_accepted(db: AsyncSession, limit: int = 100) -> list[Negotiation]:
    """Mutually accepted negotiations that have no settled deal yet."""
    return await store.find(
        db,
        Negotiation,
        Negotiation.owner_status == SideStatus.ACCEPTED,
        Negotiation.partner_status == SideStatus.ACCEPTED,
        ~exists().where(SettledDeal.negotiation_id == Negotiation.id),
        order_by=(Negotiation.id,),
        limit=limit,
    )
