"""Deal lifecycle state machine: pure logic, no DB dependency.

Covers the three entities of a deal: proposal status transitions, the
two-sided negotiation (per-side statuses plus an explicit turn), and the
independent status of a settled deal. Services load and persist records;
every rule about what may change lives here.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import date, datetime
from enum import StrEnum
from typing import Any

from marketplace.core.errors import ConflictError, ForbiddenError, ValidationError


class ProposalStatus(StrEnum):
    ACTIVE = "active"
    PAUSED = "paused"
    DELETED = "deleted"


class ProposalAction(StrEnum):
    PAUSE = "pause"
    RESUME = "resume"
    DELETE = "delete"


class AuctionType(StrEnum):
    FIRST = "first"
    SECOND = "second"
    FIXED = "fixed"


class Party(StrEnum):
    PUBLISHER = "publisher"
    BUYER = "buyer"


class Turn(StrEnum):
    AWAITING_BUYER = "awaiting_buyer"
    AWAITING_PUBLISHER = "awaiting_publisher"


class SideStatus(StrEnum):
    ACTIVE = "active"
    ARCHIVED = "archived"
    DELETED = "deleted"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class NegotiationResponse(StrEnum):
    COUNTER_OFFER = "counter-offer"
    ACCEPT = "accept"
    REJECT = "reject"


class NegotiationPhase(StrEnum):
    OPEN = "open"
    COUNTERED = "countered"
    ACCEPTED = "accepted"
    SETTLED = "settled"
    REJECTED = "rejected"
    ARCHIVED = "archived"
    DELETED = "deleted"


class SettledDealStatus(StrEnum):
    NEW = "new"
    ACTIVE = "active"
    PAUSED = "paused"
    DELETED = "deleted"


class InvalidTransitionError(ForbiddenError):
    """Raised when a proposal transition is not allowed."""

    def __init__(self, current: str, action: str):
        self.current = current
        self.action = action
        super().__init__(
            f"Invalid transition: {current} + {action}", code="INVALID_TRANSITION"
        )


# ---------------------------------------------------------------------------
# Proposals
# ---------------------------------------------------------------------------

# (current_status, action) → new_status. DELETED is terminal.
PROPOSAL_TRANSITIONS: dict[tuple[ProposalStatus, ProposalAction], ProposalStatus] = {
    (ProposalStatus.ACTIVE, ProposalAction.PAUSE): ProposalStatus.PAUSED,
    (ProposalStatus.PAUSED, ProposalAction.RESUME): ProposalStatus.ACTIVE,
    (ProposalStatus.ACTIVE, ProposalAction.DELETE): ProposalStatus.DELETED,
    (ProposalStatus.PAUSED, ProposalAction.DELETE): ProposalStatus.DELETED,
}


def validate_proposal_transition(current: str, action: str) -> ProposalStatus:
    """Return the proposal's next status or raise InvalidTransitionError."""
    try:
        key = (ProposalStatus(current), ProposalAction(action))
    except ValueError:
        raise InvalidTransitionError(current, action)

    if key not in PROPOSAL_TRANSITIONS:
        raise InvalidTransitionError(current, action)
    return PROPOSAL_TRANSITIONS[key]


def _as_date(now: date | datetime) -> date:
    return now.date() if isinstance(now, datetime) else now


def is_expired(proposal: Any, now: date | datetime) -> bool:
    """True when the proposal has an end date strictly before ``now``."""
    return proposal.end_date is not None and proposal.end_date < _as_date(now)


def targets_buyer(proposal: Any, buyer_id: int) -> bool:
    """Untargeted proposals are open to every buyer."""
    targeted = proposal.targeted_buyer_ids
    return not targeted or buyer_id in targeted


def is_purchasable(proposal: Any, buyer: Any, now: date | datetime) -> bool:
    """Whether ``buyer`` may open a new negotiation against ``proposal``."""
    return (
        proposal.status == ProposalStatus.ACTIVE
        and not is_expired(proposal, now)
        and len(proposal.sections) > 0
        and buyer.is_buyer
        and buyer.id != proposal.owner_id
        and targets_buyer(proposal, buyer.id)
    )


def is_readable(proposal: Any, user: Any, now: date | datetime) -> bool:
    if proposal.owner_id == user.id:
        return proposal.status != ProposalStatus.DELETED
    return (
        proposal.status == ProposalStatus.ACTIVE
        and not is_expired(proposal, now)
        and len(proposal.sections) > 0
        and targets_buyer(proposal, user.id)
    )


# ---------------------------------------------------------------------------
# Negotiations
# ---------------------------------------------------------------------------

# Side statuses that close a negotiation for further responses.
CLOSED_SIDE_STATUSES: frozenset[SideStatus] = frozenset({
    SideStatus.ARCHIVED,
    SideStatus.DELETED,
})

WITHDRAWAL_STATUSES: frozenset[SideStatus] = frozenset({
    SideStatus.ARCHIVED,
    SideStatus.DELETED,
})

TERM_FIELDS: tuple[str, ...] = (
    "price",
    "start_date",
    "end_date",
    "impressions",
    "budget",
    "terms",
)


def other_party(party: Party) -> Party:
    return Party.BUYER if party == Party.PUBLISHER else Party.PUBLISHER


def turn_after(sender: Party) -> Turn:
    """Whose move it is once ``sender`` has moved."""
    return Turn.AWAITING_BUYER if sender == Party.PUBLISHER else Turn.AWAITING_PUBLISHER


def party_to_move(negotiation: Any) -> Party:
    return Party.BUYER if negotiation.turn == Turn.AWAITING_BUYER else Party.PUBLISHER


def side_status(negotiation: Any, party: Party) -> str:
    # The proposal owner is always the publisher; the partner is the buyer.
    return negotiation.owner_status if party == Party.PUBLISHER else negotiation.partner_status


def set_side_status(negotiation: Any, party: Party, status: SideStatus) -> None:
    if party == Party.PUBLISHER:
        negotiation.owner_status = status.value
    else:
        negotiation.partner_status = status.value


def is_mutually_accepted(negotiation: Any) -> bool:
    return (
        negotiation.owner_status == SideStatus.ACCEPTED
        and negotiation.partner_status == SideStatus.ACCEPTED
    )


def check_can_respond(negotiation: Any, party: Party) -> None:
    """Raise unless ``party`` may counter, accept or reject right now."""
    own = side_status(negotiation, party)
    other = side_status(negotiation, other_party(party))

    if is_mutually_accepted(negotiation):
        raise ForbiddenError("This proposal has already been bought", code="PROPOSAL_BOUGHT")
    if own in CLOSED_SIDE_STATUSES or other in CLOSED_SIDE_STATUSES:
        raise ForbiddenError("Negotiation is no longer active", code="NEGOTIATION_NOT_ACTIVE")
    if other == SideStatus.REJECTED:
        raise ForbiddenError("The other party rejected this negotiation", code="OTHER_REJECTED")
    if own == SideStatus.REJECTED:
        raise ForbiddenError("You already rejected this negotiation", code="ALREADY_REJECTED")
    if party_to_move(negotiation) != party:
        raise ConflictError("It is not your turn to respond", code="OUT_OF_TURN")


def apply_response(negotiation: Any, party: Party, response: NegotiationResponse) -> None:
    """Record ``party``'s move: hand over the turn and set both sides' statuses.

    A counter-offer re-opens review on both sides. An accept takes the terms
    the other party stands behind, so both sides become accepted. A reject
    only marks the rejecting side.
    """
    negotiation.sender = party.value
    negotiation.turn = turn_after(party).value

    if response == NegotiationResponse.COUNTER_OFFER:
        set_side_status(negotiation, party, SideStatus.ACTIVE)
        set_side_status(negotiation, other_party(party), SideStatus.ACTIVE)
    elif response == NegotiationResponse.ACCEPT:
        set_side_status(negotiation, party, SideStatus.ACCEPTED)
        set_side_status(negotiation, other_party(party), SideStatus.ACCEPTED)
    else:
        set_side_status(negotiation, party, SideStatus.REJECTED)


def apply_terms(negotiation: Any, fields: dict[str, Any]) -> bool:
    """Copy counter-offered terms onto the negotiation; True if any changed."""
    changed = False
    for key in TERM_FIELDS:
        value = fields.get(key)
        if value is not None and value != getattr(negotiation, key):
            setattr(negotiation, key, value)
            changed = True
    return changed


def effective_terms(negotiation: Any, proposal: Any) -> dict[str, Any]:
    """The negotiation's terms, falling back to the proposal where not overridden."""
    terms = {}
    for key in TERM_FIELDS:
        value = getattr(negotiation, key)
        terms[key] = value if value is not None else getattr(proposal, key)
    return terms


def validate_dates(start: date | None, end: date | None) -> None:
    if start is not None and end is not None and end < start:
        raise ValidationError("End date cannot be before start date", code="INVALID_DATES")


def apply_withdrawal(negotiation: Any, party: Party, status: str) -> None:
    """Set ``party``'s own side to archived or deleted. No turn is required."""
    try:
        target = SideStatus(status)
    except ValueError:
        target = None
    if target not in WITHDRAWAL_STATUSES:
        raise ValidationError(
            "Status must be one of: archived, deleted", code="INVALID_STATUS"
        )
    if side_status(negotiation, party) == SideStatus.DELETED:
        raise ForbiddenError("Negotiation is already deleted", code="NEGOTIATION_DELETED")
    set_side_status(negotiation, party, target)


def select_for_owner_deletion(
    negotiations: Iterable[Any], settled_negotiation_ids: Iterable[int]
) -> list[Any]:
    """Negotiations a proposal deletion must close on the owner side.

    Already-deleted owner sides and negotiations that produced a settled deal
    are left alone.
    """
    settled = set(settled_negotiation_ids)
    return [
        n for n in negotiations
        if n.owner_status != SideStatus.DELETED and n.id not in settled
    ]


def negotiation_phase(negotiation: Any, settled: bool = False) -> NegotiationPhase:
    """Collapse the per-side statuses into the lifecycle phase of the thread."""
    if settled:
        return NegotiationPhase.SETTLED
    if is_mutually_accepted(negotiation):
        return NegotiationPhase.ACCEPTED
    statuses = {negotiation.owner_status, negotiation.partner_status}
    if SideStatus.DELETED in statuses:
        return NegotiationPhase.DELETED
    if SideStatus.ARCHIVED in statuses:
        return NegotiationPhase.ARCHIVED
    if SideStatus.REJECTED in statuses:
        return NegotiationPhase.REJECTED
    if negotiation.version is None or negotiation.version <= 1:
        return NegotiationPhase.OPEN
    return NegotiationPhase.COUNTERED


def status_for_party(negotiation: Any, party: Party) -> str:
    """Negotiation status as seen by one party, for UI payloads."""
    own = side_status(negotiation, party)
    other = side_status(negotiation, other_party(party))

    if is_mutually_accepted(negotiation):
        return "accepted"
    if own == SideStatus.REJECTED:
        return "rejected_by_you"
    if other == SideStatus.REJECTED:
        return "rejected_by_partner"
    for closed in (SideStatus.DELETED, SideStatus.ARCHIVED):
        if closed in (own, other):
            return closed.value
    return "waiting_on_you" if party_to_move(negotiation) == party else "waiting_on_partner"


# ---------------------------------------------------------------------------
# Settled deals
# ---------------------------------------------------------------------------

SETTABLE_DEAL_STATUSES: frozenset[SettledDealStatus] = frozenset({
    SettledDealStatus.ACTIVE,
    SettledDealStatus.PAUSED,
    SettledDealStatus.DELETED,
})


def validate_deal_status_change(current: str, new: str) -> SettledDealStatus:
    """Any change is legal except touching a ``deleted`` deal."""
    try:
        target = SettledDealStatus(new)
    except ValueError:
        target = None
    if target not in SETTABLE_DEAL_STATUSES:
        raise ValidationError(
            "Status must be one of: active, paused, deleted", code="INVALID_STATUS"
        )
    if current == SettledDealStatus.DELETED:
        raise ForbiddenError("A deleted deal cannot be changed", code="DEAL_DELETED")
    return target
