"""Tests for negotiation service: opening, turn-taking, cascade and withdrawal."""

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from marketplace.core.errors import ConflictError, ForbiddenError, ValidationError
from marketplace.models.negotiation import Negotiation
from marketplace.models.proposal import Proposal
from marketplace.models.section import Section
from marketplace.models.settled_deal import SettledDeal
from marketplace.models.user import User
from marketplace.services import negotiation as negotiation_svc

TODAY = datetime.now(timezone.utc).date()

_FIND = "marketplace.services.negotiation.find_negotiation"
_GET_PROPOSAL = "marketplace.services.negotiation.get_proposal"


def _make_user(id: int, user_type: str) -> User:
    user = User(email=f"user{id}@example.com", user_type=user_type, status="active")
    object.__setattr__(user, "id", id)
    return user


PUBLISHER = _make_user(1, "publisher")
BUYER = _make_user(2, "buyer")
OUTSIDER = _make_user(3, "buyer")


def _make_proposal(status: str = "active", end_date: date | None = None) -> Proposal:
    section = Section(publisher_id=1, name="Homepage", status="active")
    object.__setattr__(section, "id", 7)
    proposal = Proposal(
        owner_id=PUBLISHER.id,
        name="Homepage takeover",
        status=status,
        start_date=TODAY - timedelta(days=3),
        end_date=end_date,
        price=Decimal("4.50"),
        impressions=50_000,
        auction_type="fixed",
        terms="net 30",
        sections=[section],
        targeted_buyers=[],
    )
    object.__setattr__(proposal, "id", 1)
    return proposal


def _make_negotiation(
    id: int = 10,
    sender: str = "buyer",
    turn: str = "awaiting_publisher",
    owner_status: str = "active",
    partner_status: str = "active",
    version: int = 1,
) -> Negotiation:
    negotiation = Negotiation(
        proposal_id=1,
        publisher_id=PUBLISHER.id,
        buyer_id=BUYER.id,
        price=Decimal("4.50"),
        sender=sender,
        turn=turn,
        owner_status=owner_status,
        partner_status=partner_status,
        version=version,
    )
    object.__setattr__(negotiation, "id", id)
    return negotiation


def _mock_db():
    db = AsyncMock()
    db.add = MagicMock()
    return db


async def _fake_insert(db, record):
    object.__setattr__(record, "id", 10)
    return 10


class TestOpenNegotiation:
    @pytest.mark.asyncio
    async def test_counter_offer_opens_seeded_negotiation(self):
        proposal = _make_proposal()
        with (
            patch(_FIND, new_callable=AsyncMock, return_value=None),
            patch(_GET_PROPOSAL, new_callable=AsyncMock, return_value=proposal) as mock_get,
            patch("marketplace.db.store.insert", new_callable=AsyncMock, side_effect=_fake_insert),
        ):
            negotiation = await negotiation_svc.create_or_update(
                _mock_db(), 1, BUYER.id, BUYER, "counter-offer", {"price": Decimal("3.75")}
            )

        assert negotiation.id == 10
        assert negotiation.publisher_id == PUBLISHER.id
        assert negotiation.buyer_id == BUYER.id
        assert negotiation.sender == "buyer"
        assert negotiation.turn == "awaiting_publisher"
        assert negotiation.owner_status == "active"
        assert negotiation.partner_status == "active"
        assert negotiation.price == Decimal("3.75")
        assert negotiation.impressions == 50_000
        assert negotiation.terms == "net 30"
        assert mock_get.await_args.kwargs == {"for_update": True}

    @pytest.mark.asyncio
    async def test_direct_accept_buys_as_offered(self):
        with (
            patch(_FIND, new_callable=AsyncMock, return_value=None),
            patch(_GET_PROPOSAL, new_callable=AsyncMock, return_value=_make_proposal()),
            patch("marketplace.db.store.insert", new_callable=AsyncMock, side_effect=_fake_insert),
        ):
            negotiation = await negotiation_svc.create_or_update(
                _mock_db(), 1, BUYER.id, BUYER, "accept", {}
            )

        assert negotiation.owner_status == "accepted"
        assert negotiation.partner_status == "accepted"
        assert negotiation.price == Decimal("4.50")

    @pytest.mark.asyncio
    async def test_reject_without_negotiation_forbidden(self):
        with (
            patch(_FIND, new_callable=AsyncMock, return_value=None),
            patch(_GET_PROPOSAL, new_callable=AsyncMock, return_value=_make_proposal()),
        ):
            with pytest.raises(ForbiddenError) as exc_info:
                await negotiation_svc.create_or_update(_mock_db(), 1, BUYER.id, BUYER, "reject", {})
        assert exc_info.value.code == "NO_NEGOTIATION"

    @pytest.mark.asyncio
    async def test_publisher_cannot_open(self):
        with patch(_FIND, new_callable=AsyncMock, return_value=None):
            with pytest.raises(ForbiddenError):
                await negotiation_svc.create_or_update(
                    _mock_db(), 1, BUYER.id, PUBLISHER, "counter-offer", {"price": Decimal("1")}
                )

    @pytest.mark.asyncio
    async def test_expired_proposal_not_negotiable(self):
        proposal = _make_proposal(end_date=TODAY - timedelta(days=1))
        with (
            patch(_FIND, new_callable=AsyncMock, return_value=None),
            patch(_GET_PROPOSAL, new_callable=AsyncMock, return_value=proposal),
        ):
            with pytest.raises(ForbiddenError) as exc_info:
                await negotiation_svc.create_or_update(_mock_db(), 1, BUYER.id, BUYER, "accept", {})
        assert exc_info.value.code == "CANNOT_START_NEGOTIATION"

    @pytest.mark.asyncio
    async def test_deleted_proposal_not_negotiable(self):
        with (
            patch(_FIND, new_callable=AsyncMock, return_value=None),
            patch(_GET_PROPOSAL, new_callable=AsyncMock, return_value=_make_proposal(status="deleted")),
        ):
            with pytest.raises(ForbiddenError) as exc_info:
                await negotiation_svc.create_or_update(_mock_db(), 1, BUYER.id, BUYER, "accept", {})
        assert exc_info.value.code == "PROPOSAL_DELETED"


class TestRespond:
    @pytest.mark.asyncio
    async def test_publisher_counter_then_second_move_conflicts(self):
        """Buyer sent last; publisher moves once, a second publisher move is a conflict."""
        negotiation = _make_negotiation(sender="buyer", turn="awaiting_publisher")
        with (
            patch(_FIND, new_callable=AsyncMock, return_value=negotiation),
            patch(_GET_PROPOSAL, new_callable=AsyncMock, return_value=_make_proposal()),
        ):
            await negotiation_svc.create_or_update(
                _mock_db(), 1, BUYER.id, PUBLISHER, "counter-offer", {"price": Decimal("5.00")}
            )
            assert negotiation.sender == "publisher"
            assert negotiation.turn == "awaiting_buyer"
            assert negotiation.price == Decimal("5.00")

            with pytest.raises(ConflictError) as exc_info:
                await negotiation_svc.create_or_update(
                    _mock_db(), 1, BUYER.id, PUBLISHER, "counter-offer", {"price": Decimal("6.00")}
                )
        assert exc_info.value.code == "OUT_OF_TURN"
        assert negotiation.price == Decimal("5.00")

    @pytest.mark.asyncio
    async def test_accept_completes_mutual_acceptance(self):
        negotiation = _make_negotiation(sender="publisher", turn="awaiting_buyer")
        with (
            patch(_FIND, new_callable=AsyncMock, return_value=negotiation),
            patch(_GET_PROPOSAL, new_callable=AsyncMock, return_value=_make_proposal()),
        ):
            await negotiation_svc.create_or_update(_mock_db(), 1, BUYER.id, BUYER, "accept", {})
        assert negotiation.owner_status == "accepted"
        assert negotiation.partner_status == "accepted"

    @pytest.mark.asyncio
    async def test_reject_keeps_other_side(self):
        negotiation = _make_negotiation()
        with (
            patch(_FIND, new_callable=AsyncMock, return_value=negotiation),
            patch(_GET_PROPOSAL, new_callable=AsyncMock, return_value=_make_proposal()),
        ):
            await negotiation_svc.create_or_update(_mock_db(), 1, BUYER.id, PUBLISHER, "reject", {})
        assert negotiation.owner_status == "rejected"
        assert negotiation.partner_status == "active"

    @pytest.mark.asyncio
    async def test_stale_version_conflicts(self):
        negotiation = _make_negotiation(version=4)
        with (
            patch(_FIND, new_callable=AsyncMock, return_value=negotiation),
            patch(_GET_PROPOSAL, new_callable=AsyncMock, return_value=_make_proposal()),
        ):
            with pytest.raises(ConflictError) as exc_info:
                await negotiation_svc.create_or_update(
                    _mock_db(), 1, BUYER.id, PUBLISHER, "accept", {}, expected_version=3
                )
        assert exc_info.value.code == "STALE_VERSION"
        assert negotiation.owner_status == "active"

    @pytest.mark.asyncio
    async def test_counter_must_change_something(self):
        negotiation = _make_negotiation()
        with (
            patch(_FIND, new_callable=AsyncMock, return_value=negotiation),
            patch(_GET_PROPOSAL, new_callable=AsyncMock, return_value=_make_proposal()),
        ):
            with pytest.raises(ValidationError) as exc_info:
                await negotiation_svc.create_or_update(
                    _mock_db(), 1, BUYER.id, PUBLISHER, "counter-offer", {"price": Decimal("4.50")}
                )
        assert exc_info.value.code == "NO_CHANGE"

    @pytest.mark.asyncio
    async def test_counter_dates_validated(self):
        negotiation = _make_negotiation()
        fields = {"start_date": TODAY + timedelta(days=10), "end_date": TODAY + timedelta(days=2)}
        with (
            patch(_FIND, new_callable=AsyncMock, return_value=negotiation),
            patch(_GET_PROPOSAL, new_callable=AsyncMock, return_value=_make_proposal()),
        ):
            with pytest.raises(ValidationError) as exc_info:
                await negotiation_svc.create_or_update(
                    _mock_db(), 1, BUYER.id, PUBLISHER, "counter-offer", fields
                )
        assert exc_info.value.code == "INVALID_DATES"

    @pytest.mark.asyncio
    async def test_accept_with_fields_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            await negotiation_svc.create_or_update(
                _mock_db(), 1, BUYER.id, BUYER, "accept", {"price": Decimal("1")}
            )
        assert exc_info.value.code == "EXTRA_NEG_FIELD"

    @pytest.mark.asyncio
    async def test_counter_without_fields_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            await negotiation_svc.create_or_update(_mock_db(), 1, BUYER.id, BUYER, "counter-offer", {})
        assert exc_info.value.code == "MISSING_NEG_FIELD"

    @pytest.mark.asyncio
    async def test_outsider_is_not_participant(self):
        negotiation = _make_negotiation()
        with patch(_FIND, new_callable=AsyncMock, return_value=negotiation):
            with pytest.raises(ForbiddenError) as exc_info:
                await negotiation_svc.create_or_update(
                    _mock_db(), 1, BUYER.id, OUTSIDER, "accept", {}
                )
        assert exc_info.value.code == "NOT_PARTICIPANT"

    @pytest.mark.asyncio
    async def test_deleted_proposal_blocks_responses(self):
        negotiation = _make_negotiation()
        with (
            patch(_FIND, new_callable=AsyncMock, return_value=negotiation),
            patch(_GET_PROPOSAL, new_callable=AsyncMock, return_value=_make_proposal(status="deleted")),
        ):
            with pytest.raises(ForbiddenError):
                await negotiation_svc.create_or_update(_mock_db(), 1, BUYER.id, PUBLISHER, "accept", {})


class TestCascadeOwnerDeleted:
    @pytest.mark.asyncio
    async def test_closes_owner_side_of_unsettled_only(self):
        open_1 = _make_negotiation(id=1, partner_status="active")
        open_2 = _make_negotiation(id=2, partner_status="rejected")
        settled = _make_negotiation(id=3, owner_status="accepted", partner_status="accepted")

        with (
            patch("marketplace.db.store.find", new_callable=AsyncMock, return_value=[open_1, open_2, settled]),
            patch(
                "marketplace.services.settlement.get_settled_negotiation_ids",
                new_callable=AsyncMock,
                return_value={3},
            ),
        ):
            changed = await negotiation_svc.cascade_owner_deleted(_mock_db(), 1)

        assert changed == [open_1, open_2]
        assert open_1.owner_status == "deleted"
        assert open_2.owner_status == "deleted"
        # Buyer side keeps its last stated position
        assert open_1.partner_status == "active"
        assert open_2.partner_status == "rejected"
        assert settled.owner_status == "accepted"
        assert settled.partner_status == "accepted"


class TestWithdrawAndAcceptance:
    @pytest.mark.asyncio
    async def test_buyer_archives_out_of_turn(self):
        negotiation = _make_negotiation(turn="awaiting_publisher")
        with (
            patch("marketplace.services.negotiation.get_negotiation", new_callable=AsyncMock, return_value=negotiation),
            patch(
                "marketplace.services.settlement.find_settled_deal_for_negotiation",
                new_callable=AsyncMock,
                return_value=None,
            ),
        ):
            await negotiation_svc.withdraw(_mock_db(), 10, BUYER, "archived")
        assert negotiation.partner_status == "archived"
        assert negotiation.owner_status == "active"

    @pytest.mark.asyncio
    async def test_settled_negotiation_cannot_be_withdrawn(self):
        negotiation = _make_negotiation(owner_status="accepted", partner_status="accepted")
        deal = SettledDeal(negotiation_id=10, status="active")
        with (
            patch("marketplace.services.negotiation.get_negotiation", new_callable=AsyncMock, return_value=negotiation),
            patch(
                "marketplace.services.settlement.find_settled_deal_for_negotiation",
                new_callable=AsyncMock,
                return_value=deal,
            ),
        ):
            with pytest.raises(ForbiddenError) as exc_info:
                await negotiation_svc.withdraw(_mock_db(), 10, PUBLISHER, "deleted")
        assert exc_info.value.code == "NEGOTIATION_SETTLED"
        assert negotiation.owner_status == "accepted"

    @pytest.mark.asyncio
    async def test_check_mutual_acceptance_is_a_pure_read(self):
        negotiation = _make_negotiation(owner_status="accepted", partner_status="accepted")
        with patch(
            "marketplace.services.negotiation.get_negotiation", new_callable=AsyncMock, return_value=negotiation
        ):
            assert await negotiation_svc.check_mutual_acceptance(_mock_db(), 10) is True
            assert await negotiation_svc.check_mutual_acceptance(_mock_db(), 10) is True
        assert negotiation.owner_status == "accepted"
