"""Tests for purchase notifications sent after settlement."""

from datetime import date
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from marketplace.core.config import settings
from marketplace.models.negotiation import Negotiation
from marketplace.models.settled_deal import SettledDeal
from marketplace.models.user import User
from marketplace.services import notification
from marketplace.services.notification import (
    NEGOTIATED_PROPOSAL_BOUGHT,
    PROPOSAL_BOUGHT,
    notify_deal_settled,
    recipient_id,
)

WEBHOOK = "https://notify.example.com/hooks/deals"
_USERS = "marketplace.services.notification.get_users_by_ids"
_POST = "marketplace.services.notification._post_notification"


def _make_user(id: int, user_type: str, company_name: str | None = None) -> User:
    user = User(email=f"user{id}@example.com", user_type=user_type, status="active", company_name=company_name)
    object.__setattr__(user, "id", id)
    return user


PUBLISHER = _make_user(1, "publisher")
BUYER = _make_user(2, "buyer", company_name="Acme Media")


def _make_negotiation(sender: str = "buyer") -> Negotiation:
    negotiation = Negotiation(
        proposal_id=3,
        publisher_id=1,
        buyer_id=2,
        sender=sender,
        turn="awaiting_publisher" if sender == "buyer" else "awaiting_buyer",
        owner_status="accepted",
        partner_status="accepted",
        version=4,
    )
    object.__setattr__(negotiation, "id", 30)
    return negotiation


def _make_deal() -> SettledDeal:
    deal = SettledDeal(
        publisher_id=1,
        buyer_id=2,
        proposal_id=3,
        negotiation_id=30,
        name="Sports vertical",
        auction_type="second",
        rate=Decimal("3.90"),
        status="active",
        start_date=date(2026, 1, 1),
        end_date=None,
        external_id="ixm-3-abc",
        priority=5,
        section_ids=[4, 12],
    )
    object.__setattr__(deal, "id", 99)
    return deal


class TestRecipient:
    def test_direct_purchase_goes_to_owner(self):
        assert recipient_id(_make_deal(), _make_negotiation(sender="buyer"), PROPOSAL_BOUGHT) == 1

    def test_buyer_accepting_notifies_publisher(self):
        assert recipient_id(_make_deal(), _make_negotiation(sender="buyer"), NEGOTIATED_PROPOSAL_BOUGHT) == 1

    def test_publisher_accepting_notifies_buyer(self):
        assert recipient_id(_make_deal(), _make_negotiation(sender="publisher"), NEGOTIATED_PROPOSAL_BOUGHT) == 2


class TestNotifyDealSettled:
    @pytest.mark.asyncio
    async def test_direct_purchase_emails_owner(self):
        with (
            patch.object(settings, "notification_webhook_url", WEBHOOK),
            patch(_USERS, new_callable=AsyncMock, return_value=[PUBLISHER, BUYER]),
            patch(_POST, new_callable=AsyncMock) as mock_post,
        ):
            await notify_deal_settled(AsyncMock(), _make_deal(), _make_negotiation(), direct=True)

        event, to, subject, body = mock_post.await_args.args
        assert event == "PROPOSAL_BOUGHT"
        assert to == "user1@example.com"
        assert subject == "Your proposal has been bought"
        assert "Acme Media" in body
        assert "Deal #99 (ixm-3-abc)" in body
        assert "Rate: 3.90" in body
        assert "to open" in body

    @pytest.mark.asyncio
    async def test_negotiated_purchase_emails_receiver(self):
        with (
            patch.object(settings, "notification_webhook_url", WEBHOOK),
            patch(_USERS, new_callable=AsyncMock, return_value=[PUBLISHER, BUYER]),
            patch(_POST, new_callable=AsyncMock) as mock_post,
        ):
            await notify_deal_settled(
                AsyncMock(), _make_deal(), _make_negotiation(sender="publisher"), direct=False
            )

        event, to, _, _ = mock_post.await_args.args
        assert event == "NEGOTIATED_PROPOSAL_BOUGHT"
        assert to == "user2@example.com"

    @pytest.mark.asyncio
    async def test_disabled_without_webhook(self):
        with (
            patch.object(settings, "notification_webhook_url", ""),
            patch(_USERS, new_callable=AsyncMock) as mock_users,
            patch(_POST, new_callable=AsyncMock) as mock_post,
        ):
            await notify_deal_settled(AsyncMock(), _make_deal(), _make_negotiation(), direct=True)

        mock_users.assert_not_awaited()
        mock_post.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_delivery_failure_never_raises(self):
        with (
            patch.object(settings, "notification_webhook_url", WEBHOOK),
            patch(_USERS, new_callable=AsyncMock, return_value=[PUBLISHER, BUYER]),
            patch(_POST, new_callable=AsyncMock, side_effect=httpx.ConnectError("refused")),
        ):
            await notify_deal_settled(AsyncMock(), _make_deal(), _make_negotiation(), direct=True)


class TestPostNotification:
    @pytest.mark.asyncio
    async def test_posts_json_to_webhook(self):
        client = MagicMock()
        client.post = AsyncMock(return_value=httpx.Response(202))
        with (
            patch.object(settings, "notification_webhook_url", WEBHOOK),
            patch("marketplace.services.notification.httpx.AsyncClient") as mock_client_cls,
        ):
            mock_client_cls.return_value.__aenter__ = AsyncMock(return_value=client)
            mock_client_cls.return_value.__aexit__ = AsyncMock(return_value=False)
            await notification._post_notification("PROPOSAL_BOUGHT", "user1@example.com", "s", "b")

        client.post.assert_awaited_once_with(
            WEBHOOK,
            json={"event": "PROPOSAL_BOUGHT", "to": "user1@example.com", "subject": "s", "body": "b"},
        )
