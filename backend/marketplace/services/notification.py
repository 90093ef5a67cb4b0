"""Fire-and-forget purchase notifications for settled deals.

Messages are posted to the configured notification webhook (httpx), which
relays them by email. Exceptions are caught and logged: notifications never
break the main flow.
"""

import logging

import httpx
from sqlalchemy.ext.asyncio import AsyncSession
from tenacity import retry, stop_after_attempt, wait_exponential

from marketplace.core.config import settings
from marketplace.models.negotiation import Negotiation
from marketplace.models.settled_deal import SettledDeal
from marketplace.services.deal_state_machine import Party
from marketplace.services.user import get_users_by_ids

logger = logging.getLogger(__name__)

PROPOSAL_BOUGHT = "PROPOSAL_BOUGHT"
NEGOTIATED_PROPOSAL_BOUGHT = "NEGOTIATED_PROPOSAL_BOUGHT"

_TEMPLATES = {
    PROPOSAL_BOUGHT: {
        "subject": "Your proposal has been bought",
        "body": (
            "{buyer} bought your proposal \"{proposal_name}\" (#{proposal_id}) as offered.\n\n"
            "Deal #{deal_id} ({external_id})\n"
            "Auction type: {auction_type}\n"
            "Rate: {rate}\n"
            "Flight: {start_date} to {end_date}\n"
            "Priority: {priority}"
        ),
    },
    NEGOTIATED_PROPOSAL_BOUGHT: {
        "subject": "Your negotiation has been accepted",
        "body": (
            "The negotiation on \"{proposal_name}\" (#{proposal_id}) with {buyer} "
            "was accepted and is now a live deal.\n\n"
            "Deal #{deal_id} ({external_id})\n"
            "Auction type: {auction_type}\n"
            "Rate: {rate}\n"
            "Flight: {start_date} to {end_date}\n"
            "Priority: {priority}"
        ),
    },
}


def recipient_id(deal: SettledDeal, negotiation: Negotiation, event: str) -> int:
    """Who hears about the purchase: the owner for a direct buy, else the last receiver."""
    if event == PROPOSAL_BOUGHT or negotiation.sender == Party.BUYER:
        return deal.publisher_id
    return deal.buyer_id


def render(event: str, deal: SettledDeal, proposal_name: str, buyer_label: str) -> tuple[str, str]:
    template = _TEMPLATES[event]
    body = template["body"].format(
        buyer=buyer_label,
        proposal_name=proposal_name,
        proposal_id=deal.proposal_id,
        deal_id=deal.id,
        external_id=deal.external_id,
        auction_type=deal.auction_type,
        rate=deal.rate if deal.rate is not None else "n/a",
        start_date=deal.start_date or "open",
        end_date=deal.end_date or "open",
        priority=deal.priority,
    )
    return template["subject"], body


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    reraise=True,
)
async def _post_notification(event: str, to: str, subject: str, body: str) -> None:
    """Post one message to the notification webhook with retry."""
    payload = {"event": event, "to": to, "subject": subject, "body": body}
    async with httpx.AsyncClient(timeout=settings.notification_timeout_seconds) as client:
        resp = await client.post(settings.notification_webhook_url, json=payload)
        if resp.status_code >= 400:
            logger.warning("Notification webhook failed (%s): %s", resp.status_code, resp.text)


async def notify_deal_settled(
    db: AsyncSession, deal: SettledDeal, negotiation: Negotiation, *, direct: bool
) -> None:
    """Tell the counterparty that their proposal was bought."""
    event = PROPOSAL_BOUGHT if direct else NEGOTIATED_PROPOSAL_BOUGHT
    try:
        if not settings.notification_webhook_url:
            logger.debug("Notification webhook not set, skipping %s for deal %s", event, deal.id)
            return
        users = {
            u.id: u for u in await get_users_by_ids(db, [deal.publisher_id, deal.buyer_id])
        }
        recipient = users.get(recipient_id(deal, negotiation, event))
        if recipient is None:
            return
        buyer = users.get(deal.buyer_id)
        buyer_label = (buyer.company_name or buyer.email) if buyer is not None else "A buyer"
        subject, body = render(event, deal, deal.name, buyer_label)
        await _post_notification(event, recipient.email, subject, body)
    except Exception:
        logger.exception("Failed to send %s notification for deal %s", event, deal.id)
