"""Ownership checks: which actor owns a proposal or a settled deal."""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.db import store
from marketplace.models.proposal import Proposal
from marketplace.models.settled_deal import SettledDeal

# entity type → (model, owner column)
_OWNER_COLUMNS = {
    "proposal": (Proposal, Proposal.owner_id),
    "settled_deal": (SettledDeal, SettledDeal.publisher_id),
}


async def actor_owns(
    db: AsyncSession, entity_type: str, entity_id: int, actor_id: int
) -> bool:
    """True when ``actor_id`` is the owning publisher of the entity."""
    try:
        model, owner_column = _OWNER_COLUMNS[entity_type]
    except KeyError:
        raise ValueError(f"Unknown entity type: {entity_type}") from None

    result = await store.bounded(
        db.execute(select(owner_column).where(model.id == entity_id))
    )
    owner_id = result.scalar_one_or_none()
    return owner_id is not None and owner_id == actor_id
