from fastapi import APIRouter, Depends, Request
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.core.config import settings
from marketplace.core.deps import get_db
from marketplace.core.rate_limit import limiter
from marketplace.db import store

router = APIRouter(prefix="/health", tags=["health"])


@router.get("")
@limiter.exempt
async def liveness(request: Request) -> dict:
    return {"status": "ok", "service": settings.app_name}


@router.get("/ready")
@limiter.exempt
async def readiness(request: Request, db: AsyncSession = Depends(get_db)) -> dict:
    """Round-trip the store; an outage answers 503 through the DealError handler."""
    await store.bounded(db.execute(text("SELECT 1")))
    return {"status": "ready", "service": settings.app_name}
