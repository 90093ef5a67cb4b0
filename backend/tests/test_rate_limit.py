"""Tests for the global request rate limit."""

from unittest.mock import AsyncMock, patch

import pytest
from httpx import AsyncClient

from marketplace.core.config import settings
from marketplace.core.deps import get_db
from marketplace.core.rate_limit import limiter
from marketplace.core.security import get_current_user
from marketplace.main import app
from marketplace.models.user import User

DEFAULT_LIMIT = int(settings.rate_limit_default.split("/")[0])


@pytest.fixture
def fresh_limiter():
    limiter.reset()
    yield
    limiter.reset()


@pytest.fixture
def as_buyer():
    user = User(email="buyer@example.com", user_type="buyer", status="active")
    object.__setattr__(user, "id", 2)
    app.dependency_overrides[get_db] = lambda: AsyncMock()
    app.dependency_overrides[get_current_user] = lambda: user
    yield user
    app.dependency_overrides.clear()


@pytest.mark.asyncio
async def test_default_limit_applies_to_undecorated_routes(client: AsyncClient, fresh_limiter, as_buyer) -> None:
    with patch(
        "marketplace.services.settlement.get_settled_deals_for_user",
        new_callable=AsyncMock,
        return_value=[],
    ):
        for _ in range(DEFAULT_LIMIT):
            response = await client.get("/api/deals/active")
            assert response.status_code == 200
        response = await client.get("/api/deals/active")

    assert response.status_code == 429


@pytest.mark.asyncio
async def test_health_is_exempt(client: AsyncClient, fresh_limiter) -> None:
    for _ in range(DEFAULT_LIMIT + 1):
        response = await client.get("/api/health")
    assert response.status_code == 200
