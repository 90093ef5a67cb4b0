"""Celery app for background deal work.

Only the settlement sweep runs here today. Tasks drive async service code on
one long-lived loop per worker process, because the asyncpg pool is bound to
the loop it was created on.
"""

import asyncio
from collections.abc import Coroutine
from typing import Any, TypeVar

from celery import Celery

from marketplace.core.config import settings

T = TypeVar("T")

_loop: asyncio.AbstractEventLoop | None = None


def worker_loop() -> asyncio.AbstractEventLoop:
    global _loop
    if _loop is None or _loop.is_closed():
        _loop = asyncio.new_event_loop()
    return _loop


def run_async(coro: Coroutine[Any, Any, T]) -> T:
    """Run a coroutine to completion on the worker's shared loop."""
    return worker_loop().run_until_complete(coro)


celery_app = Celery(
    "deals_worker",
    broker=settings.redis_url,
    backend=settings.redis_url,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,
    beat_schedule={
        "settle-accepted-negotiations": {
            "task": "settle_accepted_negotiations",
            "schedule": settings.settlement_sweep_seconds,
            # A late sweep is superseded by the next one.
            "options": {"expires": settings.settlement_sweep_seconds},
        },
    },
)

import marketplace.workers.settlement_sweep  # noqa: F401, E402
