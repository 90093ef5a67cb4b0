"""Audit trail for destructive and settlement operations."""

import json
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.core.logging_config import request_id_var
from marketplace.models.audit_log import AuditLog

logger = logging.getLogger(__name__)


def log_audit(
    db: AsyncSession,
    *,
    action: str,
    entity_type: str,
    entity_id: int,
    actor_id: int | None = None,
    details: dict | None = None,
) -> AuditLog:
    """Stage an audit entry in the caller's unit of work.

    The row commits or rolls back together with the change it describes and
    carries the id of the request that made it (``None`` for the sweep).
    """
    request_id = request_id_var.get()
    entry = AuditLog(
        actor_id=actor_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        request_id=None if request_id == "-" else request_id,
        details=json.dumps(details, default=str) if details else None,
    )
    db.add(entry)
    logger.debug("audit %s %s/%s", action, entity_type, entity_id)
    return entry
