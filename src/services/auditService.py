"""
Audit trail writer. Audit rows are part of the caller's transaction.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from src.models.audit import AuditLog

logger = logging.getLogger(__name__)


def record(
    db: AsyncSession,
    *,
    action: str,
    entity_type: str,
    entity_id: int,
    user_id: Optional[int] = None,
    metadata: Optional[dict[str, Any]] = None,
) -> AuditLog:
    entry = AuditLog(
        user_id=user_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        metadata_json=metadata,
    )
    db.add(entry)
    logger.debug("Audit %s on %s %s by %s", action, entity_type, entity_id, user_id)
    return entry
