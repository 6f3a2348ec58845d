import logging
from typing import Any, Dict, Optional, Union

from sqlalchemy.orm import Session

from storefront.models.system import AuditLog

logger = logging.getLogger(__name__)


def record_audit(
    db: Session,
    actor_id: Optional[int],
    action: str,
    entity_type: str,
    entity_id: Union[int, str],
    details: Optional[Dict[str, Any]] = None,
) -> AuditLog:
    """Stage an audit row on the caller's transaction; the caller commits."""
    entry = AuditLog(
        actor_id=actor_id,
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id),
        details=details or {},
    )
    db.add(entry)
    logger.debug(f"Audit {action} {entity_type}:{entity_id} by {actor_id}")
    return entry
