from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.orm import Session

from attendance_engine.models import AuditActorType, AuditLog

logger = logging.getLogger("attendance_engine.audit")

SYSTEM_ACTOR_ID = "system"


def log_audit(
    db: Session,
    *,
    actor_type: AuditActorType,
    actor_id: str | int,
    action: str,
    success: bool = True,
    company_id: int | None = None,
    entity_type: str | None = None,
    entity_id: str | int | None = None,
    details: dict[str, Any] | None = None,
    request_id: str | None = None,
) -> None:
    audit = AuditLog(
        ts_utc=datetime.now(timezone.utc),
        company_id=company_id,
        actor_type=actor_type,
        actor_id=str(actor_id),
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id) if entity_id is not None else None,
        success=success,
        details=details or {},
    )
    db.add(audit)
    try:
        db.commit()
    except Exception:
        db.rollback()
        logger.exception(
            "audit_log_write_failed",
            extra={
                "request_id": request_id,
                "action": action,
                "actor_type": actor_type.value,
                "actor_id": str(actor_id),
                "success": success,
            },
        )
        return

    logger.info(
        "audit_event",
        extra={
            "request_id": request_id,
            "action": action,
            "actor_type": actor_type.value,
            "actor_id": str(actor_id),
            "company_id": company_id,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "success": success,
            "details": details or {},
        },
    )


def log_system_audit(
    db: Session,
    *,
    action: str,
    company_id: int | None = None,
    details: dict[str, Any] | None = None,
) -> None:
    log_audit(
        db,
        actor_type=AuditActorType.SYSTEM,
        actor_id=SYSTEM_ACTOR_ID,
        action=action,
        company_id=company_id,
        details=details,
    )
