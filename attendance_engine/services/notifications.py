from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.orm import Session

from attendance_engine.models import Notification, NotificationType

logger = logging.getLogger("attendance_engine.notifications")


def create_notification(
    db: Session,
    *,
    user_id: int,
    company_id: int,
    notification_type: NotificationType,
    title: str,
    message: str,
    data: dict[str, Any] | None = None,
) -> Notification:
    notification = Notification(
        user_id=user_id,
        company_id=company_id,
        type=notification_type,
        title=title,
        message=message,
        data=data or {},
    )
    db.add(notification)
    db.commit()
    return notification


def notify_best_effort(
    db: Session,
    *,
    user_id: int | None,
    company_id: int,
    notification_type: NotificationType,
    title: str,
    message: str,
    data: dict[str, Any] | None = None,
) -> bool:
    """Write a notification without ever failing the caller."""
    if user_id is None:
        return False
    try:
        create_notification(
            db,
            user_id=user_id,
            company_id=company_id,
            notification_type=notification_type,
            title=title,
            message=message,
            data=data,
        )
    except Exception:
        db.rollback()
        logger.exception(
            "notification_write_failed",
            extra={"user_id": user_id, "notification_type": notification_type.value},
        )
        return False
    return True
