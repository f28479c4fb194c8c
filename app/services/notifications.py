"""
Notification sink for automated sync outcomes.
"""
import logging
from typing import Any, Optional

from sqlalchemy.orm import Session

from app.models import Notification

logger = logging.getLogger(__name__)


def create_notification(
    db: Session,
    tenant_id: str,
    type: str,
    title: str,
    message: str,
    severity: str = "info",
    store_id: Optional[str] = None,
    data: Optional[dict[str, Any]] = None,
) -> Notification:
    notification = Notification(
        tenant_id=tenant_id,
        store_id=store_id,
        type=type,
        title=title,
        message=message,
        severity=severity,
        data=data or {},
    )
    db.add(notification)
    db.commit()
    logger.info("Notification %s (%s) for tenant %s: %s", type, severity, tenant_id, title)
    return notification
