"""In-app notification records for order events."""

from sqlalchemy import select

from vaultmarket.common.logging import logger
from vaultmarket.services.notification.models import Notification


class NotificationService:
    """Writes notification rows in their own transaction.

    Called from the side-effect dispatcher, so a failure here never touches
    the order transition that triggered it.
    """

    def __init__(self, session_factory, service_name: str = "notification") -> None:
        self.session_factory = session_factory
        self.service_name = service_name

    def create_notification(
        self,
        user_id: str,
        type: str,
        title: str,
        body: str,
        link: str | None = None,
        metadata: dict | None = None,
    ) -> Notification:
        with self.session_factory() as db:
            notification = Notification(
                user_id=user_id,
                type=type,
                title=title,
                body=body,
                link=link,
                metadata_=metadata or {},
            )
            db.add(notification)
            db.commit()
            logger.info("notification_created user_id=%s type=%s", user_id, type)
            return notification

    def list_for_user(self, user_id: str, limit: int = 20) -> list[Notification]:
        with self.session_factory() as db:
            return list(
                db.execute(
                    select(Notification)
                    .where(Notification.user_id == user_id)
                    .order_by(Notification.created_at.desc())
                    .limit(limit)
                ).scalars()
            )
