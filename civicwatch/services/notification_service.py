from __future__ import annotations

import logging
from typing import Any

from civicwatch.domain.errors import NotFound
from civicwatch.domain.models import Notification, to_row
from civicwatch.domain.roles import Actor
from civicwatch.infra.repositories import PortalRepository, RepositoryError
from civicwatch.services.identity_service import require_authenticated
from civicwatch.services.pagination import clamp_page, page_envelope

logger = logging.getLogger(__name__)

REPORT_STATUS_CHANGE = "report_status_change"
NEW_COMMENT = "new_comment"


class NotificationService:
    def __init__(self, repo: PortalRepository) -> None:
        self.repo = repo

    def notify(self, user_id: str, type: str, title: str, body: str) -> dict[str, Any] | None:
        notification = Notification(user_id=user_id, type=type, title=title, body=body)
        try:
            return self.repo.create_notification(to_row(notification))
        except RepositoryError:
            logger.exception("Notification %s for user %s was not recorded", type, user_id)
            return None

    def report_status_changed(self, report: dict[str, Any], new_status: str) -> dict[str, Any] | None:
        recipient = _reporter_of(report)
        if not recipient:
            return None
        return self.notify(
            recipient,
            REPORT_STATUS_CHANGE,
            "Report Status Updated",
            f'Your report "{report.get("title")}" status changed to {new_status}',
        )

    def official_commented(self, report: dict[str, Any], commenter_id: str | None) -> dict[str, Any] | None:
        recipient = _reporter_of(report)
        if not recipient or recipient == commenter_id:
            return None
        return self.notify(
            recipient,
            NEW_COMMENT,
            "New Comment on Your Report",
            f'An official commented on your report "{report.get("title")}"',
        )

    def list_for(self, actor: Actor, *, unread_only: bool = False, page: int = 1, limit: int = 20) -> dict[str, Any]:
        require_authenticated(actor)
        page, limit = clamp_page(page, limit)
        rows, total = self.repo.list_notifications(str(actor.profile_id), unread_only, page, limit)
        unread = self.repo.count_unread_notifications(str(actor.profile_id))
        return {
            "notifications": rows,
            "unread_count": unread,
            "pagination": page_envelope(page, limit, total),
        }

    def mark_read(self, notification_id: str, actor: Actor) -> dict[str, Any]:
        require_authenticated(actor)
        recipient = str(actor.profile_id)
        existing = self.repo.get_notification(notification_id, recipient)
        if not existing:
            raise NotFound("Notification not found")
        if existing.get("is_read"):
            return existing
        return self.repo.mark_notification_read(notification_id, recipient) or existing

    def mark_all_read(self, actor: Actor) -> dict[str, Any]:
        require_authenticated(actor)
        updated = self.repo.mark_all_notifications_read(str(actor.profile_id))
        return {"message": "All notifications marked as read", "updated": updated}


def _reporter_of(report: dict[str, Any]) -> str | None:
    if report.get("is_anonymous"):
        return None
    reporter = report.get("reporter_user_id")
    return str(reporter) if reporter else None
