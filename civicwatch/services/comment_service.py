from __future__ import annotations

import logging
from typing import Any

from civicwatch.domain.errors import ValidationFailed
from civicwatch.domain.models import Comment, to_row
from civicwatch.domain.roles import Actor, can_moderate_reports, can_view_comment
from civicwatch.domain.states import TimelineEventType
from civicwatch.infra.repositories import PortalRepository
from civicwatch.services.activity import ActivityRecorder
from civicwatch.services.identity_service import enforce_rate_limit, require_authenticated
from civicwatch.services.notification_service import NotificationService
from civicwatch.services.rate_limiter import RateLimiter
from civicwatch.services.report_service import ReportService

logger = logging.getLogger(__name__)

MAX_COMMENT_LENGTH = 5000


class CommentService:
    def __init__(
        self,
        repo: PortalRepository,
        reports: ReportService,
        limiter: RateLimiter,
        activity: ActivityRecorder,
        notifications: NotificationService,
    ) -> None:
        self.repo = repo
        self.reports = reports
        self.limiter = limiter
        self.activity = activity
        self.notifications = notifications

    def add_comment(self, report_id: str, actor: Actor, content: str | None, is_public: bool = True) -> dict[str, Any]:
        require_authenticated(actor)
        text = str(content or "").strip()
        if not text:
            raise ValidationFailed("Comment content is required", fields=["content"])
        if len(text) > MAX_COMMENT_LENGTH:
            raise ValidationFailed(
                f"Comment must be at most {MAX_COMMENT_LENGTH} characters",
                fields=["content"],
            )
        enforce_rate_limit(self.limiter, "comment_posting", str(actor.profile_id), "Too many comments.")
        report = self.reports.require_existing(report_id)

        # The author's role is frozen on the row.
        comment = Comment(
            report_id=report_id,
            author_user_id=str(actor.profile_id),
            author_role=actor.role.value,
            content=text,
            is_public=bool(is_public),
        )
        row = self.repo.create_comment(to_row(comment))

        self.activity.timeline(
            report_id,
            TimelineEventType.COMMENT_ADDED,
            actor.profile_id,
            metadata={"comment_id": row["id"], "is_public": comment.is_public},
        )
        if can_moderate_reports(actor.role):
            self.notifications.official_commented(report, actor.profile_id)
        return row

    def list_comments(self, report_id: str, actor: Actor) -> list[dict[str, Any]]:
        self.reports.require_existing(report_id)
        return [c for c in self.repo.list_comments(report_id) if can_view_comment(c, actor)]
