from __future__ import annotations

import logging
from typing import Any

from civicwatch.domain.models import AuditLogEntry, TimelineEvent, to_row
from civicwatch.domain.states import ReportStatus, TimelineEventType
from civicwatch.infra.repositories import PortalRepository, RepositoryError

logger = logging.getLogger(__name__)


def _status_value(status: ReportStatus | str | None) -> str | None:
    if status is None:
        return None
    return status.value if isinstance(status, ReportStatus) else str(status)


class ActivityRecorder:
    """Writes the timeline and audit rows that follow a committed primary write.

    A failure here is logged and reported as ``None``: the primary record is
    already stored and the request still succeeds.
    """

    def __init__(self, repo: PortalRepository) -> None:
        self.repo = repo

    def timeline(
        self,
        report_id: str,
        event_type: TimelineEventType,
        performed_by: str | None,
        *,
        from_status: ReportStatus | str | None = None,
        to_status: ReportStatus | str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> dict[str, Any] | None:
        event = TimelineEvent(
            report_id=report_id,
            event_type=event_type.value,
            performed_by_user_id=performed_by,
            from_status=_status_value(from_status),
            to_status=_status_value(to_status),
            metadata=metadata or {},
        )
        try:
            return self.repo.add_timeline_event(to_row(event))
        except RepositoryError:
            logger.exception("Timeline event %s for report %s was not recorded", event_type.value, report_id)
            return None

    def audit(
        self,
        action: str,
        entity_type: str,
        entity_id: str | None,
        actor_user_id: str | None,
        metadata: dict[str, Any] | None = None,
    ) -> dict[str, Any] | None:
        entry = AuditLogEntry(
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            actor_user_id=actor_user_id,
            metadata=metadata or {},
        )
        try:
            return self.repo.add_audit_log(to_row(entry))
        except RepositoryError:
            logger.exception("Audit entry %s for %s %s was not recorded", action, entity_type, entity_id)
            return None
