from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from enum import Enum
from typing import Any

from civicwatch.domain.errors import AccessDenied, NotFound, ValidationFailed
from civicwatch.domain.models import Report, to_row
from civicwatch.domain.roles import (
    Actor,
    Role,
    can_delete_reports,
    can_moderate_reports,
    can_view_comment,
    can_view_report,
)
from civicwatch.domain.state_machine import StatusTracker
from civicwatch.domain.states import ReportStatus, ReportType, Severity, TimelineEventType, enum_values
from civicwatch.infra.ai_oracle import OracleError, TextOracle
from civicwatch.infra.repositories import PortalRepository
from civicwatch.infra.storage import BlobStore, StorageError
from civicwatch.services.activity import ActivityRecorder
from civicwatch.services.identity_service import enforce_rate_limit, require_authenticated
from civicwatch.services.notification_service import NotificationService
from civicwatch.services.pagination import clamp_page, page_envelope
from civicwatch.services.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("type", "category", "title", "description")
UPDATABLE_FIELDS = ("status", "severity", "assigned_official_id")


def present_report(row: dict[str, Any]) -> dict[str, Any]:
    """API view of a report row; anonymous reports never carry a reporter."""
    out = dict(row)
    if out.get("is_anonymous"):
        out["reporter_user_id"] = None
    return out


def _enum_field(value: Any, enum_cls: type[Enum], field: str) -> Any:
    try:
        return enum_cls(str(value).strip().lower())
    except ValueError as exc:
        allowed = ", ".join(enum_values(enum_cls))
        raise ValidationFailed(f"{field} must be one of: {allowed}", fields=[field]) from exc


def _coordinate(value: Any, field: str, bound: float) -> float | None:
    if value is None or value == "":
        return None
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise ValidationFailed(f"{field} must be a number", fields=[field]) from exc
    if not -bound <= number <= bound:
        raise ValidationFailed(f"{field} must be between -{bound:g} and {bound:g}", fields=[field])
    return number


class ReportService:
    def __init__(
        self,
        repo: PortalRepository,
        oracle: TextOracle,
        limiter: RateLimiter,
        activity: ActivityRecorder,
        notifications: NotificationService,
        blob_store: BlobStore | None = None,
    ) -> None:
        self.repo = repo
        self.oracle = oracle
        self.limiter = limiter
        self.activity = activity
        self.notifications = notifications
        self.blob_store = blob_store
        self.tracker = StatusTracker()

    def create_report(self, data: dict[str, Any], actor: Actor, client_ip: str = "unknown") -> dict[str, Any]:
        missing = [f for f in REQUIRED_FIELDS if not str(data.get(f) or "").strip()]
        if missing:
            raise ValidationFailed(f"Missing required fields: {', '.join(missing)}", fields=missing)
        report_type = _enum_field(data["type"], ReportType, "type")
        severity = _enum_field(data.get("severity") or Severity.MEDIUM.value, Severity, "severity")
        lat = _coordinate(data.get("location_lat"), "location_lat", 90)
        lng = _coordinate(data.get("location_lng"), "location_lng", 180)
        is_anonymous = bool(data.get("is_anonymous", False))

        enforce_rate_limit(
            self.limiter,
            "report_submission",
            actor.profile_id or client_ip,
            "Too many reports submitted.",
        )

        description = str(data["description"]).strip()
        suggestion = self._suggest(description, report_type.value)
        report = Report(
            type=report_type.value,
            category=str(data["category"]).strip(),
            title=str(data["title"]).strip(),
            description=description,
            reporter_user_id=None if is_anonymous else actor.profile_id,
            is_anonymous=is_anonymous,
            severity=severity.value,
            location_lat=lat,
            location_lng=lng,
            location_address=str(data.get("location_address") or "").strip() or None,
            ai_category_suggestion=suggestion[0],
            ai_sentiment=suggestion[1],
        )
        row = self.repo.create_report(to_row(report))

        performer = None if is_anonymous else actor.profile_id
        self.activity.timeline(
            row["id"],
            TimelineEventType.CREATED,
            performer,
            to_status=ReportStatus.SUBMITTED,
            metadata={"is_anonymous": is_anonymous},
        )
        self.activity.audit(
            "report_created",
            "report",
            row["id"],
            actor.profile_id,
            {"type": report.type, "category": report.category, "is_anonymous": is_anonymous},
        )
        logger.info("Report %s created (type=%s, anonymous=%s)", row["id"], report.type, is_anonymous)
        return present_report(row)

    def _suggest(self, description: str, report_type: str) -> tuple[str | None, str | None]:
        try:
            suggestion = self.oracle.suggest_report_labels(description, report_type)
        except OracleError as exc:
            logger.warning("AI suggestion skipped: %s", exc)
            return None, None
        return suggestion.category, suggestion.sentiment

    def get_report(self, report_id: str, actor: Actor) -> dict[str, Any]:
        return present_report(self.require_viewable(report_id, actor))

    def require_viewable(self, report_id: str, actor: Actor) -> dict[str, Any]:
        report = self.repo.get_report(report_id)
        if not report:
            raise NotFound("Report not found")
        if not can_view_report(report, actor):
            logger.warning("Profile %s denied access to report %s", actor.profile_id, report_id)
            raise AccessDenied()
        return report

    def require_existing(self, report_id: str) -> dict[str, Any]:
        report = self.repo.get_report(report_id)
        if not report:
            raise NotFound("Report not found")
        return report

    def update_report(self, report_id: str, actor: Actor, fields: dict[str, Any]) -> dict[str, Any]:
        require_authenticated(actor)
        if not can_moderate_reports(actor.role):
            logger.warning("Profile %s denied report update on %s", actor.profile_id, report_id)
            raise AccessDenied("Only officials and admins can update reports")

        updates: dict[str, Any] = {}
        target_status: ReportStatus | None = None
        if "status" in fields:
            target_status = _enum_field(fields["status"], ReportStatus, "status")
            updates["status"] = target_status.value
        if "severity" in fields:
            updates["severity"] = _enum_field(fields["severity"], Severity, "severity").value
        if "assigned_official_id" in fields:
            updates["assigned_official_id"] = self._assignee(fields["assigned_official_id"])
        unknown = sorted(set(fields) - set(UPDATABLE_FIELDS))
        if unknown:
            raise ValidationFailed(f"Fields cannot be updated: {', '.join(unknown)}", fields=unknown)
        if not updates:
            raise ValidationFailed("No fields to update", fields=list(UPDATABLE_FIELDS))

        # Read before write so the timeline keeps the prior status.
        current = self.repo.get_report(report_id)
        if not current:
            raise NotFound("Report not found")
        change = self.tracker.change(current.get("status"), target_status) if target_status else None
        reassigned = (
            "assigned_official_id" in updates
            and updates["assigned_official_id"] != current.get("assigned_official_id")
        )

        updated = self.repo.update_report(report_id, updates)

        if change:
            self.activity.timeline(
                report_id,
                TimelineEventType.STATUS_CHANGE,
                actor.profile_id,
                from_status=change.from_status,
                to_status=change.to_status,
                metadata={"off_workflow": not change.on_workflow},
            )
            self.notifications.report_status_changed(updated, change.to_status.value)
        if reassigned:
            self.activity.timeline(
                report_id,
                TimelineEventType.ASSIGNED,
                actor.profile_id,
                metadata={
                    "assigned_official_id": updates["assigned_official_id"],
                    "previous_official_id": current.get("assigned_official_id"),
                },
            )
        self.activity.audit(
            "report_updated",
            "report",
            report_id,
            actor.profile_id,
            {"updates": updates, "previous_status": current.get("status")},
        )
        logger.info("Report %s updated by %s: %s", report_id, actor.profile_id, sorted(updates))
        return present_report(updated)

    def _assignee(self, value: Any) -> str | None:
        if value is None or value == "":
            return None
        profile = self.repo.get_profile(str(value))
        if not profile or not can_moderate_reports(Role.parse(profile.get("role"))):
            raise ValidationFailed("assigned_official_id must reference an official or admin", fields=["assigned_official_id"])
        return str(profile["id"])

    def delete_report(self, report_id: str, actor: Actor) -> dict[str, Any]:
        require_authenticated(actor)
        if not can_delete_reports(actor.role):
            logger.warning("Profile %s denied report deletion on %s", actor.profile_id, report_id)
            raise AccessDenied("Admin access required")
        report = self.repo.get_report(report_id)
        if not report:
            raise NotFound("Report not found")

        evidence = self.repo.list_evidence(report_id)
        if not self.repo.delete_report(report_id):
            raise NotFound("Report not found")
        self._remove_blobs([str(e.get("file_url")) for e in evidence if e.get("file_url")])
        self.activity.audit(
            "report_deleted",
            "report",
            report_id,
            actor.profile_id,
            {"title": report.get("title"), "type": report.get("type"), "evidence_count": len(evidence)},
        )
        logger.info("Report %s deleted by %s", report_id, actor.profile_id)
        return {"message": "Report deleted successfully"}

    def _remove_blobs(self, paths: list[str]) -> None:
        if not self.blob_store:
            return
        for path in paths:
            try:
                self.blob_store.remove(path)
            except StorageError:
                logger.exception("Evidence blob %s left behind after report deletion", path)

    def list_reports(
        self,
        actor: Actor,
        filters: dict[str, Any] | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> dict[str, Any]:
        require_authenticated(actor)
        filters = filters or {}
        query: dict[str, Any] = {}
        if filters.get("status"):
            query["status"] = _enum_field(filters["status"], ReportStatus, "status").value
        if filters.get("type"):
            query["type"] = _enum_field(filters["type"], ReportType, "type").value
        if filters.get("severity"):
            query["severity"] = _enum_field(filters["severity"], Severity, "severity").value
        for key in ("date_from", "date_to"):
            if filters.get(key):
                query[key] = str(filters[key])
        if not can_moderate_reports(actor.role):
            query["reporter_user_id"] = actor.profile_id
            query["is_anonymous"] = False

        page, limit = clamp_page(page, limit)
        rows, total = self.repo.list_reports(query, page, limit)
        return {
            "reports": [present_report(r) for r in rows],
            "pagination": page_envelope(page, limit, total),
        }

    def list_my_reports(self, actor: Actor, page: int = 1, limit: int = 20) -> dict[str, Any]:
        require_authenticated(actor)
        page, limit = clamp_page(page, limit)
        rows, total = self.repo.list_reports(
            {"reporter_user_id": actor.profile_id, "is_anonymous": False},
            page,
            limit,
        )
        return {
            "reports": [present_report(r) for r in rows],
            "pagination": page_envelope(page, limit, total),
        }

    def list_timeline(self, report_id: str, actor: Actor) -> list[dict[str, Any]]:
        report = self.require_viewable(report_id, actor)
        return _scrub_timeline(report, self.repo.list_timeline_events(report_id))

    def get_report_detail(self, report_id: str, actor: Actor) -> dict[str, Any]:
        report = self.require_viewable(report_id, actor)
        with ThreadPoolExecutor(max_workers=3) as pool:
            evidence = pool.submit(self.repo.list_evidence, report_id)
            timeline = pool.submit(self.repo.list_timeline_events, report_id)
            comments = pool.submit(self.repo.list_comments, report_id)
            return {
                "report": present_report(report),
                "evidence": evidence.result(),
                "timeline": _scrub_timeline(report, timeline.result()),
                "comments": [c for c in comments.result() if can_view_comment(c, actor)],
            }


def _scrub_timeline(report: dict[str, Any], events: list[dict[str, Any]]) -> list[dict[str, Any]]:
    if not report.get("is_anonymous"):
        return events
    return [
        {**e, "performed_by_user_id": None} if e.get("event_type") == TimelineEventType.CREATED.value else e
        for e in events
    ]
