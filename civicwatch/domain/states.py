from __future__ import annotations

from enum import Enum


class ReportStatus(str, Enum):
    SUBMITTED = "submitted"
    UNDER_REVIEW = "under_review"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    REJECTED = "rejected"


class ReportType(str, Enum):
    INFRASTRUCTURE = "infrastructure"
    MISCONDUCT = "misconduct"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class EvidenceType(str, Enum):
    IMAGE = "image"
    VIDEO = "video"
    DOCUMENT = "document"


class TimelineEventType(str, Enum):
    CREATED = "created"
    STATUS_CHANGE = "status_change"
    COMMENT_ADDED = "comment_added"
    EVIDENCE_ADDED = "evidence_added"
    ASSIGNED = "assigned"


class ProjectStatus(str, Enum):
    PLANNED = "planned"
    ONGOING = "ongoing"
    COMPLETED = "completed"
    ON_HOLD = "on_hold"


class TransactionType(str, Enum):
    ALLOCATION = "allocation"
    RELEASE = "release"
    EXPENDITURE = "expenditure"


# The review workflow. Officials may still set any status; this graph only
# classifies a change as on- or off-workflow for the timeline.
WORKFLOW_TRANSITIONS: dict[ReportStatus, set[ReportStatus]] = {
    ReportStatus.SUBMITTED: {ReportStatus.UNDER_REVIEW, ReportStatus.REJECTED},
    ReportStatus.UNDER_REVIEW: {ReportStatus.ASSIGNED, ReportStatus.REJECTED},
    ReportStatus.ASSIGNED: {ReportStatus.IN_PROGRESS, ReportStatus.REJECTED},
    ReportStatus.IN_PROGRESS: {ReportStatus.RESOLVED, ReportStatus.REJECTED},
    ReportStatus.RESOLVED: set(),
    ReportStatus.REJECTED: set(),
}


def enum_values(enum_cls: type[Enum]) -> list[str]:
    return [str(member.value) for member in enum_cls]
