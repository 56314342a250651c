from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from civicwatch.domain.states import ReportStatus, Severity


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_id() -> str:
    return str(uuid4())


@dataclass
class Report:
    type: str
    category: str
    title: str
    description: str
    reporter_user_id: str | None
    is_anonymous: bool = False
    severity: str = Severity.MEDIUM.value
    status: str = ReportStatus.SUBMITTED.value
    location_lat: float | None = None
    location_lng: float | None = None
    location_address: str | None = None
    assigned_official_id: str | None = None
    ai_category_suggestion: str | None = None
    ai_sentiment: str | None = None
    id: str = field(default_factory=new_id)
    created_at: str = field(default_factory=utc_now)
    updated_at: str = field(default_factory=utc_now)


@dataclass
class TimelineEvent:
    report_id: str
    event_type: str
    performed_by_user_id: str | None
    from_status: str | None = None
    to_status: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=new_id)
    created_at: str = field(default_factory=utc_now)


@dataclass
class Evidence:
    report_id: str
    file_url: str
    file_type: str
    original_filename: str
    uploaded_by_user_id: str | None
    id: str = field(default_factory=new_id)
    created_at: str = field(default_factory=utc_now)


@dataclass
class Comment:
    report_id: str
    author_user_id: str
    author_role: str
    content: str
    is_public: bool = True
    id: str = field(default_factory=new_id)
    created_at: str = field(default_factory=utc_now)


@dataclass
class Notification:
    user_id: str
    type: str
    title: str
    body: str
    is_read: bool = False
    id: str = field(default_factory=new_id)
    created_at: str = field(default_factory=utc_now)


@dataclass
class AuditLogEntry:
    action: str
    entity_type: str
    entity_id: str | None
    actor_user_id: str | None
    metadata: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=new_id)
    created_at: str = field(default_factory=utc_now)


@dataclass
class Project:
    project_code: str
    name: str
    description: str | None = None
    department: str | None = None
    location: str | None = None
    start_date: str | None = None
    end_date: str | None = None
    status: str = "planned"
    total_budget_amount: float = 0.0
    id: str = field(default_factory=new_id)
    created_at: str = field(default_factory=utc_now)
    updated_at: str = field(default_factory=utc_now)


@dataclass
class FinancialTransaction:
    project_id: str
    transaction_type: str
    amount: float
    transaction_date: str
    description: str | None = None
    contractor_name: str | None = None
    invoice_reference: str | None = None
    id: str = field(default_factory=new_id)
    created_at: str = field(default_factory=utc_now)


def to_row(record: Any) -> dict[str, Any]:
    return asdict(record)
