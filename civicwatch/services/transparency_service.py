from __future__ import annotations

import logging
import re
from collections import defaultdict
from typing import Any, Iterable

from civicwatch.domain.errors import AccessDenied, NotFound, ValidationFailed
from civicwatch.domain.models import FinancialTransaction, Project, to_row
from civicwatch.domain.roles import Actor, can_manage_projects, can_record_transactions
from civicwatch.domain.states import ProjectStatus, TransactionType, enum_values
from civicwatch.infra.ai_oracle import OracleError, TextOracle
from civicwatch.infra.repositories import PortalRepository
from civicwatch.services.activity import ActivityRecorder
from civicwatch.services.identity_service import require_authenticated
from civicwatch.services.pagination import clamp_page, page_envelope

logger = logging.getLogger(__name__)

QUERY_RESULT_LIMIT = 50
MAX_QUERY_LENGTH = 500
DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
PROJECT_UPDATABLE_FIELDS = (
    "name",
    "description",
    "department",
    "location",
    "start_date",
    "end_date",
    "status",
    "total_budget_amount",
)


def _amount(value: Any) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


def summarize_transactions(transactions: Iterable[dict[str, Any]]) -> dict[str, float]:
    totals = {"allocated": 0.0, "released": 0.0, "expenditure": 0.0}
    keys = {
        TransactionType.ALLOCATION.value: "allocated",
        TransactionType.RELEASE.value: "released",
        TransactionType.EXPENDITURE.value: "expenditure",
    }
    for txn in transactions:
        key = keys.get(str(txn.get("transaction_type")))
        if key:
            totals[key] += _amount(txn.get("amount"))
    return totals


def utilization_rate(allocated: float, expenditure: float) -> float:
    """Expenditure as a percentage of allocation; 0 when nothing is allocated."""
    if allocated <= 0:
        return 0.0
    return round(expenditure / allocated * 100, 2)


def _number(value: Any, field: str) -> float | None:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ValidationFailed(f"{field} must be a number", fields=[field]) from exc


def _status(value: Any) -> str | None:
    if not value:
        return None
    try:
        return ProjectStatus(str(value).strip().lower()).value
    except ValueError as exc:
        raise ValidationFailed(
            f"status must be one of: {', '.join(enum_values(ProjectStatus))}",
            fields=["status"],
        ) from exc


class TransparencyService:
    def __init__(self, repo: PortalRepository, oracle: TextOracle, activity: ActivityRecorder) -> None:
        self.repo = repo
        self.oracle = oracle
        self.activity = activity

    def summary(self) -> dict[str, Any]:
        projects, _ = self.repo.list_projects({})
        transactions = self.repo.list_transactions()

        project_stats: dict[str, Any] = {s: 0 for s in enum_values(ProjectStatus)}
        project_stats["total_budget"] = 0.0
        project_department: dict[str, str] = {}
        departments: dict[str, dict[str, Any]] = defaultdict(
            lambda: {"count": 0, "budget": 0.0, "allocated": 0.0, "released": 0.0, "expenditure": 0.0}
        )
        for project in projects:
            if project.get("status") in project_stats:
                project_stats[project["status"]] += 1
            budget = _amount(project.get("total_budget_amount"))
            project_stats["total_budget"] += budget
            dept = project.get("department") or "Unknown"
            project_department[str(project["id"])] = dept
            departments[dept]["count"] += 1
            departments[dept]["budget"] += budget

        by_project: dict[str, list[dict[str, Any]]] = defaultdict(list)
        for txn in transactions:
            by_project[str(txn.get("project_id"))].append(txn)
        for project_id, rows in by_project.items():
            dept = project_department.get(project_id)
            if dept is None:
                continue
            for key, value in summarize_transactions(rows).items():
                departments[dept][key] += value
        for dept in departments.values():
            dept["utilization_rate"] = utilization_rate(dept["allocated"], dept["expenditure"])

        totals = summarize_transactions(transactions)
        return {
            "projects": project_stats,
            "financials": {
                "total_allocated": totals["allocated"],
                "total_released": totals["released"],
                "total_expenditure": totals["expenditure"],
            },
            "utilization_rate": utilization_rate(totals["allocated"], totals["expenditure"]),
            "departments": dict(departments),
        }

    def project_detail(self, project_id: str) -> dict[str, Any]:
        project = self._project(project_id)
        transactions = self.repo.list_transactions([project_id])
        totals = summarize_transactions(transactions)
        return {
            **project,
            "financial_summary": {
                "total_allocated": totals["allocated"],
                "total_released": totals["released"],
                "total_expenditure": totals["expenditure"],
                "utilization_rate": utilization_rate(totals["allocated"], totals["expenditure"]),
            },
            "transactions": transactions,
        }

    def list_projects(self, filters: dict[str, Any] | None = None, page: int = 1, limit: int = 20) -> dict[str, Any]:
        query = self._project_filters(filters or {})
        page, limit = clamp_page(page, limit)
        rows, total = self.repo.list_projects(query, page=page, limit=limit)
        return {"projects": rows, "pagination": page_envelope(page, limit, total)}

    def custom_report(self, filters: dict[str, Any]) -> dict[str, Any]:
        query = self._project_filters(filters)
        projects, _ = self.repo.list_projects(query, sort_by="budget", descending=True)
        enriched = self._with_financials(projects)
        totals = {
            "total_projects": len(enriched),
            "total_budget": sum(_amount(p.get("total_budget_amount")) for p in enriched),
            "total_allocated": sum(p["financial_summary"]["allocated"] for p in enriched),
            "total_released": sum(p["financial_summary"]["released"] for p in enriched),
            "total_expenditure": sum(p["financial_summary"]["expenditure"] for p in enriched),
        }
        totals["utilization_rate"] = utilization_rate(totals["total_allocated"], totals["total_expenditure"])
        return {"projects": enriched, "totals": totals, "filters_applied": query}

    def _with_financials(self, projects: list[dict[str, Any]]) -> list[dict[str, Any]]:
        ids = [str(p["id"]) for p in projects]
        by_project: dict[str, list[dict[str, Any]]] = defaultdict(list)
        for txn in self.repo.list_transactions(ids):
            by_project[str(txn.get("project_id"))].append(txn)
        return [{**p, "financial_summary": summarize_transactions(by_project[str(p["id"])])} for p in projects]

    @staticmethod
    def _project_filters(filters: dict[str, Any]) -> dict[str, Any]:
        query: dict[str, Any] = {}
        for key in ("department", "location"):
            if filters.get(key):
                query[key] = str(filters[key]).strip()
        status = _status(filters.get("status"))
        if status:
            query["status"] = status
        for key in ("date_from", "date_to"):
            if filters.get(key):
                query[key] = str(filters[key])
        for key in ("min_budget", "max_budget"):
            value = _number(filters.get(key), key)
            if value is not None:
                query[key] = value
        return query

    def natural_language_query(self, text: str) -> dict[str, Any]:
        query = str(text or "").strip()
        if not query:
            raise ValidationFailed("Query is required", fields=["query"])
        if len(query) > MAX_QUERY_LENGTH:
            raise ValidationFailed(f"Query must be at most {MAX_QUERY_LENGTH} characters", fields=["query"])

        try:
            raw = self.oracle.parse_transparency_query(query)
        except OracleError as exc:
            logger.warning("Transparency query parsing fell back to no filters: %s", exc)
            raw = {}
        parsed = sanitize_query_filters(raw)

        filters = {k: v for k, v in parsed.items() if k not in ("sort_by", "sort_order")}
        projects, _ = self.repo.list_projects(
            filters,
            sort_by=parsed.get("sort_by", "name"),
            descending=parsed.get("sort_order") == "desc",
            limit=QUERY_RESULT_LIMIT,
        )
        if projects:
            total_budget = sum(_amount(p.get("total_budget_amount")) for p in projects)
            summary = (
                f"Found {len(projects)} projects matching your query "
                f"with a combined budget of {total_budget:,.2f}."
            )
        else:
            summary = "No projects found matching your query."
        return {"query": query, "parsed_filters": parsed, "summary": summary, "results": projects}

    def create_project(self, actor: Actor, data: dict[str, Any]) -> dict[str, Any]:
        self._require_project_admin(actor)
        missing = [f for f in ("project_code", "name") if not str(data.get(f) or "").strip()]
        if missing:
            raise ValidationFailed("project_code and name are required", fields=missing)
        budget = _number(data.get("total_budget_amount"), "total_budget_amount") or 0.0
        if budget < 0:
            raise ValidationFailed("total_budget_amount must not be negative", fields=["total_budget_amount"])

        project = Project(
            project_code=str(data["project_code"]).strip(),
            name=str(data["name"]).strip(),
            description=data.get("description"),
            department=data.get("department"),
            location=data.get("location"),
            start_date=data.get("start_date"),
            end_date=data.get("end_date"),
            status=_status(data.get("status")) or ProjectStatus.PLANNED.value,
            total_budget_amount=budget,
        )
        row = self.repo.create_project(to_row(project))
        self.activity.audit(
            "project_created",
            "project",
            row["id"],
            actor.profile_id,
            {"project_code": project.project_code, "name": project.name},
        )
        logger.info("Project %s created by %s", row["id"], actor.profile_id)
        return row

    def update_project(self, project_id: str, actor: Actor, fields: dict[str, Any]) -> dict[str, Any]:
        self._require_project_admin(actor)
        unknown = sorted(set(fields) - set(PROJECT_UPDATABLE_FIELDS))
        if unknown:
            raise ValidationFailed(f"Fields cannot be updated: {', '.join(unknown)}", fields=unknown)
        updates = dict(fields)
        if "status" in updates:
            updates["status"] = _status(updates["status"])
            if updates["status"] is None:
                raise ValidationFailed("status must not be empty", fields=["status"])
        if "total_budget_amount" in updates:
            budget = _number(updates["total_budget_amount"], "total_budget_amount")
            if budget is None or budget < 0:
                raise ValidationFailed("total_budget_amount must not be negative", fields=["total_budget_amount"])
            updates["total_budget_amount"] = budget
        if not updates:
            raise ValidationFailed("No fields to update", fields=list(PROJECT_UPDATABLE_FIELDS))

        self._project(project_id)
        row = self.repo.update_project(project_id, updates)
        self.activity.audit("project_updated", "project", project_id, actor.profile_id, {"updates": updates})
        logger.info("Project %s updated by %s", project_id, actor.profile_id)
        return row

    def list_transactions(self, project_id: str) -> list[dict[str, Any]]:
        self._project(project_id)
        return self.repo.list_transactions([project_id])

    def record_transaction(self, project_id: str, actor: Actor, data: dict[str, Any]) -> dict[str, Any]:
        require_authenticated(actor)
        if not can_record_transactions(actor.role):
            raise AccessDenied("Only officials and admins can record transactions")
        missing = [f for f in ("transaction_type", "amount", "transaction_date") if data.get(f) in (None, "")]
        if missing:
            raise ValidationFailed("transaction_type, amount, and transaction_date are required", fields=missing)
        try:
            txn_type = TransactionType(str(data["transaction_type"]).strip().lower())
        except ValueError as exc:
            raise ValidationFailed(
                f"transaction_type must be one of: {', '.join(enum_values(TransactionType))}",
                fields=["transaction_type"],
            ) from exc
        amount = _number(data["amount"], "amount")
        if amount is None or amount <= 0:
            raise ValidationFailed("amount must be greater than zero", fields=["amount"])
        self._project(project_id)

        txn = FinancialTransaction(
            project_id=project_id,
            transaction_type=txn_type.value,
            amount=amount,
            transaction_date=str(data["transaction_date"]),
            description=data.get("description"),
            contractor_name=data.get("contractor_name"),
            invoice_reference=data.get("invoice_reference"),
        )
        row = self.repo.create_transaction(to_row(txn))
        self.activity.audit(
            "transaction_created",
            "financial_transaction",
            row["id"],
            actor.profile_id,
            {"project_id": project_id, "transaction_type": txn.transaction_type, "amount": amount},
        )
        return row

    def _project(self, project_id: str) -> dict[str, Any]:
        project = self.repo.get_project(project_id)
        if not project:
            raise NotFound("Project not found")
        return project

    @staticmethod
    def _require_project_admin(actor: Actor) -> None:
        require_authenticated(actor)
        if not can_manage_projects(actor.role):
            raise AccessDenied("Admin access required")


def sanitize_query_filters(raw: dict[str, Any]) -> dict[str, Any]:
    """Keep only well-formed filter values from an oracle response."""
    out: dict[str, Any] = {}
    for key in ("department", "location"):
        value = raw.get(key)
        if isinstance(value, str) and value.strip():
            out[key] = value.strip()[:100]
    status = str(raw.get("status") or "").strip().lower()
    if status in enum_values(ProjectStatus):
        out["status"] = status
    for key in ("min_budget", "max_budget"):
        value = raw.get(key)
        if isinstance(value, (int, float)) and not isinstance(value, bool) and value >= 0:
            out[key] = float(value)
    for key in ("date_from", "date_to"):
        value = raw.get(key)
        if isinstance(value, str) and DATE_RE.match(value):
            out[key] = value
    if raw.get("sort_by") in ("budget", "date", "name"):
        out["sort_by"] = raw["sort_by"]
    if raw.get("sort_order") in ("asc", "desc"):
        out["sort_order"] = raw["sort_order"]
    return out
