from __future__ import annotations

import re
from datetime import datetime, timezone
from threading import RLock
from typing import Any
from uuid import uuid4

from civicwatch.infra.supabase_client import get_supabase_client


class RepositoryError(RuntimeError):
    pass


Page = tuple[list[dict[str, Any]], int]

PROJECT_SORT_COLUMNS = {
    "budget": "total_budget_amount",
    "date": "start_date",
    "name": "name",
    "created": "created_at",
}


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _extract_missing_column_name(message: str) -> str | None:
    # "Could not find the 'file_url' column of 'report_evidence' in the schema cache"
    patterns = [
        r"'([^']+)'\s+column",
        r"column\s+'([^']+)'",
        r'Could not find the "([^"]+)" column',
    ]
    for pat in patterns:
        m = re.search(pat, message, flags=re.IGNORECASE)
        if m:
            return m.group(1)
    return None


def _offset(page: int, limit: int) -> int:
    return (max(1, page) - 1) * limit


def _is_malformed_id_error(message: str) -> bool:
    # Postgres 22P02: "invalid input syntax for type uuid: \"abc\""
    lowered = message.lower()
    return "invalid input syntax for type uuid" in lowered or "22p02" in lowered


def _matches_report(row: dict[str, Any], filters: dict[str, Any]) -> bool:
    for key in ("reporter_user_id", "is_anonymous", "status", "type", "severity"):
        if key in filters and filters[key] is not None and row.get(key) != filters[key]:
            return False
    created = str(row.get("created_at") or "")
    if filters.get("date_from") and created < str(filters["date_from"]):
        return False
    if filters.get("date_to") and created > str(filters["date_to"]):
        return False
    return True


def _matches_project(row: dict[str, Any], filters: dict[str, Any]) -> bool:
    for key in ("department", "location"):
        needle = filters.get(key)
        if needle and str(needle).lower() not in str(row.get(key) or "").lower():
            return False
    if filters.get("status") and row.get("status") != filters["status"]:
        return False
    if filters.get("date_from") and str(row.get("start_date") or "") < str(filters["date_from"]):
        return False
    if filters.get("date_to") and (not row.get("end_date") or str(row["end_date"]) > str(filters["date_to"])):
        return False
    budget = float(row.get("total_budget_amount") or 0)
    if filters.get("min_budget") is not None and budget < float(filters["min_budget"]):
        return False
    if filters.get("max_budget") is not None and budget > float(filters["max_budget"]):
        return False
    return True


class PortalRepository:
    """Persistence contract for the portal tables."""

    # profiles / user_roles
    def get_profile(self, profile_id: str) -> dict[str, Any] | None:
        raise NotImplementedError

    def get_profile_by_auth_user(self, auth_user_id: str) -> dict[str, Any] | None:
        raise NotImplementedError

    def create_profile(self, row: dict[str, Any]) -> dict[str, Any]:
        raise NotImplementedError

    def update_profile(self, profile_id: str, updates: dict[str, Any]) -> dict[str, Any]:
        raise NotImplementedError

    def list_profiles(self, search: str | None, page: int, limit: int, role: str | None = None) -> Page:
        raise NotImplementedError

    def get_user_role(self, profile_id: str) -> str | None:
        raise NotImplementedError

    def set_user_role(self, profile_id: str, role: str) -> dict[str, Any]:
        raise NotImplementedError

    # reports
    def create_report(self, row: dict[str, Any]) -> dict[str, Any]:
        raise NotImplementedError

    def get_report(self, report_id: str) -> dict[str, Any] | None:
        raise NotImplementedError

    def update_report(self, report_id: str, updates: dict[str, Any]) -> dict[str, Any]:
        raise NotImplementedError

    def delete_report(self, report_id: str) -> bool:
        raise NotImplementedError

    def list_reports(self, filters: dict[str, Any], page: int, limit: int) -> Page:
        raise NotImplementedError

    # append-only timeline
    def add_timeline_event(self, row: dict[str, Any]) -> dict[str, Any]:
        raise NotImplementedError

    def list_timeline_events(self, report_id: str) -> list[dict[str, Any]]:
        raise NotImplementedError

    # evidence
    def create_evidence(self, row: dict[str, Any]) -> dict[str, Any]:
        raise NotImplementedError

    def get_evidence(self, evidence_id: str) -> dict[str, Any] | None:
        raise NotImplementedError

    def list_evidence(self, report_id: str) -> list[dict[str, Any]]:
        raise NotImplementedError

    # comments
    def create_comment(self, row: dict[str, Any]) -> dict[str, Any]:
        raise NotImplementedError

    def list_comments(self, report_id: str) -> list[dict[str, Any]]:
        raise NotImplementedError

    # notifications
    def create_notification(self, row: dict[str, Any]) -> dict[str, Any]:
        raise NotImplementedError

    def get_notification(self, notification_id: str, user_id: str) -> dict[str, Any] | None:
        raise NotImplementedError

    def list_notifications(self, user_id: str, unread_only: bool, page: int, limit: int) -> Page:
        raise NotImplementedError

    def count_unread_notifications(self, user_id: str) -> int:
        raise NotImplementedError

    def mark_notification_read(self, notification_id: str, user_id: str) -> dict[str, Any] | None:
        raise NotImplementedError

    def mark_all_notifications_read(self, user_id: str) -> int:
        raise NotImplementedError

    # projects / financial_transactions
    def create_project(self, row: dict[str, Any]) -> dict[str, Any]:
        raise NotImplementedError

    def get_project(self, project_id: str) -> dict[str, Any] | None:
        raise NotImplementedError

    def update_project(self, project_id: str, updates: dict[str, Any]) -> dict[str, Any]:
        raise NotImplementedError

    def list_projects(
        self,
        filters: dict[str, Any],
        *,
        sort_by: str = "created",
        descending: bool = True,
        page: int = 1,
        limit: int | None = None,
    ) -> Page:
        raise NotImplementedError

    def create_transaction(self, row: dict[str, Any]) -> dict[str, Any]:
        raise NotImplementedError

    def list_transactions(self, project_ids: list[str] | None = None) -> list[dict[str, Any]]:
        raise NotImplementedError

    # audit_logs
    def add_audit_log(self, row: dict[str, Any]) -> dict[str, Any]:
        raise NotImplementedError


class InMemoryRepository(PortalRepository):
    def __init__(self) -> None:
        self._lock = RLock()
        self._profiles: dict[str, dict[str, Any]] = {}
        self._roles: dict[str, str] = {}
        self._reports: dict[str, dict[str, Any]] = {}
        self._timeline: list[dict[str, Any]] = []
        self._evidence: dict[str, dict[str, Any]] = {}
        self._comments: list[dict[str, Any]] = []
        self._notifications: dict[str, dict[str, Any]] = {}
        self._projects: dict[str, dict[str, Any]] = {}
        self._transactions: list[dict[str, Any]] = []
        self._audit: list[dict[str, Any]] = []

    @staticmethod
    def _stamp(row: dict[str, Any]) -> dict[str, Any]:
        return {"id": row.get("id") or str(uuid4()), "created_at": row.get("created_at") or _utc_now(), **row}

    def _with_role(self, profile: dict[str, Any] | None) -> dict[str, Any] | None:
        if not profile:
            return None
        return {**profile, "role": self._roles.get(str(profile["id"]), "citizen")}

    def get_profile(self, profile_id: str) -> dict[str, Any] | None:
        with self._lock:
            return self._with_role(self._profiles.get(profile_id))

    def get_profile_by_auth_user(self, auth_user_id: str) -> dict[str, Any] | None:
        with self._lock:
            for row in self._profiles.values():
                if row.get("auth_user_id") == auth_user_id:
                    return self._with_role(row)
            return None

    def create_profile(self, row: dict[str, Any]) -> dict[str, Any]:
        with self._lock:
            item = self._stamp(row)
            item.setdefault("is_active", True)
            self._profiles[str(item["id"])] = item
            return self._with_role(item) or {}

    def update_profile(self, profile_id: str, updates: dict[str, Any]) -> dict[str, Any]:
        with self._lock:
            existing = self._profiles.get(profile_id)
            if not existing:
                raise RepositoryError(f"Profile not found: {profile_id}")
            existing.update(updates)
            return self._with_role(existing) or {}

    def list_profiles(self, search: str | None, page: int, limit: int, role: str | None = None) -> Page:
        with self._lock:
            rows = [self._with_role(p) or {} for p in self._profiles.values()]
        if search:
            needle = search.lower()
            rows = [
                r for r in rows
                if needle in str(r.get("full_name") or "").lower() or needle in str(r.get("email") or "").lower()
            ]
        if role:
            rows = [r for r in rows if r.get("role") == role]
        rows.sort(key=lambda r: str(r.get("created_at", "")), reverse=True)
        start = _offset(page, limit)
        return rows[start:start + limit], len(rows)

    def get_user_role(self, profile_id: str) -> str | None:
        with self._lock:
            return self._roles.get(profile_id)

    def set_user_role(self, profile_id: str, role: str) -> dict[str, Any]:
        with self._lock:
            if profile_id not in self._profiles:
                raise RepositoryError(f"Profile not found: {profile_id}")
            self._roles[profile_id] = role
            return {"user_id": profile_id, "role": role}

    def create_report(self, row: dict[str, Any]) -> dict[str, Any]:
        with self._lock:
            item = self._stamp(row)
            item.setdefault("updated_at", item["created_at"])
            self._reports[str(item["id"])] = item
            return dict(item)

    def get_report(self, report_id: str) -> dict[str, Any] | None:
        with self._lock:
            row = self._reports.get(report_id)
            return dict(row) if row else None

    def update_report(self, report_id: str, updates: dict[str, Any]) -> dict[str, Any]:
        with self._lock:
            existing = self._reports.get(report_id)
            if not existing:
                raise RepositoryError(f"Report not found: {report_id}")
            existing.update(updates)
            existing["updated_at"] = _utc_now()
            return dict(existing)

    def delete_report(self, report_id: str) -> bool:
        with self._lock:
            if self._reports.pop(report_id, None) is None:
                return False
            # Mirrors ON DELETE CASCADE on the child tables.
            self._timeline = [r for r in self._timeline if r.get("report_id") != report_id]
            self._comments = [r for r in self._comments if r.get("report_id") != report_id]
            self._evidence = {k: v for k, v in self._evidence.items() if v.get("report_id") != report_id}
            return True

    def list_reports(self, filters: dict[str, Any], page: int, limit: int) -> Page:
        with self._lock:
            rows = [dict(r) for r in self._reports.values() if _matches_report(r, filters)]
        rows.sort(key=lambda r: str(r.get("created_at", "")), reverse=True)
        start = _offset(page, limit)
        return rows[start:start + limit], len(rows)

    def add_timeline_event(self, row: dict[str, Any]) -> dict[str, Any]:
        with self._lock:
            item = self._stamp(row)
            self._timeline.append(item)
            return dict(item)

    def list_timeline_events(self, report_id: str) -> list[dict[str, Any]]:
        with self._lock:
            rows = [dict(r) for r in self._timeline if r.get("report_id") == report_id]
        return sorted(rows, key=lambda r: str(r.get("created_at", "")))

    def create_evidence(self, row: dict[str, Any]) -> dict[str, Any]:
        with self._lock:
            item = self._stamp(row)
            self._evidence[str(item["id"])] = item
            return dict(item)

    def get_evidence(self, evidence_id: str) -> dict[str, Any] | None:
        with self._lock:
            row = self._evidence.get(evidence_id)
            return dict(row) if row else None

    def list_evidence(self, report_id: str) -> list[dict[str, Any]]:
        with self._lock:
            rows = [dict(r) for r in self._evidence.values() if r.get("report_id") == report_id]
        return sorted(rows, key=lambda r: str(r.get("created_at", "")), reverse=True)

    def create_comment(self, row: dict[str, Any]) -> dict[str, Any]:
        with self._lock:
            item = self._stamp(row)
            self._comments.append(item)
            return dict(item)

    def list_comments(self, report_id: str) -> list[dict[str, Any]]:
        with self._lock:
            rows = [dict(r) for r in self._comments if r.get("report_id") == report_id]
        return sorted(rows, key=lambda r: str(r.get("created_at", "")))

    def create_notification(self, row: dict[str, Any]) -> dict[str, Any]:
        with self._lock:
            item = self._stamp(row)
            item.setdefault("is_read", False)
            self._notifications[str(item["id"])] = item
            return dict(item)

    def get_notification(self, notification_id: str, user_id: str) -> dict[str, Any] | None:
        with self._lock:
            row = self._notifications.get(notification_id)
            if not row or row.get("user_id") != user_id:
                return None
            return dict(row)

    def list_notifications(self, user_id: str, unread_only: bool, page: int, limit: int) -> Page:
        with self._lock:
            rows = [
                dict(r) for r in self._notifications.values()
                if r.get("user_id") == user_id and (not unread_only or not r.get("is_read"))
            ]
        rows.sort(key=lambda r: str(r.get("created_at", "")), reverse=True)
        start = _offset(page, limit)
        return rows[start:start + limit], len(rows)

    def count_unread_notifications(self, user_id: str) -> int:
        with self._lock:
            return sum(1 for r in self._notifications.values() if r.get("user_id") == user_id and not r.get("is_read"))

    def mark_notification_read(self, notification_id: str, user_id: str) -> dict[str, Any] | None:
        with self._lock:
            row = self._notifications.get(notification_id)
            if not row or row.get("user_id") != user_id:
                return None
            row["is_read"] = True
            return dict(row)

    def mark_all_notifications_read(self, user_id: str) -> int:
        with self._lock:
            changed = 0
            for row in self._notifications.values():
                if row.get("user_id") == user_id and not row.get("is_read"):
                    row["is_read"] = True
                    changed += 1
            return changed

    def create_project(self, row: dict[str, Any]) -> dict[str, Any]:
        with self._lock:
            item = self._stamp(row)
            self._projects[str(item["id"])] = item
            return dict(item)

    def get_project(self, project_id: str) -> dict[str, Any] | None:
        with self._lock:
            row = self._projects.get(project_id)
            return dict(row) if row else None

    def update_project(self, project_id: str, updates: dict[str, Any]) -> dict[str, Any]:
        with self._lock:
            existing = self._projects.get(project_id)
            if not existing:
                raise RepositoryError(f"Project not found: {project_id}")
            existing.update(updates)
            existing["updated_at"] = _utc_now()
            return dict(existing)

    def list_projects(
        self,
        filters: dict[str, Any],
        *,
        sort_by: str = "created",
        descending: bool = True,
        page: int = 1,
        limit: int | None = None,
    ) -> Page:
        column = PROJECT_SORT_COLUMNS.get(sort_by, "created_at")
        with self._lock:
            rows = [dict(r) for r in self._projects.values() if _matches_project(r, filters)]
        if column == "total_budget_amount":
            rows.sort(key=lambda r: float(r.get(column) or 0), reverse=descending)
        else:
            rows.sort(key=lambda r: str(r.get(column) or ""), reverse=descending)
        if limit is None:
            return rows, len(rows)
        start = _offset(page, limit)
        return rows[start:start + limit], len(rows)

    def create_transaction(self, row: dict[str, Any]) -> dict[str, Any]:
        with self._lock:
            item = self._stamp(row)
            self._transactions.append(item)
            return dict(item)

    def list_transactions(self, project_ids: list[str] | None = None) -> list[dict[str, Any]]:
        with self._lock:
            rows = [dict(r) for r in self._transactions]
        if project_ids is not None:
            wanted = set(project_ids)
            rows = [r for r in rows if r.get("project_id") in wanted]
        return sorted(rows, key=lambda r: str(r.get("transaction_date") or r.get("created_at", "")), reverse=True)

    def add_audit_log(self, row: dict[str, Any]) -> dict[str, Any]:
        with self._lock:
            item = self._stamp(row)
            self._audit.append(item)
            return dict(item)

    def list_audit_logs(self) -> list[dict[str, Any]]:
        with self._lock:
            return [dict(r) for r in self._audit]


class SupabaseRepository(PortalRepository):
    PROFILE_COLUMNS = "id, auth_user_id, full_name, email, phone, is_active, created_at, user_roles(role)"

    def __init__(self, client: Any) -> None:
        self.client = client

    def _insert_one(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        payload = dict(row)
        if "id" not in payload:
            payload["id"] = str(uuid4())
        # Retry by dropping unknown columns reported by PostgREST schema cache.
        for _ in range(20):
            try:
                res = self.client.table(table).insert(payload).execute()
                if not res.data:
                    raise RepositoryError(f"Insert failed for {table}")
                return dict(res.data[0])
            except RepositoryError:
                raise
            except Exception as exc:
                missing_col = _extract_missing_column_name(str(exc))
                if missing_col and missing_col in payload and missing_col != "id":
                    payload.pop(missing_col, None)
                    continue
                raise RepositoryError(f"Insert failed for {table}: {exc}") from exc
        raise RepositoryError(f"Insert failed for {table}: too many schema-mismatch retries")

    def _update_one(self, table: str, row_id: str, updates: dict[str, Any], touch: bool = True) -> dict[str, Any]:
        payload = dict(updates)
        if touch:
            payload["updated_at"] = _utc_now()
        try:
            res = self.client.table(table).update(payload).eq("id", row_id).execute()
        except Exception as exc:
            raise RepositoryError(f"Update failed for {table} {row_id}: {exc}") from exc
        if not res.data:
            raise RepositoryError(f"Update failed for {table} {row_id}")
        return dict(res.data[0])

    def _read(self, query: Any, what: str) -> Page:
        # A malformed id matches no row.
        try:
            res = query.execute()
        except Exception as exc:
            if _is_malformed_id_error(str(exc)):
                return [], 0
            raise RepositoryError(f"Read failed for {what}: {exc}") from exc
        return [dict(r) for r in (res.data or [])], int(getattr(res, "count", None) or 0)

    def _get_one(self, table: str, row_id: str, columns: str = "*") -> dict[str, Any] | None:
        rows, _ = self._read(self.client.table(table).select(columns).eq("id", row_id).limit(1), table)
        return rows[0] if rows else None

    @staticmethod
    def _flatten_role(profile: dict[str, Any] | None) -> dict[str, Any] | None:
        if not profile:
            return None
        roles = profile.pop("user_roles", None) or []
        if isinstance(roles, dict):
            roles = [roles]
        profile["role"] = roles[0].get("role") if roles else "citizen"
        return profile

    def get_profile(self, profile_id: str) -> dict[str, Any] | None:
        return self._flatten_role(self._get_one("profiles", profile_id, self.PROFILE_COLUMNS))

    def get_profile_by_auth_user(self, auth_user_id: str) -> dict[str, Any] | None:
        query = (
            self.client.table("profiles")
            .select(self.PROFILE_COLUMNS)
            .eq("auth_user_id", auth_user_id)
            .limit(1)
        )
        rows, _ = self._read(query, "profiles")
        return self._flatten_role(rows[0]) if rows else None

    def create_profile(self, row: dict[str, Any]) -> dict[str, Any]:
        return self._insert_one("profiles", row)

    def update_profile(self, profile_id: str, updates: dict[str, Any]) -> dict[str, Any]:
        self._update_one("profiles", profile_id, updates)
        return self.get_profile(profile_id) or {}

    def list_profiles(self, search: str | None, page: int, limit: int, role: str | None = None) -> Page:
        columns = self.PROFILE_COLUMNS
        if role:
            # !inner so the embedded role filter applies to profile rows.
            columns = columns.replace("user_roles(role)", "user_roles!inner(role)")
        q = self.client.table("profiles").select(columns, count="exact")
        if role:
            q = q.eq("user_roles.role", role)
        if search:
            q = q.or_(f"full_name.ilike.%{search}%,email.ilike.%{search}%")
        start = _offset(page, limit)
        rows, total = self._read(q.order("created_at", desc=True).range(start, start + limit - 1), "profiles")
        return [self._flatten_role(r) or {} for r in rows], total

    def get_user_role(self, profile_id: str) -> str | None:
        query = self.client.table("user_roles").select("role").eq("user_id", profile_id).limit(1)
        rows, _ = self._read(query, "user_roles")
        if not rows:
            return None
        return str(rows[0].get("role"))

    def set_user_role(self, profile_id: str, role: str) -> dict[str, Any]:
        # One role per profile: replace whatever row exists.
        try:
            self.client.table("user_roles").delete().eq("user_id", profile_id).execute()
            res = self.client.table("user_roles").insert({"user_id": profile_id, "role": role}).execute()
        except Exception as exc:
            raise RepositoryError(f"Role update failed for {profile_id}: {exc}") from exc
        if not res.data:
            raise RepositoryError(f"Role update failed for {profile_id}")
        return dict(res.data[0])

    def create_report(self, row: dict[str, Any]) -> dict[str, Any]:
        return self._insert_one("reports", row)

    def get_report(self, report_id: str) -> dict[str, Any] | None:
        return self._get_one("reports", report_id)

    def update_report(self, report_id: str, updates: dict[str, Any]) -> dict[str, Any]:
        return self._update_one("reports", report_id, updates)

    def delete_report(self, report_id: str) -> bool:
        try:
            res = self.client.table("reports").delete().eq("id", report_id).execute()
        except Exception as exc:
            raise RepositoryError(f"Delete failed for report {report_id}: {exc}") from exc
        return bool(res.data)

    def list_reports(self, filters: dict[str, Any], page: int, limit: int) -> Page:
        q = self.client.table("reports").select("*", count="exact")
        for key in ("reporter_user_id", "is_anonymous", "status", "type", "severity"):
            if filters.get(key) is not None:
                q = q.eq(key, filters[key])
        if filters.get("date_from"):
            q = q.gte("created_at", filters["date_from"])
        if filters.get("date_to"):
            q = q.lte("created_at", filters["date_to"])
        start = _offset(page, limit)
        return self._read(q.order("created_at", desc=True).range(start, start + limit - 1), "reports")

    def add_timeline_event(self, row: dict[str, Any]) -> dict[str, Any]:
        return self._insert_one("report_timeline_events", row)

    def list_timeline_events(self, report_id: str) -> list[dict[str, Any]]:
        query = (
            self.client.table("report_timeline_events")
            .select("*")
            .eq("report_id", report_id)
            .order("created_at")
        )
        rows, _ = self._read(query, "report_timeline_events")
        return rows

    def create_evidence(self, row: dict[str, Any]) -> dict[str, Any]:
        return self._insert_one("report_evidence", row)

    def get_evidence(self, evidence_id: str) -> dict[str, Any] | None:
        return self._get_one("report_evidence", evidence_id)

    def list_evidence(self, report_id: str) -> list[dict[str, Any]]:
        query = (
            self.client.table("report_evidence")
            .select("*")
            .eq("report_id", report_id)
            .order("created_at", desc=True)
        )
        rows, _ = self._read(query, "report_evidence")
        return rows

    def create_comment(self, row: dict[str, Any]) -> dict[str, Any]:
        return self._insert_one("report_comments", row)

    def list_comments(self, report_id: str) -> list[dict[str, Any]]:
        query = (
            self.client.table("report_comments")
            .select("*")
            .eq("report_id", report_id)
            .order("created_at")
        )
        rows, _ = self._read(query, "report_comments")
        return rows

    def create_notification(self, row: dict[str, Any]) -> dict[str, Any]:
        return self._insert_one("notifications", row)

    def get_notification(self, notification_id: str, user_id: str) -> dict[str, Any] | None:
        query = (
            self.client.table("notifications")
            .select("*")
            .eq("id", notification_id)
            .eq("user_id", user_id)
            .limit(1)
        )
        rows, _ = self._read(query, "notifications")
        return rows[0] if rows else None

    def list_notifications(self, user_id: str, unread_only: bool, page: int, limit: int) -> Page:
        q = self.client.table("notifications").select("*", count="exact").eq("user_id", user_id)
        if unread_only:
            q = q.eq("is_read", False)
        start = _offset(page, limit)
        return self._read(q.order("created_at", desc=True).range(start, start + limit - 1), "notifications")

    def count_unread_notifications(self, user_id: str) -> int:
        query = (
            self.client.table("notifications")
            .select("id", count="exact")
            .eq("user_id", user_id)
            .eq("is_read", False)
        )
        _, count = self._read(query, "notifications")
        return count

    def mark_notification_read(self, notification_id: str, user_id: str) -> dict[str, Any] | None:
        query = (
            self.client.table("notifications")
            .update({"is_read": True})
            .eq("id", notification_id)
            .eq("user_id", user_id)
        )
        rows, _ = self._read(query, "notifications")
        return rows[0] if rows else None

    def mark_all_notifications_read(self, user_id: str) -> int:
        query = (
            self.client.table("notifications")
            .update({"is_read": True})
            .eq("user_id", user_id)
            .eq("is_read", False)
        )
        rows, _ = self._read(query, "notifications")
        return len(rows)

    def create_project(self, row: dict[str, Any]) -> dict[str, Any]:
        return self._insert_one("projects", row)

    def get_project(self, project_id: str) -> dict[str, Any] | None:
        return self._get_one("projects", project_id)

    def update_project(self, project_id: str, updates: dict[str, Any]) -> dict[str, Any]:
        return self._update_one("projects", project_id, updates)

    def list_projects(
        self,
        filters: dict[str, Any],
        *,
        sort_by: str = "created",
        descending: bool = True,
        page: int = 1,
        limit: int | None = None,
    ) -> Page:
        q = self.client.table("projects").select("*", count="exact")
        if filters.get("department"):
            q = q.ilike("department", f"%{filters['department']}%")
        if filters.get("location"):
            q = q.ilike("location", f"%{filters['location']}%")
        if filters.get("status"):
            q = q.eq("status", filters["status"])
        if filters.get("date_from"):
            q = q.gte("start_date", filters["date_from"])
        if filters.get("date_to"):
            q = q.lte("end_date", filters["date_to"])
        if filters.get("min_budget") is not None:
            q = q.gte("total_budget_amount", filters["min_budget"])
        if filters.get("max_budget") is not None:
            q = q.lte("total_budget_amount", filters["max_budget"])
        q = q.order(PROJECT_SORT_COLUMNS.get(sort_by, "created_at"), desc=descending)
        if limit is not None:
            start = _offset(page, limit)
            q = q.range(start, start + limit - 1)
        return self._read(q, "projects")

    def create_transaction(self, row: dict[str, Any]) -> dict[str, Any]:
        return self._insert_one("financial_transactions", row)

    def list_transactions(self, project_ids: list[str] | None = None) -> list[dict[str, Any]]:
        if project_ids is not None and not project_ids:
            return []
        q = self.client.table("financial_transactions").select("*")
        if project_ids is not None:
            q = q.in_("project_id", project_ids)
        rows, _ = self._read(q.order("transaction_date", desc=True), "financial_transactions")
        return rows

    def add_audit_log(self, row: dict[str, Any]) -> dict[str, Any]:
        return self._insert_one("audit_logs", row)


def build_repository() -> tuple[PortalRepository, bool, str | None]:
    client, err = get_supabase_client()
    if client is None:
        return InMemoryRepository(), False, f"{err}; using in-memory repository."

    try:
        # Connectivity + schema check on the primary table.
        client.table("reports").select("id").limit(1).execute()
        return SupabaseRepository(client), True, None
    except Exception as exc:
        return (
            InMemoryRepository(),
            False,
            f"Supabase unavailable or schema mismatch ({exc}). Using in-memory repository.",
        )
