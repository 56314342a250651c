from __future__ import annotations

import json

import requests

from civicwatch.config import settings

PORTAL_TABLES = [
    "reports",
    "report_timeline_events",
    "report_evidence",
    "report_comments",
    "notifications",
    "profiles",
    "user_roles",
    "projects",
    "financial_transactions",
    "audit_logs",
]


def probe(url: str, headers: dict[str, str] | None = None) -> tuple[int | None, str]:
    try:
        res = requests.get(url, headers=headers or {}, timeout=20)
        return res.status_code, res.text[:200]
    except requests.RequestException as exc:
        return None, str(exc)


def main() -> None:
    url = settings.supabase_url
    key = settings.supabase_service_key

    print("== ENV VALIDATION ==")
    print(json.dumps({
        "SUPABASE_URL_VALID": settings.supabase_url_valid(),
        "SUPABASE_SERVICE_KEY_PRESENT": bool(key),
        "SUPABASE_ANON_KEY_PRESENT": bool(settings.supabase_anon_key),
        "GROQ_KEY_PRESENT": bool(settings.groq_api_key),
        "EVIDENCE_BUCKET": settings.evidence_bucket,
        "ALLOWED_ORIGINS": list(settings.allowed_origins) or ["*"],
    }, indent=2))

    if not settings.supabase_configured():
        print("\nFix SUPABASE_URL/SUPABASE_SERVICE_KEY before connectivity checks.")
        return

    headers = {"apikey": key, "Authorization": f"Bearer {key}"}

    print("\n== CONNECTIVITY CHECKS ==")
    status, detail = probe(f"{url}/auth/v1/settings", headers=headers)
    print(f"supabase_auth_settings: status={status}")
    if status is None or status >= 400:
        print(f"  detail={detail}")

    for table in PORTAL_TABLES:
        status, detail = probe(f"{url}/rest/v1/{table}?select=id&limit=1", headers=headers)
        print(f"table {table}: status={status}")
        if status is None or status >= 400:
            print(f"  detail={detail}")

    status, detail = probe(f"{url}/storage/v1/bucket/{settings.evidence_bucket}", headers=headers)
    print(f"storage_bucket {settings.evidence_bucket}: status={status}")
    if status is None or status >= 400:
        print(f"  detail={detail}")

    if settings.groq_api_key:
        status, detail = probe(
            "https://api.groq.com/openai/v1/models",
            headers={"Authorization": f"Bearer {settings.groq_api_key}"},
        )
        print(f"groq_models: status={status}")
        if status is None or status >= 400:
            print(f"  detail={detail}")
    else:
        print("groq_models: skipped (no GROQ_API_KEY)")


if __name__ == "__main__":
    main()
