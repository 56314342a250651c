from __future__ import annotations

import os
import re
from dataclasses import dataclass

from dotenv import load_dotenv


load_dotenv()


def _get_config_value(*keys: str, default: str = "") -> str:
    for key in keys:
        value = os.getenv(key, "").strip()
        if value:
            return value
    return default


def _get_bool(*keys: str, default: bool = False) -> bool:
    raw = _get_config_value(*keys, default="true" if default else "false")
    return raw.lower() in {"1", "true", "yes", "on"}


def _get_int(*keys: str, default: int) -> int:
    raw = _get_config_value(*keys, default=str(default))
    try:
        return int(raw)
    except ValueError:
        return default


def _pick_supabase_service_key() -> str:
    return _get_config_value("SUPABASE_SERVICE_KEY", "SUPABASE_SERVICE_ROLE_KEY") or _get_config_value("SUPABASE_KEY")


def _pick_supabase_anon_key() -> str:
    return _get_config_value("SUPABASE_ANON_KEY", "SUPABASE_PUBLISHABLE_KEY") or _get_config_value("SUPABASE_KEY")


def _split_origins(raw: str) -> tuple[str, ...]:
    return tuple(o.strip() for o in raw.split(",") if o.strip())


@dataclass(frozen=True)
class Settings:
    app_env: str
    log_level: str
    log_dir: str
    supabase_url: str
    supabase_service_key: str
    supabase_anon_key: str
    evidence_bucket: str
    evidence_max_bytes: int
    evidence_signed_url_ttl_seconds: int
    groq_api_key: str
    groq_model: str
    groq_timeout_seconds: float
    allowed_origins: tuple[str, ...]
    trust_proxy_headers: bool
    rate_limit_cleanup_seconds: int

    def supabase_url_valid(self) -> bool:
        # Must be project URL, not postgres DSN.
        return bool(re.match(r"^https://[a-z0-9-]+\.supabase\.co$", self.supabase_url))

    def supabase_configured(self) -> bool:
        return self.supabase_url_valid() and bool(self.supabase_service_key)


def load_settings() -> Settings:
    return Settings(
        app_env=_get_config_value("APP_ENV", default="dev"),
        log_level=_get_config_value("LOG_LEVEL", default="INFO").upper(),
        log_dir=_get_config_value("LOG_DIR"),
        supabase_url=_get_config_value("SUPABASE_URL").rstrip("/"),
        supabase_service_key=_pick_supabase_service_key(),
        supabase_anon_key=_pick_supabase_anon_key(),
        evidence_bucket=_get_config_value("EVIDENCE_BUCKET", default="evidence-media"),
        evidence_max_bytes=_get_int("EVIDENCE_MAX_BYTES", default=50 * 1024 * 1024),
        evidence_signed_url_ttl_seconds=_get_int("EVIDENCE_SIGNED_URL_TTL_SECONDS", default=3600),
        groq_api_key=_get_config_value("GROQ_API_KEY"),
        groq_model=_get_config_value("GROQ_MODEL", default="llama-3.1-8b-instant"),
        groq_timeout_seconds=float(_get_config_value("GROQ_TIMEOUT_SECONDS", default="8") or 8),
        allowed_origins=_split_origins(_get_config_value("ALLOWED_ORIGINS")),
        trust_proxy_headers=_get_bool("TRUST_PROXY_HEADERS"),
        rate_limit_cleanup_seconds=_get_int("RATE_LIMIT_CLEANUP_SECONDS", default=300),
    )


settings = load_settings()
