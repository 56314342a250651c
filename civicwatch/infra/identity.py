from __future__ import annotations

from threading import RLock
from typing import Any
from uuid import uuid4

import requests

from civicwatch.config import settings


class IdentityError(RuntimeError):
    pass


class IdentityUnavailable(IdentityError):
    pass


class IdentityProvider:
    """Issues and validates bearer tokens for external user accounts."""

    def get_user(self, access_token: str) -> dict[str, Any] | None:
        raise NotImplementedError

    def create_user(self, email: str, password: str, metadata: dict[str, Any]) -> dict[str, Any]:
        raise NotImplementedError

    def sign_in(self, email: str, password: str) -> dict[str, Any] | None:
        raise NotImplementedError

    def send_recovery(self, email: str) -> None:
        raise NotImplementedError


class InMemoryIdentityProvider(IdentityProvider):
    def __init__(self) -> None:
        self._lock = RLock()
        self._users: dict[str, dict[str, Any]] = {}
        self._passwords: dict[str, str] = {}
        self._tokens: dict[str, str] = {}
        self.recovery_requests: list[str] = []

    def get_user(self, access_token: str) -> dict[str, Any] | None:
        with self._lock:
            user_id = self._tokens.get(access_token)
            return dict(self._users[user_id]) if user_id else None

    def create_user(self, email: str, password: str, metadata: dict[str, Any]) -> dict[str, Any]:
        with self._lock:
            if any(u["email"] == email for u in self._users.values()):
                raise IdentityError("A user with this email address has already been registered")
            user = {"id": str(uuid4()), "email": email, "user_metadata": dict(metadata)}
            self._users[user["id"]] = user
            self._passwords[user["id"]] = password
            return dict(user)

    def sign_in(self, email: str, password: str) -> dict[str, Any] | None:
        with self._lock:
            for user in self._users.values():
                if user["email"] == email and self._passwords.get(user["id"]) == password:
                    return self._session_for(user)
            return None

    def issue_token(self, user_id: str, token: str | None = None) -> str:
        with self._lock:
            if user_id not in self._users:
                raise IdentityError(f"Unknown user: {user_id}")
            value = token or uuid4().hex
            self._tokens[value] = user_id
            return value

    def _session_for(self, user: dict[str, Any]) -> dict[str, Any]:
        return {
            "access_token": self.issue_token(user["id"]),
            "refresh_token": uuid4().hex,
            "expires_in": 3600,
            "user": {"id": user["id"], "email": user["email"]},
        }

    def send_recovery(self, email: str) -> None:
        with self._lock:
            self.recovery_requests.append(email)


class SupabaseIdentityProvider(IdentityProvider):
    def __init__(self) -> None:
        self.base_url = settings.supabase_url.rstrip("/")
        self.api_key = (settings.supabase_anon_key or settings.supabase_service_key).strip()
        self.service_key = (settings.supabase_service_key or "").strip()

    def configured(self) -> bool:
        return bool(self.base_url and self.api_key and settings.supabase_url_valid())

    def _headers(self, bearer: str | None = None, use_service: bool = False) -> dict[str, str]:
        key = self.service_key if use_service and self.service_key else self.api_key
        return {
            "apikey": key,
            "Authorization": f"Bearer {bearer or key}",
            "Content-Type": "application/json",
        }

    @staticmethod
    def _error_message(res: requests.Response, fallback: str) -> str:
        if res.headers.get("content-type", "").startswith("application/json"):
            body = res.json() or {}
            return str(body.get("msg") or body.get("message") or body.get("error_description") or fallback)
        return res.text or fallback

    def get_user(self, access_token: str) -> dict[str, Any] | None:
        try:
            res = requests.get(
                f"{self.base_url}/auth/v1/user",
                headers=self._headers(bearer=access_token),
                timeout=10,
            )
        except requests.RequestException as exc:
            raise IdentityUnavailable(f"Identity provider unreachable: {exc}") from exc
        if res.status_code in (401, 403, 404):
            return None
        if res.status_code >= 400:
            raise IdentityUnavailable(f"Token validation failed: {res.status_code}")
        data = res.json() or {}
        return data if data.get("id") else None

    def create_user(self, email: str, password: str, metadata: dict[str, Any]) -> dict[str, Any]:
        payload = {
            "email": email,
            "password": password,
            "email_confirm": True,
            "user_metadata": metadata,
        }
        try:
            res = requests.post(
                f"{self.base_url}/auth/v1/admin/users",
                headers=self._headers(use_service=True),
                json=payload,
                timeout=15,
            )
        except requests.RequestException as exc:
            raise IdentityUnavailable(f"Identity provider unreachable: {exc}") from exc
        if res.status_code >= 400:
            raise IdentityError(self._error_message(res, "Signup failed"))
        return res.json() or {}

    def sign_in(self, email: str, password: str) -> dict[str, Any] | None:
        try:
            res = requests.post(
                f"{self.base_url}/auth/v1/token?grant_type=password",
                headers=self._headers(),
                json={"email": email, "password": password},
                timeout=15,
            )
        except requests.RequestException as exc:
            raise IdentityUnavailable(f"Identity provider unreachable: {exc}") from exc
        if res.status_code in (400, 401):
            return None
        if res.status_code >= 400:
            raise IdentityUnavailable(self._error_message(res, "Sign in failed"))
        data = res.json() or {}
        user = data.get("user") or {}
        return {
            "access_token": data.get("access_token"),
            "refresh_token": data.get("refresh_token"),
            "expires_in": data.get("expires_in"),
            "user": {"id": user.get("id"), "email": user.get("email") or email},
        }

    def send_recovery(self, email: str) -> None:
        try:
            res = requests.post(
                f"{self.base_url}/auth/v1/recover",
                headers=self._headers(),
                json={"email": email},
                timeout=15,
            )
        except requests.RequestException as exc:
            raise IdentityUnavailable(f"Identity provider unreachable: {exc}") from exc
        if res.status_code >= 400:
            raise IdentityError(self._error_message(res, "Recovery request failed"))


def build_identity_provider() -> tuple[IdentityProvider, bool, str | None]:
    provider = SupabaseIdentityProvider()
    if provider.configured():
        return provider, True, None
    return InMemoryIdentityProvider(), False, "Supabase auth not configured; using in-memory identity provider."
