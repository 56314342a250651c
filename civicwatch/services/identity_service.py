from __future__ import annotations

import logging
import re
from typing import Any

from civicwatch.domain.errors import (
    AccessDenied,
    AuthenticationRequired,
    NotFound,
    RateLimited,
    UpstreamFailure,
    ValidationFailed,
)
from civicwatch.domain.roles import Actor, Role, can_manage_users
from civicwatch.infra.identity import IdentityError, IdentityProvider, IdentityUnavailable
from civicwatch.infra.repositories import PortalRepository
from civicwatch.services.activity import ActivityRecorder
from civicwatch.services.pagination import clamp_page, page_envelope
from civicwatch.services.rate_limiter import RateLimiter, format_retry_time

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
MIN_PASSWORD_LENGTH = 6
PASSWORD_RESET_MESSAGE = "If an account exists for this email, a password reset link has been sent."


def require_authenticated(actor: Actor) -> Actor:
    if not actor.is_authenticated:
        raise AuthenticationRequired()
    return actor


def enforce_rate_limit(limiter: RateLimiter, action: str, identifier: str, message: str) -> None:
    decision = limiter.check(action, identifier)
    if not decision.allowed:
        retry_after_ms = int(decision.retry_after_ms or 0)
        raise RateLimited(f"{message} Try again in {format_retry_time(retry_after_ms)}.", retry_after_ms)


def normalize_email(email: str | None) -> str:
    return str(email or "").strip().lower()


def _bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


class IdentityService:
    def __init__(
        self,
        repo: PortalRepository,
        provider: IdentityProvider,
        limiter: RateLimiter,
        activity: ActivityRecorder,
    ) -> None:
        self.repo = repo
        self.provider = provider
        self.limiter = limiter
        self.activity = activity

    def resolve(self, authorization: str | None) -> Actor:
        """Bearer token -> identity-provider user -> profile -> role.

        Any break in the chain yields the anonymous actor; only an unreachable
        identity provider is an error.
        """
        token = _bearer_token(authorization)
        if not token:
            return Actor.anonymous()
        try:
            user = self.provider.get_user(token)
        except IdentityUnavailable as exc:
            raise UpstreamFailure("Identity provider unavailable") from exc
        if not user or not user.get("id"):
            return Actor.anonymous()

        profile = self.repo.get_profile_by_auth_user(str(user["id"]))
        if not profile or profile.get("is_active") is False:
            return Actor.anonymous()
        role = profile.get("role") or self.repo.get_user_role(str(profile["id"]))
        return Actor(profile_id=str(profile["id"]), role=Role.parse(role), auth_user_id=str(user["id"]))

    def register(
        self,
        *,
        email: str,
        password: str,
        full_name: str | None = None,
        phone: str | None = None,
        client_ip: str = "unknown",
    ) -> dict[str, Any]:
        email = normalize_email(email)
        missing = [name for name, value in (("email", email), ("password", password)) if not value]
        if missing:
            raise ValidationFailed("Email and password are required", fields=missing)
        if not EMAIL_RE.match(email):
            raise ValidationFailed("Invalid email address", fields=["email"])
        if len(password) < MIN_PASSWORD_LENGTH:
            raise ValidationFailed(
                f"Password must be at least {MIN_PASSWORD_LENGTH} characters",
                fields=["password"],
            )
        enforce_rate_limit(self.limiter, "register", client_ip, "Too many registration attempts.")

        try:
            user = self.provider.create_user(email, password, {"full_name": full_name, "phone": phone})
        except IdentityUnavailable as exc:
            raise UpstreamFailure("Identity provider unavailable") from exc
        except IdentityError as exc:
            logger.info("Registration rejected by identity provider: %s", exc)
            raise ValidationFailed("Registration failed", fields=["email"]) from exc

        auth_user_id = str(user.get("id"))
        profile_fields = {"full_name": full_name, "phone": phone, "email": email}
        profile = self.repo.get_profile_by_auth_user(auth_user_id)
        if profile:
            self.repo.update_profile(str(profile["id"]), {k: v for k, v in profile_fields.items() if v})
        else:
            profile = self.repo.create_profile({"auth_user_id": auth_user_id, **profile_fields})
        self.activity.audit("user_registered", "user", auth_user_id, None, {"email": email})
        logger.info("User registered (profile %s)", profile["id"])
        return {
            "message": "User registered successfully",
            "user": {"id": auth_user_id, "email": user.get("email") or email},
        }

    def login(self, *, email: str, password: str, client_ip: str = "unknown") -> dict[str, Any]:
        email = normalize_email(email)
        if not email or not password:
            missing = [name for name, value in (("email", email), ("password", password)) if not value]
            raise ValidationFailed("Email and password are required", fields=missing)

        account_key = f"{email}:{client_ip}"
        enforce_rate_limit(self.limiter, "login_ip", client_ip, "Too many login attempts.")
        enforce_rate_limit(self.limiter, "login", account_key, "Too many login attempts.")

        try:
            session = self.provider.sign_in(email, password)
        except IdentityUnavailable as exc:
            raise UpstreamFailure("Identity provider unavailable") from exc
        if not session:
            raise AuthenticationRequired("Invalid email or password")

        self.limiter.reset("login", account_key)
        return session

    def request_password_reset(self, email: str, client_ip: str = "unknown") -> dict[str, Any]:
        email = normalize_email(email)
        if not email:
            raise ValidationFailed("Email is required", fields=["email"])
        enforce_rate_limit(self.limiter, "password_reset", client_ip, "Too many password reset requests.")
        try:
            self.provider.send_recovery(email)
        except IdentityError:
            # The response must not reveal whether the address is registered.
            logger.warning("Password reset request was not accepted upstream", exc_info=True)
        return {"message": PASSWORD_RESET_MESSAGE}

    def me(self, actor: Actor) -> dict[str, Any]:
        require_authenticated(actor)
        profile = self.repo.get_profile(str(actor.profile_id))
        if not profile:
            raise AuthenticationRequired()
        return profile

    def update_me(self, actor: Actor, *, full_name: str | None = None, phone: str | None = None) -> dict[str, Any]:
        require_authenticated(actor)
        updates = {k: v for k, v in {"full_name": full_name, "phone": phone}.items() if v is not None}
        if not updates:
            raise ValidationFailed("No fields to update", fields=["full_name", "phone"])
        return self.repo.update_profile(str(actor.profile_id), updates)

    def list_users(
        self,
        actor: Actor,
        *,
        search: str | None = None,
        role: str | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> dict[str, Any]:
        self._require_admin(actor)
        page, limit = clamp_page(page, limit)
        rows, total = self.repo.list_profiles(search, page, limit, role=role)
        return {"users": rows, "pagination": page_envelope(page, limit, total)}

    def get_user(self, actor: Actor, profile_id: str) -> dict[str, Any]:
        self._require_admin(actor)
        profile = self.repo.get_profile(profile_id)
        if not profile:
            raise NotFound("User not found")
        return profile

    def set_role(self, actor: Actor, profile_id: str, role: str) -> dict[str, Any]:
        self._require_admin(actor)
        try:
            new_role = Role(str(role or "").strip().lower())
        except ValueError as exc:
            raise ValidationFailed("Invalid role. Must be citizen, official, or admin", fields=["role"]) from exc
        if not self.repo.get_profile(profile_id):
            raise NotFound("User not found")

        self.repo.set_user_role(profile_id, new_role.value)
        self.activity.audit("role_changed", "user", profile_id, actor.profile_id, {"new_role": new_role.value})
        logger.info("Role for profile %s set to %s by %s", profile_id, new_role.value, actor.profile_id)
        return {"message": "Role updated successfully", "role": new_role.value}

    def _require_admin(self, actor: Actor) -> None:
        require_authenticated(actor)
        if not can_manage_users(actor.role):
            logger.warning("Profile %s denied user administration", actor.profile_id)
            raise AccessDenied("Admin access required")
