"""Role type and the authorization policy, one check per capability."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


class Role(str, Enum):
    CITIZEN = "citizen"
    OFFICIAL = "official"
    ADMIN = "admin"

    @classmethod
    def parse(cls, value: str | None) -> "Role":
        try:
            return cls(str(value or "").strip().lower())
        except ValueError:
            return cls.CITIZEN


MODERATOR_ROLES = {Role.OFFICIAL, Role.ADMIN}


def can_moderate_reports(role: Role) -> bool:
    return role in MODERATOR_ROLES


def can_view_private_comments(role: Role) -> bool:
    return role in MODERATOR_ROLES


def can_record_transactions(role: Role) -> bool:
    return role in MODERATOR_ROLES


def can_delete_reports(role: Role) -> bool:
    return role == Role.ADMIN


def can_manage_users(role: Role) -> bool:
    return role == Role.ADMIN


def can_manage_projects(role: Role) -> bool:
    return role == Role.ADMIN


@dataclass(frozen=True)
class Actor:
    profile_id: str | None
    role: Role = Role.CITIZEN
    auth_user_id: str | None = None

    @classmethod
    def anonymous(cls) -> "Actor":
        return cls(profile_id=None)

    @property
    def is_authenticated(self) -> bool:
        return self.profile_id is not None


def is_reporter(report: dict[str, Any], actor: Actor) -> bool:
    # Anonymous reports have no owner, not even their submitter.
    if report.get("is_anonymous") or not actor.is_authenticated:
        return False
    return report.get("reporter_user_id") == actor.profile_id


def can_view_report(report: dict[str, Any], actor: Actor) -> bool:
    return can_moderate_reports(actor.role) or is_reporter(report, actor)


def can_view_comment(comment: dict[str, Any], actor: Actor) -> bool:
    if comment.get("is_public", True) or can_view_private_comments(actor.role):
        return True
    return actor.is_authenticated and comment.get("author_user_id") == actor.profile_id
