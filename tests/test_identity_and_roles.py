"""Token resolution, role policy and the status tracker."""

from unittest.mock import MagicMock, patch

import pytest
import requests

from civicwatch.domain.errors import AccessDenied, NotFound, UpstreamFailure, ValidationFailed
from civicwatch.domain.roles import Actor, Role, can_view_comment, can_view_report
from civicwatch.domain.state_machine import StatusTracker
from civicwatch.domain.states import ReportStatus
from civicwatch.infra.identity import IdentityUnavailable, SupabaseIdentityProvider


class TestResolve:
    def test_bearer_token_maps_to_profile_and_role(self, services, official):
        actor = services.identity.resolve(f"Bearer {official.token}")
        assert actor.profile_id == official.profile_id
        assert actor.role == Role.OFFICIAL

    @pytest.mark.parametrize("header", [None, "", "Bearer", "Basic abc", "Bearer unknown-token"])
    def test_unusable_headers_are_anonymous(self, services, header):
        assert services.identity.resolve(header) == Actor.anonymous()

    def test_inactive_profile_is_anonymous(self, services, citizen):
        services.repo.update_profile(citizen.profile_id, {"is_active": False})
        assert not services.identity.resolve(f"Bearer {citizen.token}").is_authenticated

    def test_user_without_profile_is_anonymous(self, services):
        user = services.identity_provider.create_user("nobody@example.org", "secret123", {})
        token = services.identity_provider.issue_token(user["id"])
        assert services.identity.resolve(f"Bearer {token}") == Actor.anonymous()

    def test_unknown_role_falls_back_to_citizen(self, services, citizen):
        services.repo.set_user_role(citizen.profile_id, "superuser")
        assert services.identity.resolve(f"Bearer {citizen.token}").role == Role.CITIZEN

    def test_provider_outage_is_upstream_failure(self, services):
        with patch.object(services.identity_provider, "get_user", side_effect=IdentityUnavailable("down")):
            with pytest.raises(UpstreamFailure):
                services.identity.resolve("Bearer anything")


class TestUserAdministration:
    def test_list_and_filter_users(self, services, admin, citizen, official):
        result = services.identity.list_users(admin.actor, role="official")
        assert [u["id"] for u in result["users"]] == [official.profile_id]
        with pytest.raises(AccessDenied):
            services.identity.list_users(official.actor)

    def test_role_filter_keeps_page_envelope_accurate(self, services, admin, make_user):
        officials = [make_user(Role.OFFICIAL) for _ in range(3)]
        for _ in range(4):
            make_user(Role.CITIZEN)

        first = services.identity.list_users(admin.actor, role="official", page=1, limit=2)
        second = services.identity.list_users(admin.actor, role="official", page=2, limit=2)

        assert first["pagination"] == {"page": 1, "limit": 2, "total": 3, "totalPages": 2}
        assert len(first["users"]) == 2
        assert len(second["users"]) == 1
        listed = {u["id"] for u in first["users"] + second["users"]}
        assert listed == {o.profile_id for o in officials}

    def test_set_role_validates(self, services, admin, citizen):
        with pytest.raises(ValidationFailed):
            services.identity.set_role(admin.actor, citizen.profile_id, "overlord")
        with pytest.raises(NotFound):
            services.identity.set_role(admin.actor, "missing", "official")
        services.identity.set_role(admin.actor, citizen.profile_id, "admin")
        assert services.repo.list_audit_logs()[-1]["action"] == "role_changed"

    def test_update_me(self, services, citizen):
        updated = services.identity.update_me(citizen.actor, phone="555-0100")
        assert updated["phone"] == "555-0100"
        with pytest.raises(ValidationFailed):
            services.identity.update_me(citizen.actor)


class TestSupabaseIdentityProvider:
    @pytest.fixture
    def provider(self):
        provider = SupabaseIdentityProvider()
        provider.base_url = "https://demo.supabase.co"
        provider.api_key = "anon-key"
        return provider

    @staticmethod
    def _response(status, body=None):
        res = MagicMock()
        res.status_code = status
        res.json.return_value = body or {}
        res.headers = {"content-type": "application/json"}
        res.text = ""
        return res

    @pytest.mark.parametrize("status", [401, 403, 404])
    def test_rejected_token_is_none(self, provider, status):
        with patch("civicwatch.infra.identity.requests.get", return_value=self._response(status)):
            assert provider.get_user("expired") is None

    def test_server_error_is_unavailable(self, provider):
        with patch("civicwatch.infra.identity.requests.get", return_value=self._response(503)):
            with pytest.raises(IdentityUnavailable):
                provider.get_user("token")

    def test_network_error_is_unavailable(self, provider):
        with patch("civicwatch.infra.identity.requests.get", side_effect=requests.ConnectionError("refused")):
            with pytest.raises(IdentityUnavailable):
                provider.get_user("token")

    def test_valid_token(self, provider):
        res = self._response(200, {"id": "auth-1", "email": "a@b.com"})
        with patch("civicwatch.infra.identity.requests.get", return_value=res) as mock_get:
            assert provider.get_user("token")["id"] == "auth-1"
        assert mock_get.call_args.kwargs["headers"]["Authorization"] == "Bearer token"

    def test_bad_credentials_are_none(self, provider):
        with patch("civicwatch.infra.identity.requests.post", return_value=self._response(400)):
            assert provider.sign_in("a@b.com", "wrong") is None


class TestPolicy:
    def test_report_visibility(self):
        owner = Actor(profile_id="p1")
        report = {"reporter_user_id": "p1", "is_anonymous": False}
        assert can_view_report(report, owner)
        assert not can_view_report(report, Actor(profile_id="p2"))
        assert can_view_report(report, Actor(profile_id="p3", role=Role.OFFICIAL))
        assert not can_view_report({**report, "is_anonymous": True}, owner)
        assert not can_view_report({"reporter_user_id": None}, Actor.anonymous())

    def test_comment_visibility(self):
        private = {"is_public": False, "author_user_id": "p1"}
        assert can_view_comment(private, Actor(profile_id="p1"))
        assert can_view_comment(private, Actor(profile_id="p9", role=Role.ADMIN))
        assert not can_view_comment(private, Actor(profile_id="p2"))
        assert can_view_comment({"is_public": True}, Actor.anonymous())


class TestStatusTracker:
    def test_on_workflow_step(self):
        change = StatusTracker().change("submitted", ReportStatus.UNDER_REVIEW)
        assert change.from_status == ReportStatus.SUBMITTED
        assert change.on_workflow is True

    def test_reopening_is_off_workflow(self):
        change = StatusTracker().change("resolved", ReportStatus.IN_PROGRESS)
        assert change.to_status == ReportStatus.IN_PROGRESS
        assert change.on_workflow is False

    def test_no_change(self):
        assert StatusTracker().change("assigned", ReportStatus.ASSIGNED) is None
