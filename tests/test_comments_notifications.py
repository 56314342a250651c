"""Comment visibility and the notification inbox."""

from unittest.mock import patch

import pytest

from civicwatch.domain.errors import AuthenticationRequired, NotFound, RateLimited, ValidationFailed
from civicwatch.domain.roles import Actor
from civicwatch.infra.repositories import RepositoryError


@pytest.fixture
def report(services, citizen, pothole):
    return services.reports.create_report(pothole, citizen.actor)


class TestComments:
    def test_comment_records_author_role_and_timeline(self, services, official, report):
        row = services.comments.add_comment(report["id"], official.actor, "  Crew dispatched  ")

        assert row["content"] == "Crew dispatched"
        assert row["author_role"] == "official"
        assert row["is_public"] is True
        event = services.repo.list_timeline_events(report["id"])[-1]
        assert event["event_type"] == "comment_added"
        assert event["metadata"]["comment_id"] == row["id"]

    def test_private_comments_are_filtered(self, services, citizen, official, admin, make_user, report):
        services.comments.add_comment(report["id"], citizen.actor, "Photo attached")
        services.comments.add_comment(report["id"], official.actor, "Contractor follow-up pending", is_public=False)
        stranger = make_user()

        public_view = [c["content"] for c in services.comments.list_comments(report["id"], stranger.actor)]
        assert public_view == ["Photo attached"]
        assert len(services.comments.list_comments(report["id"], admin.actor)) == 2
        assert len(services.comments.list_comments(report["id"], official.actor)) == 2

    def test_author_sees_own_private_comment(self, services, citizen, report):
        services.comments.add_comment(report["id"], citizen.actor, "note to self", is_public=False)
        assert len(services.comments.list_comments(report["id"], citizen.actor)) == 1
        assert services.comments.list_comments(report["id"], Actor.anonymous()) == []

    def test_validation(self, services, citizen, report):
        with pytest.raises(ValidationFailed):
            services.comments.add_comment(report["id"], citizen.actor, "   ")
        with pytest.raises(ValidationFailed):
            services.comments.add_comment(report["id"], citizen.actor, "x" * 5001)
        with pytest.raises(AuthenticationRequired):
            services.comments.add_comment(report["id"], Actor.anonymous(), "hi")
        with pytest.raises(NotFound):
            services.comments.add_comment("00000000-0000-4000-8000-000000000000", citizen.actor, "hi")

    def test_comment_rate_limit(self, services, citizen, report):
        for _ in range(20):
            services.comments.add_comment(report["id"], citizen.actor, "again")
        with pytest.raises(RateLimited):
            services.comments.add_comment(report["id"], citizen.actor, "again")


class TestNotifications:
    def test_official_comment_notifies_reporter(self, services, citizen, official, report):
        services.comments.add_comment(report["id"], official.actor, "We are on it")

        inbox = services.notifications.list_for(citizen.actor)
        assert inbox["unread_count"] == 1
        note = inbox["notifications"][0]
        assert note["type"] == "new_comment"
        assert note["user_id"] == citizen.profile_id
        assert "Pothole" in note["body"]

    def test_citizen_comment_notifies_nobody(self, services, citizen, report):
        services.comments.add_comment(report["id"], citizen.actor, "bump")
        assert services.notifications.list_for(citizen.actor)["unread_count"] == 0

    def test_moderator_commenting_on_own_report_is_not_notified(self, services, official, pothole):
        report = services.reports.create_report(pothole, official.actor)
        services.comments.add_comment(report["id"], official.actor, "Logged for the crew")
        assert services.notifications.list_for(official.actor)["unread_count"] == 0

    def test_notification_failure_does_not_fail_comment(self, services, citizen, official, report):
        with patch.object(services.repo, "create_notification", side_effect=RepositoryError("down")):
            row = services.comments.add_comment(report["id"], official.actor, "We are on it")
        assert services.repo.list_comments(report["id"])[0]["id"] == row["id"]

    def test_mark_read_is_idempotent(self, services, citizen, official, report):
        services.reports.update_report(report["id"], official.actor, {"status": "under_review"})
        note = services.notifications.list_for(citizen.actor)["notifications"][0]

        first = services.notifications.mark_read(note["id"], citizen.actor)
        second = services.notifications.mark_read(note["id"], citizen.actor)

        assert first["is_read"] is True
        assert second["is_read"] is True
        assert services.notifications.list_for(citizen.actor)["unread_count"] == 0

    def test_cannot_mark_someone_elses_notification(self, services, citizen, official, report):
        services.reports.update_report(report["id"], official.actor, {"status": "under_review"})
        note = services.notifications.list_for(citizen.actor)["notifications"][0]
        with pytest.raises(NotFound):
            services.notifications.mark_read(note["id"], official.actor)

    def test_mark_all_and_unread_filter(self, services, citizen, official, report):
        services.reports.update_report(report["id"], official.actor, {"status": "under_review"})
        services.comments.add_comment(report["id"], official.actor, "Assigned to roads crew")

        assert services.notifications.list_for(citizen.actor, unread_only=True)["pagination"]["total"] == 2
        result = services.notifications.mark_all_read(citizen.actor)
        assert result["updated"] == 2
        assert services.notifications.list_for(citizen.actor, unread_only=True)["notifications"] == []
        assert services.notifications.list_for(citizen.actor)["pagination"]["total"] == 2
        assert services.notifications.mark_all_read(citizen.actor)["updated"] == 0

    def test_inbox_requires_authentication(self, services):
        with pytest.raises(AuthenticationRequired):
            services.notifications.list_for(Actor.anonymous())
