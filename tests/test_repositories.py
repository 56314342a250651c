from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from civicwatch.infra.repositories import (
    InMemoryRepository,
    RepositoryError,
    SupabaseRepository,
    _extract_missing_column_name,
)


class TestSupabaseRepository:
    def test_missing_column_is_dropped_and_insert_retried(self):
        client = MagicMock()
        execute = client.table.return_value.insert.return_value.execute
        execute.side_effect = [
            Exception("Could not find the 'ai_sentiment' column of 'reports' in the schema cache"),
            SimpleNamespace(data=[{"id": "r1", "title": "Pothole"}]),
        ]
        repo = SupabaseRepository(client)

        row = repo.create_report({"id": "r1", "title": "Pothole", "ai_sentiment": "urgent"})

        assert row == {"id": "r1", "title": "Pothole"}
        retried_payload = client.table.return_value.insert.call_args.args[0]
        assert "ai_sentiment" not in retried_payload

    def test_other_errors_surface_as_repository_error(self):
        client = MagicMock()
        client.table.return_value.insert.return_value.execute.side_effect = Exception("permission denied")
        with pytest.raises(RepositoryError, match="permission denied"):
            SupabaseRepository(client).create_comment({"content": "hi"})

    def test_profile_role_is_flattened(self):
        client = MagicMock()
        chain = client.table.return_value.select.return_value.eq.return_value.limit.return_value
        chain.execute.return_value = SimpleNamespace(
            data=[{"id": "p1", "email": "a@b.com", "user_roles": [{"role": "official"}]}]
        )
        profile = SupabaseRepository(client).get_profile("p1")
        assert profile["role"] == "official"
        assert "user_roles" not in profile

    def test_malformed_id_reads_as_missing(self):
        client = MagicMock()
        chain = client.table.return_value.select.return_value.eq.return_value.limit.return_value
        chain.execute.side_effect = Exception('invalid input syntax for type uuid: "abc"')
        assert SupabaseRepository(client).get_report("abc") is None

    def test_read_failures_surface_as_repository_error(self):
        client = MagicMock()
        chain = client.table.return_value.select.return_value.eq.return_value.order.return_value
        chain.execute.side_effect = Exception("connection reset")
        with pytest.raises(RepositoryError, match="connection reset"):
            SupabaseRepository(client).list_comments("r1")

    def test_role_filter_uses_inner_join(self):
        client = MagicMock()
        select = client.table.return_value.select
        chain = select.return_value.eq.return_value.order.return_value.range.return_value
        chain.execute.return_value = SimpleNamespace(
            data=[{"id": "p2", "user_roles": [{"role": "official"}]}], count=1
        )

        rows, total = SupabaseRepository(client).list_profiles(None, 1, 20, role="official")

        assert total == 1
        assert rows[0]["role"] == "official"
        assert "user_roles!inner(role)" in select.call_args.args[0]
        select.return_value.eq.assert_called_once_with("user_roles.role", "official")

    @pytest.mark.parametrize(
        "message, column",
        [
            ("Could not find the 'file_url' column of 'report_evidence'", "file_url"),
            ('column "severity" does not exist', None),
            ("column 'severity' of relation", "severity"),
        ],
    )
    def test_extract_missing_column_name(self, message, column):
        assert _extract_missing_column_name(message) == column


class TestInMemoryRepository:
    def test_project_filters_and_sorting(self):
        repo = InMemoryRepository()
        repo.create_project({"name": "B", "department": "Roads", "total_budget_amount": 10, "start_date": "2024-02-01"})
        repo.create_project({"name": "A", "department": "Parks", "total_budget_amount": 30, "start_date": "2024-01-01"})
        repo.create_project({"name": "C", "department": "Roads", "total_budget_amount": 20, "start_date": "2024-03-01"})

        rows, total = repo.list_projects({"department": "road"}, sort_by="budget", descending=True)
        assert total == 2
        assert [r["name"] for r in rows] == ["C", "B"]

        rows, _ = repo.list_projects({"min_budget": 15}, sort_by="name", descending=False)
        assert [r["name"] for r in rows] == ["A", "C"]

        rows, total = repo.list_projects({}, sort_by="date", descending=False, page=2, limit=2)
        assert total == 3
        assert [r["name"] for r in rows] == ["C"]

    def test_notifications_are_scoped_to_recipient(self):
        repo = InMemoryRepository()
        note = repo.create_notification({"user_id": "p1", "type": "new_comment", "title": "t", "body": "b"})
        assert repo.get_notification(note["id"], "p2") is None
        assert repo.mark_notification_read(note["id"], "p2") is None
        assert repo.count_unread_notifications("p1") == 1

    def test_update_missing_rows(self):
        repo = InMemoryRepository()
        with pytest.raises(RepositoryError):
            repo.update_report("missing", {"status": "resolved"})
        assert repo.delete_report("missing") is False

    def test_role_filter_applies_before_paging(self):
        repo = InMemoryRepository()
        for n in range(5):
            profile = repo.create_profile({"email": f"user{n}@example.org", "created_at": f"2024-01-0{n + 1}"})
            repo.set_user_role(profile["id"], "official" if n % 2 else "citizen")

        rows, total = repo.list_profiles(None, 1, 2, role="citizen")

        assert total == 3
        assert [r["email"] for r in rows] == ["user4@example.org", "user2@example.org"]
