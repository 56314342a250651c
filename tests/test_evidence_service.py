"""Evidence intake: validation order, blob/record consistency, signed URLs."""

import io
from unittest.mock import patch

import pytest

from civicwatch.domain.errors import (
    AccessDenied,
    AuthenticationRequired,
    NotFound,
    RateLimited,
    UpstreamFailure,
    ValidationFailed,
)
from civicwatch.domain.roles import Actor
from civicwatch.infra.repositories import RepositoryError
from civicwatch.infra.storage import StorageError
from civicwatch.services.evidence_service import IncomingFile

PNG_BYTES = b"\x89PNG\r\n\x1a\n\x00\x00\x00\rIHDR" + b"\x00" * 64
PDF_BYTES = b"%PDF-1.4\n" + b"0" * 64
MISSING_REPORT = "00000000-0000-4000-8000-000000000000"


def upload(data, content_type="image/png", filename="photo.png", size=None):
    return IncomingFile(filename=filename, content_type=content_type, stream=io.BytesIO(data), size=size)


@pytest.fixture
def report(services, citizen, pothole):
    return services.reports.create_report(pothole, citizen.actor)


class TestUpload:
    def test_png_upload_is_stored_and_logged(self, services, citizen, report):
        row = services.evidence.upload_evidence(report["id"], upload(PNG_BYTES), citizen.actor)

        assert row["file_type"] == "image"
        assert row["original_filename"] == "photo.png"
        assert row["uploaded_by_user_id"] == citizen.profile_id
        assert row["file_url"].startswith(f"{report['id']}/")
        assert row["file_url"].endswith(".png")
        assert services.blob_store.exists(row["file_url"])

        event = services.repo.list_timeline_events(report["id"])[-1]
        assert event["event_type"] == "evidence_added"
        assert event["metadata"]["file_size"] == len(PNG_BYTES)
        assert services.repo.list_audit_logs()[-1]["action"] == "evidence_uploaded"

    def test_moderator_can_attach_evidence(self, services, official, report):
        row = services.evidence.upload_evidence(
            report["id"], upload(PDF_BYTES, "application/pdf", "inspection.pdf"), official.actor
        )
        assert row["file_type"] == "document"

    def test_png_declared_as_pdf_is_rejected_and_nothing_stored(self, services, citizen, report):
        with pytest.raises(ValidationFailed, match="does not match"):
            services.evidence.upload_evidence(
                report["id"], upload(PNG_BYTES, "application/pdf", "scan.pdf"), citizen.actor
            )
        assert services.blob_store.paths() == []
        assert services.repo.list_evidence(report["id"]) == []

    def test_unlisted_type_is_rejected(self, services, citizen, report):
        with pytest.raises(ValidationFailed) as exc:
            services.evidence.upload_evidence(report["id"], upload(b"MZ\x90\x00", "application/x-msdownload"), citizen.actor)
        assert "allowed_types" in exc.value.extra

    def test_oversized_file_is_rejected(self, services, citizen, report):
        services.evidence.max_bytes = 16
        with pytest.raises(ValidationFailed, match="too large"):
            services.evidence.upload_evidence(report["id"], upload(PNG_BYTES), citizen.actor)
        with pytest.raises(ValidationFailed, match="too large"):
            services.evidence.upload_evidence(report["id"], upload(b"\x89PNG", size=10_000), citizen.actor)
        assert services.blob_store.paths() == []

    def test_empty_file_is_rejected(self, services, citizen, report):
        with pytest.raises(ValidationFailed, match="empty"):
            services.evidence.upload_evidence(report["id"], upload(b""), citizen.actor)

    def test_filename_is_sanitized(self, services, citizen, report):
        row = services.evidence.upload_evidence(report["id"], upload(PNG_BYTES, filename="../../x y.png"), citizen.actor)
        assert row["original_filename"] == "__x_y.png"


class TestPipelineOrder:
    def test_requires_authentication(self, services, report):
        with pytest.raises(AuthenticationRequired):
            services.evidence.upload_evidence(report["id"], upload(PNG_BYTES), Actor.anonymous())

    def test_report_id_format_checked_first(self, services, citizen):
        with pytest.raises(ValidationFailed, match="report ID"):
            services.evidence.upload_evidence("not-a-uuid", upload(PNG_BYTES), citizen.actor)

    def test_missing_file(self, services, citizen, report):
        with pytest.raises(ValidationFailed, match="No file"):
            services.evidence.upload_evidence(report["id"], None, citizen.actor)

    def test_missing_report_reported_before_file_checks(self, services, citizen):
        with pytest.raises(NotFound):
            services.evidence.upload_evidence(MISSING_REPORT, upload(b"hello", "text/plain"), citizen.actor)

    def test_non_owner_is_denied_before_file_checks(self, services, make_user, report):
        stranger = make_user()
        with pytest.raises(AccessDenied):
            services.evidence.upload_evidence(report["id"], upload(b"hello", "text/plain"), stranger.actor)
        assert services.blob_store.paths() == []

    def test_rate_limit_applies_before_report_lookup(self, services, citizen, report):
        for _ in range(50):
            services.evidence.upload_evidence(report["id"], upload(PNG_BYTES), citizen.actor)
        with pytest.raises(RateLimited):
            services.evidence.upload_evidence(MISSING_REPORT, upload(PNG_BYTES), citizen.actor)


class TestConsistency:
    def test_record_failure_removes_uploaded_blob(self, services, citizen, report):
        with patch.object(services.repo, "create_evidence", side_effect=RepositoryError("insert failed")):
            with pytest.raises(UpstreamFailure):
                services.evidence.upload_evidence(report["id"], upload(PNG_BYTES), citizen.actor)

        assert services.blob_store.paths() == []
        assert services.repo.list_evidence(report["id"]) == []

    def test_failed_compensation_still_reports_failure(self, services, citizen, report):
        with patch.object(services.repo, "create_evidence", side_effect=RepositoryError("insert failed")), \
                patch.object(services.blob_store, "remove", side_effect=StorageError("gone")) as mock_remove:
            with pytest.raises(UpstreamFailure):
                services.evidence.upload_evidence(report["id"], upload(PNG_BYTES), citizen.actor)
        mock_remove.assert_called_once()

    def test_storage_failure_writes_no_record(self, services, citizen, report):
        with patch.object(services.blob_store, "upload", side_effect=StorageError("bucket down")):
            with pytest.raises(UpstreamFailure):
                services.evidence.upload_evidence(report["id"], upload(PNG_BYTES), citizen.actor)
        assert services.repo.list_evidence(report["id"]) == []

    def test_deleting_report_removes_blobs(self, services, citizen, admin, report):
        row = services.evidence.upload_evidence(report["id"], upload(PNG_BYTES), citizen.actor)
        services.reports.delete_report(report["id"], admin.actor)
        assert not services.blob_store.exists(row["file_url"])


class TestRetrieval:
    def test_list_and_signed_url(self, services, citizen, report):
        row = services.evidence.upload_evidence(report["id"], upload(PNG_BYTES), citizen.actor)

        listed = services.evidence.list_evidence(report["id"], citizen.actor)
        assert [e["id"] for e in listed] == [row["id"]]

        link = services.evidence.get_download_url(row["id"], citizen.actor)
        assert link["id"] == row["id"]
        assert link["expires_in"] == services.evidence.signed_url_ttl
        assert link["url"].startswith(f"memory://{services.blob_store.bucket}/{row['file_url']}")

    def test_signed_url_respects_report_access(self, services, citizen, make_user, report):
        row = services.evidence.upload_evidence(report["id"], upload(PNG_BYTES), citizen.actor)
        with pytest.raises(AccessDenied):
            services.evidence.get_download_url(row["id"], make_user().actor)

    def test_unknown_evidence(self, services, citizen):
        with pytest.raises(NotFound):
            services.evidence.get_download_url(MISSING_REPORT, citizen.actor)
