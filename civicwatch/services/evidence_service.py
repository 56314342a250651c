from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, BinaryIO
from uuid import uuid4

from civicwatch.domain.errors import NotFound, UpstreamFailure, ValidationFailed
from civicwatch.domain.models import Evidence, to_row
from civicwatch.domain.roles import Actor
from civicwatch.domain.states import TimelineEventType
from civicwatch.infra.repositories import PortalRepository, RepositoryError
from civicwatch.infra.storage import BlobStore, StorageError
from civicwatch.services import evidence_validator as validator
from civicwatch.services.activity import ActivityRecorder
from civicwatch.services.identity_service import enforce_rate_limit, require_authenticated
from civicwatch.services.rate_limiter import RateLimiter
from civicwatch.services.report_service import ReportService

logger = logging.getLogger(__name__)


@dataclass
class IncomingFile:
    """An upload as received from the HTTP layer, not yet read into memory."""

    filename: str | None
    content_type: str | None
    stream: BinaryIO
    size: int | None = None


class EvidenceService:
    def __init__(
        self,
        repo: PortalRepository,
        reports: ReportService,
        blob_store: BlobStore,
        limiter: RateLimiter,
        activity: ActivityRecorder,
        max_bytes: int = validator.MAX_FILE_SIZE,
        signed_url_ttl: int = 3600,
    ) -> None:
        self.repo = repo
        self.reports = reports
        self.blob_store = blob_store
        self.limiter = limiter
        self.activity = activity
        self.max_bytes = max_bytes
        self.signed_url_ttl = signed_url_ttl

    def upload_evidence(self, report_id: str, upload: IncomingFile | None, actor: Actor) -> dict[str, Any]:
        require_authenticated(actor)
        if not validator.is_valid_uuid(report_id):
            raise ValidationFailed("Invalid report ID format", fields=["report_id"])
        if upload is None:
            raise ValidationFailed("No file provided", fields=["file"])

        # 1. throttle
        enforce_rate_limit(
            self.limiter,
            "evidence_upload",
            str(actor.profile_id),
            "Too many uploads.",
        )
        # 2. report exists, 3. owner or moderator
        self.reports.require_viewable(report_id, actor)
        # 4. size, from the declared length when known, then from the bytes read
        if upload.size is not None:
            validator.check_size(upload.size, self.max_bytes)
        data = upload.stream.read(self.max_bytes + 1)
        validator.check_size(len(data), self.max_bytes)
        # 5. declared type
        mime_type = validator.normalize_mime_type(upload.content_type)
        evidence_type = validator.check_mime_type(mime_type)
        # 6. content signature
        if not validator.matches_magic_bytes(mime_type, data[: validator.HEADER_WINDOW]):
            logger.warning("Magic-byte mismatch for %s upload on report %s", mime_type, report_id)
            raise ValidationFailed("File content does not match declared type", fields=["file"])
        # 7. filename
        safe_name = validator.sanitize_filename(upload.filename)

        path = self.storage_path(report_id, safe_name)
        try:
            self.blob_store.upload(path, data, mime_type)
        except StorageError as exc:
            logger.error("Evidence upload to blob store failed for report %s: %s", report_id, exc)
            raise UpstreamFailure("Failed to upload file") from exc

        evidence = Evidence(
            report_id=report_id,
            file_url=path,
            file_type=evidence_type.value,
            original_filename=safe_name,
            uploaded_by_user_id=actor.profile_id,
        )
        try:
            row = self.repo.create_evidence(to_row(evidence))
        except RepositoryError as exc:
            self._compensate(path)
            raise UpstreamFailure("Failed to save evidence record") from exc

        self.activity.timeline(
            report_id,
            TimelineEventType.EVIDENCE_ADDED,
            actor.profile_id,
            metadata={"file_name": safe_name, "file_type": evidence_type.value, "file_size": len(data)},
        )
        self.activity.audit(
            "evidence_uploaded",
            "report_evidence",
            row["id"],
            actor.profile_id,
            {"report_id": report_id, "file_type": evidence_type.value, "file_size": len(data)},
        )
        logger.info("Evidence %s uploaded for report %s (%s bytes)", row["id"], report_id, len(data))
        return row

    @staticmethod
    def storage_path(report_id: str, safe_name: str) -> str:
        ext = validator.file_extension(safe_name)
        return f"{report_id}/{int(time.time() * 1000)}_{uuid4().hex[:8]}.{ext}"

    def _compensate(self, path: str) -> None:
        logger.warning("Evidence record insert failed; removing uploaded blob %s", path)
        try:
            self.blob_store.remove(path)
        except StorageError:
            logger.exception("Compensating delete failed; orphaned blob %s", path)

    def list_evidence(self, report_id: str, actor: Actor) -> list[dict[str, Any]]:
        self.reports.require_viewable(report_id, actor)
        return self.repo.list_evidence(report_id)

    def get_download_url(self, evidence_id: str, actor: Actor) -> dict[str, Any]:
        evidence = self.repo.get_evidence(evidence_id)
        if not evidence:
            raise NotFound("Evidence not found")
        self.reports.require_viewable(str(evidence["report_id"]), actor)
        try:
            url = self.blob_store.signed_url(str(evidence["file_url"]), self.signed_url_ttl)
        except StorageError as exc:
            logger.error("Signed URL failed for evidence %s: %s", evidence_id, exc)
            raise UpstreamFailure("Failed to create download link") from exc
        return {"id": evidence_id, "url": url, "expires_in": self.signed_url_ttl}
