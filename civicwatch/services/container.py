from __future__ import annotations

import logging
from dataclasses import dataclass

from civicwatch.config import Settings, settings as default_settings
from civicwatch.infra.ai_oracle import TextOracle, build_oracle
from civicwatch.infra.identity import IdentityProvider, build_identity_provider
from civicwatch.infra.repositories import PortalRepository, build_repository
from civicwatch.infra.storage import BlobStore, build_blob_store
from civicwatch.services.activity import ActivityRecorder
from civicwatch.services.comment_service import CommentService
from civicwatch.services.evidence_service import EvidenceService
from civicwatch.services.identity_service import IdentityService
from civicwatch.services.notification_service import NotificationService
from civicwatch.services.rate_limiter import RateLimiter
from civicwatch.services.report_service import ReportService
from civicwatch.services.transparency_service import TransparencyService

logger = logging.getLogger(__name__)


@dataclass
class PortalServices:
    repo: PortalRepository
    blob_store: BlobStore
    identity_provider: IdentityProvider
    oracle: TextOracle
    limiter: RateLimiter
    activity: ActivityRecorder
    notifications: NotificationService
    identity: IdentityService
    reports: ReportService
    evidence: EvidenceService
    comments: CommentService
    transparency: TransparencyService
    persistence: str = "memory"

    @classmethod
    def assemble(
        cls,
        repo: PortalRepository,
        blob_store: BlobStore,
        identity_provider: IdentityProvider,
        oracle: TextOracle,
        limiter: RateLimiter | None = None,
        config: Settings = default_settings,
        persistence: str = "memory",
    ) -> "PortalServices":
        if limiter is None:
            limiter = RateLimiter(cleanup_interval_ms=config.rate_limit_cleanup_seconds * 1000)
        activity = ActivityRecorder(repo)
        notifications = NotificationService(repo)
        identity = IdentityService(repo, identity_provider, limiter, activity)
        reports = ReportService(repo, oracle, limiter, activity, notifications, blob_store)
        evidence = EvidenceService(
            repo,
            reports,
            blob_store,
            limiter,
            activity,
            max_bytes=config.evidence_max_bytes,
            signed_url_ttl=config.evidence_signed_url_ttl_seconds,
        )
        comments = CommentService(repo, reports, limiter, activity, notifications)
        transparency = TransparencyService(repo, oracle, activity)
        return cls(
            repo=repo,
            blob_store=blob_store,
            identity_provider=identity_provider,
            oracle=oracle,
            limiter=limiter,
            activity=activity,
            notifications=notifications,
            identity=identity,
            reports=reports,
            evidence=evidence,
            comments=comments,
            transparency=transparency,
            persistence=persistence,
        )


def build_services(config: Settings = default_settings) -> PortalServices:
    repo, using_supabase, repo_err = build_repository()
    if repo_err:
        logger.warning(repo_err)
    blob_store, _, blob_err = build_blob_store()
    if blob_err:
        logger.warning(blob_err)
    provider, _, provider_err = build_identity_provider()
    if provider_err:
        logger.warning(provider_err)
    oracle = build_oracle()
    if not oracle.enabled:
        logger.warning("GROQ_API_KEY not set; AI suggestions are disabled.")
    return PortalServices.assemble(
        repo,
        blob_store,
        provider,
        oracle,
        config=config,
        persistence="supabase" if using_supabase else "memory",
    )
