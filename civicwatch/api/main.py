from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, FastAPI, File, Header, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from civicwatch.config import Settings, settings
from civicwatch.contracts.payloads import (
    CommentCreateRequest,
    LoginRequest,
    PasswordResetRequest,
    ProfileUpdateRequest,
    ProjectCreateRequest,
    ProjectUpdateRequest,
    RegisterRequest,
    ReportCreateRequest,
    ReportUpdateRequest,
    RoleUpdateRequest,
    TransactionCreateRequest,
    TransparencyQueryRequest,
)
from civicwatch.domain.errors import PortalError, RateLimited
from civicwatch.domain.roles import Actor
from civicwatch.logging_setup import init_logging
from civicwatch.services.container import PortalServices, build_services
from civicwatch.services.evidence_service import IncomingFile

logger = logging.getLogger(__name__)

CORS_ALLOW_HEADERS = "authorization, x-client-info, apikey, content-type"
CORS_ALLOW_METHODS = "GET, POST, PUT, PATCH, DELETE, OPTIONS"
CORS_MAX_AGE = "86400"

router = APIRouter()


def allow_origin(request_origin: str | None, allowed: tuple[str, ...]) -> str:
    if not allowed:
        return "*"
    if request_origin and request_origin in allowed:
        return request_origin
    return allowed[0]


def cors_headers(request_origin: str | None, allowed: tuple[str, ...]) -> dict[str, str]:
    return {
        "Access-Control-Allow-Origin": allow_origin(request_origin, allowed),
        "Access-Control-Allow-Headers": CORS_ALLOW_HEADERS,
        "Access-Control-Allow-Methods": CORS_ALLOW_METHODS,
        "Access-Control-Max-Age": CORS_MAX_AGE,
    }


def _services(request: Request) -> PortalServices:
    return request.app.state.services


def _actor(
    request: Request,
    authorization: str | None = Header(default=None),
) -> Actor:
    return _services(request).identity.resolve(authorization)


def _client_ip(request: Request) -> str:
    config: Settings = request.app.state.settings
    if config.trust_proxy_headers:
        forwarded = request.headers.get("x-forwarded-for", "")
        first_hop = forwarded.split(",", 1)[0].strip()
        if first_hop:
            return first_hop
    return request.client.host if request.client else "unknown"


def _error_body(exc: PortalError) -> dict[str, Any]:
    return {"error": exc.message, **exc.extra}


def create_app(services: PortalServices | None = None, config: Settings = settings) -> FastAPI:
    init_logging(config)
    app = FastAPI(title="CivicWatch Portal API", version="1.0.0")
    app.state.services = services or build_services(config)
    app.state.settings = config

    @app.middleware("http")
    async def cors_middleware(request: Request, call_next: Any) -> Response:
        headers = cors_headers(request.headers.get("origin"), config.allowed_origins)
        if request.method == "OPTIONS":
            return Response(status_code=204, headers=headers)
        response = await call_next(request)
        response.headers["Access-Control-Allow-Origin"] = headers["Access-Control-Allow-Origin"]
        if config.allowed_origins:
            response.headers["Vary"] = "Origin"
        return response

    @app.exception_handler(PortalError)
    async def portal_error_handler(_request: Request, exc: PortalError) -> JSONResponse:
        headers = {"Retry-After": str(exc.retry_after_seconds)} if isinstance(exc, RateLimited) else None
        return JSONResponse(status_code=exc.status_code, content=_error_body(exc), headers=headers)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
        fields = sorted({str(err["loc"][-1]) for err in exc.errors() if err.get("loc")})
        message = f"Invalid request: {', '.join(fields)}" if fields else "Invalid request"
        return JSONResponse(status_code=400, content={"error": message, "fields": fields})

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)})

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        # Runs outside cors_middleware.
        headers = cors_headers(request.headers.get("origin"), config.allowed_origins)
        if config.allowed_origins:
            headers["Vary"] = "Origin"
        return JSONResponse(status_code=500, content={"error": "Internal server error"}, headers=headers)

    app.include_router(router)
    return app


@router.get("/health")
def health(request: Request) -> dict[str, Any]:
    services = _services(request)
    return {
        "status": "ok",
        "persistence": services.persistence,
        "ai_enabled": services.oracle.enabled,
    }


# auth / users


@router.post("/auth/register", status_code=201)
def register(payload: RegisterRequest, request: Request) -> dict[str, Any]:
    return _services(request).identity.register(
        email=payload.email,
        password=payload.password,
        full_name=payload.full_name,
        phone=payload.phone,
        client_ip=_client_ip(request),
    )


@router.post("/auth/login")
def login(payload: LoginRequest, request: Request) -> dict[str, Any]:
    return _services(request).identity.login(
        email=payload.email,
        password=payload.password,
        client_ip=_client_ip(request),
    )


@router.post("/auth/password-reset")
def password_reset(payload: PasswordResetRequest, request: Request) -> dict[str, Any]:
    return _services(request).identity.request_password_reset(payload.email, client_ip=_client_ip(request))


@router.get("/auth/me")
def me(request: Request, actor: Actor = Depends(_actor)) -> dict[str, Any]:
    return _services(request).identity.me(actor)


@router.patch("/users/me")
def update_me(payload: ProfileUpdateRequest, request: Request, actor: Actor = Depends(_actor)) -> dict[str, Any]:
    return _services(request).identity.update_me(actor, full_name=payload.full_name, phone=payload.phone)


@router.get("/users")
def list_users(
    request: Request,
    search: str | None = None,
    role: str | None = None,
    page: int = 1,
    limit: int = 20,
    actor: Actor = Depends(_actor),
) -> dict[str, Any]:
    return _services(request).identity.list_users(actor, search=search, role=role, page=page, limit=limit)


@router.get("/users/{profile_id}")
def get_user(profile_id: str, request: Request, actor: Actor = Depends(_actor)) -> dict[str, Any]:
    return _services(request).identity.get_user(actor, profile_id)


@router.patch("/users/{profile_id}/role")
def set_role(
    profile_id: str,
    payload: RoleUpdateRequest,
    request: Request,
    actor: Actor = Depends(_actor),
) -> dict[str, Any]:
    return _services(request).identity.set_role(actor, profile_id, payload.role)


# reports


@router.post("/reports", status_code=201)
def create_report(payload: ReportCreateRequest, request: Request, actor: Actor = Depends(_actor)) -> dict[str, Any]:
    return _services(request).reports.create_report(payload.model_dump(), actor, client_ip=_client_ip(request))


@router.get("/reports")
def list_reports(
    request: Request,
    status: str | None = None,
    type: str | None = None,
    severity: str | None = None,
    date_from: str | None = None,
    date_to: str | None = None,
    page: int = 1,
    limit: int = 20,
    actor: Actor = Depends(_actor),
) -> dict[str, Any]:
    filters = {"status": status, "type": type, "severity": severity, "date_from": date_from, "date_to": date_to}
    return _services(request).reports.list_reports(actor, filters, page=page, limit=limit)


@router.get("/reports/my")
def list_my_reports(
    request: Request,
    page: int = 1,
    limit: int = 20,
    actor: Actor = Depends(_actor),
) -> dict[str, Any]:
    return _services(request).reports.list_my_reports(actor, page=page, limit=limit)


@router.get("/reports/{report_id}")
def get_report(report_id: str, request: Request, actor: Actor = Depends(_actor)) -> dict[str, Any]:
    return _services(request).reports.get_report(report_id, actor)


@router.get("/reports/{report_id}/detail")
def get_report_detail(report_id: str, request: Request, actor: Actor = Depends(_actor)) -> dict[str, Any]:
    return _services(request).reports.get_report_detail(report_id, actor)


@router.patch("/reports/{report_id}")
def update_report(
    report_id: str,
    payload: ReportUpdateRequest,
    request: Request,
    actor: Actor = Depends(_actor),
) -> dict[str, Any]:
    return _services(request).reports.update_report(report_id, actor, payload.model_dump(exclude_unset=True))


@router.delete("/reports/{report_id}")
def delete_report(report_id: str, request: Request, actor: Actor = Depends(_actor)) -> dict[str, Any]:
    return _services(request).reports.delete_report(report_id, actor)


@router.get("/reports/{report_id}/timeline")
def list_timeline(report_id: str, request: Request, actor: Actor = Depends(_actor)) -> dict[str, Any]:
    return {"timeline": _services(request).reports.list_timeline(report_id, actor)}


# evidence


@router.post("/reports/{report_id}/evidence", status_code=201)
def upload_evidence(
    report_id: str,
    request: Request,
    file: UploadFile | None = File(default=None),
    actor: Actor = Depends(_actor),
) -> dict[str, Any]:
    upload = None
    if file is not None:
        upload = IncomingFile(
            filename=file.filename,
            content_type=file.content_type,
            stream=file.file,
            size=file.size,
        )
    return _services(request).evidence.upload_evidence(report_id, upload, actor)


@router.get("/reports/{report_id}/evidence")
def list_evidence(report_id: str, request: Request, actor: Actor = Depends(_actor)) -> dict[str, Any]:
    return {"evidence": _services(request).evidence.list_evidence(report_id, actor)}


@router.get("/evidence/{evidence_id}/url")
def evidence_url(evidence_id: str, request: Request, actor: Actor = Depends(_actor)) -> dict[str, Any]:
    return _services(request).evidence.get_download_url(evidence_id, actor)


# comments


@router.post("/reports/{report_id}/comments", status_code=201)
def add_comment(
    report_id: str,
    payload: CommentCreateRequest,
    request: Request,
    actor: Actor = Depends(_actor),
) -> dict[str, Any]:
    return _services(request).comments.add_comment(report_id, actor, payload.content, payload.is_public)


@router.get("/reports/{report_id}/comments")
def list_comments(report_id: str, request: Request, actor: Actor = Depends(_actor)) -> dict[str, Any]:
    return {"comments": _services(request).comments.list_comments(report_id, actor)}


# notifications


@router.get("/notifications")
def list_notifications(
    request: Request,
    unread_only: bool = False,
    page: int = 1,
    limit: int = 20,
    actor: Actor = Depends(_actor),
) -> dict[str, Any]:
    return _services(request).notifications.list_for(actor, unread_only=unread_only, page=page, limit=limit)


@router.patch("/notifications/read-all")
def mark_all_notifications_read(request: Request, actor: Actor = Depends(_actor)) -> dict[str, Any]:
    return _services(request).notifications.mark_all_read(actor)


@router.patch("/notifications/{notification_id}/read")
def mark_notification_read(notification_id: str, request: Request, actor: Actor = Depends(_actor)) -> dict[str, Any]:
    return _services(request).notifications.mark_read(notification_id, actor)


# projects / transparency


@router.get("/projects")
def list_projects(
    request: Request,
    status: str | None = None,
    department: str | None = None,
    location: str | None = None,
    date_from: str | None = None,
    date_to: str | None = None,
    page: int = 1,
    limit: int = 20,
) -> dict[str, Any]:
    filters = {
        "status": status,
        "department": department,
        "location": location,
        "date_from": date_from,
        "date_to": date_to,
    }
    return _services(request).transparency.list_projects(filters, page=page, limit=limit)


@router.post("/projects", status_code=201)
def create_project(payload: ProjectCreateRequest, request: Request, actor: Actor = Depends(_actor)) -> dict[str, Any]:
    return _services(request).transparency.create_project(actor, payload.model_dump())


@router.get("/projects/{project_id}")
def get_project(project_id: str, request: Request) -> dict[str, Any]:
    return _services(request).transparency.project_detail(project_id)


@router.patch("/projects/{project_id}")
def update_project(
    project_id: str,
    payload: ProjectUpdateRequest,
    request: Request,
    actor: Actor = Depends(_actor),
) -> dict[str, Any]:
    return _services(request).transparency.update_project(project_id, actor, payload.model_dump(exclude_unset=True))


@router.get("/projects/{project_id}/transactions")
def list_transactions(project_id: str, request: Request) -> dict[str, Any]:
    return {"transactions": _services(request).transparency.list_transactions(project_id)}


@router.post("/projects/{project_id}/transactions", status_code=201)
def record_transaction(
    project_id: str,
    payload: TransactionCreateRequest,
    request: Request,
    actor: Actor = Depends(_actor),
) -> dict[str, Any]:
    return _services(request).transparency.record_transaction(project_id, actor, payload.model_dump())


@router.get("/transparency/summary")
def transparency_summary(request: Request) -> dict[str, Any]:
    return _services(request).transparency.summary()


@router.get("/transparency/custom")
def transparency_custom(
    request: Request,
    department: str | None = None,
    status: str | None = None,
    date_from: str | None = None,
    date_to: str | None = None,
    min_budget: float | None = None,
    max_budget: float | None = None,
) -> dict[str, Any]:
    filters = {
        "department": department,
        "status": status,
        "date_from": date_from,
        "date_to": date_to,
        "min_budget": min_budget,
        "max_budget": max_budget,
    }
    return _services(request).transparency.custom_report(filters)


@router.post("/transparency/query")
def transparency_query(payload: TransparencyQueryRequest, request: Request) -> dict[str, Any]:
    return _services(request).transparency.natural_language_query(payload.query)


app = create_app()
