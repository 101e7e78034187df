"""HTTP API for registration intake and the admin review panel."""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Dict, List, Optional, Tuple
from urllib.parse import parse_qs

import anyio
from fastapi import Depends, FastAPI, File, Form, HTTPException, Request, UploadFile, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse, PlainTextResponse, Response
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from starlette.datastructures import Headers
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from .config import Settings, load_settings
from .database import Database
from .errors import RegistrationDeskError, UploadTooLarge
from .models import MANDATORY_UPLOADS, OPTIONAL_UPLOADS, Registration, RegistrationForm
from .notifier import Notifier, build_notifier
from .qr import DEFAULT_QR_IMAGE, build_upi_uri, render_data_url, render_png
from .registrations import RegistrationService
from .security import AdminAuth
from .sessions import SessionManager
from .uploads import UploadBinder

logger = logging.getLogger("rpl.service")

# Allowance for the text fields and multipart framing on top of the files.
_FORM_OVERHEAD_BYTES = 1024 * 1024


class RegistrationView(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: int
    team_name: Optional[str] = None
    player_name: str
    player_mobile: str
    player_email: str
    player_role: str
    jersey_number: Optional[str] = None
    jersey_size: Optional[str] = None
    category: Optional[str] = None
    screenshot: Optional[str] = None
    aadhaar: Optional[str] = None
    passport_photo_path: Optional[str] = None
    payment_screenshot_path: Optional[str] = None
    payment_status: str
    created_at: Optional[datetime] = None


class _BodyLimitExceeded(HTTPException):
    def __init__(self) -> None:
        super().__init__(status_code=UploadTooLarge.status_code, detail=UploadTooLarge.code)


class RequestBodyLimit:
    """Cap the request body of one route while it is being received.

    Bytes are counted as the server hands them over, so chunked bodies without
    a ``Content-Length`` are limited too and nothing past the cap is spooled.
    """

    def __init__(self, app: ASGIApp, *, path: str, max_bytes: int) -> None:
        self.app = app
        self.path = path
        self.max_bytes = max_bytes

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or scope["method"] != "POST" or scope["path"] != self.path:
            await self.app(scope, receive, send)
            return

        length = Headers(scope=scope).get("content-length", "")
        if length.isdigit() and int(length) > self.max_bytes:
            logger.warning("Refused %s body of %s bytes", self.path, length)
            await self._refuse(scope, receive, send)
            return

        received = 0
        response_started = False

        async def limited_receive() -> Message:
            nonlocal received
            message = await receive()
            if message["type"] == "http.request":
                received += len(message.get("body", b""))
                if received > self.max_bytes:
                    logger.warning("Stopped %s body after %d bytes", self.path, received)
                    raise _BodyLimitExceeded()
            return message

        async def tracking_send(message: Message) -> None:
            nonlocal response_started
            if message["type"] == "http.response.start":
                response_started = True
            await send(message)

        try:
            await self.app(scope, limited_receive, tracking_send)
        except _BodyLimitExceeded:
            if response_started:
                raise
            await self._refuse(scope, receive, send)

    async def _refuse(self, scope: Scope, receive: Receive, send: Send) -> None:
        response = JSONResponse(
            status_code=UploadTooLarge.status_code,
            content=UploadTooLarge().to_response(),
        )
        await response(scope, receive, send)


def _registration_to_view(registration: Registration) -> RegistrationView:
    return RegistrationView(
        id=registration.id,
        team_name=registration.team_name,
        player_name=registration.player_name,
        player_mobile=registration.player_mobile,
        player_email=registration.player_email,
        player_role=registration.player_role,
        jersey_number=registration.jersey_number,
        jersey_size=registration.jersey_size,
        category=registration.category,
        screenshot=registration.screenshot,
        aadhaar=registration.aadhaar,
        passport_photo_path=registration.passport_photo,
        payment_screenshot_path=registration.payment_screenshot,
        payment_status=registration.payment_status.value,
        created_at=registration.created_at,
    )


def _has_content(upload: Optional[UploadFile]) -> bool:
    # Browsers send an empty, unnamed part for a file input left blank.
    if upload is None:
        return False
    return bool(upload.filename) or bool(upload.size)


async def _read_credentials(request: Request) -> Tuple[str, str]:
    body_bytes = await request.body()
    content_type = request.headers.get("content-type", "")
    if "application/json" in content_type:
        try:
            data = json.loads(body_bytes or b"{}")
        except ValueError:
            return "", ""
        if not isinstance(data, dict):
            return "", ""
        return str(data.get("user") or ""), str(data.get("pass") or "")

    decoded = body_bytes.decode("utf-8", errors="ignore")
    form = parse_qs(decoded, keep_blank_values=True)
    return form.get("user", [""])[0], form.get("pass", [""])[0]


def register_error_handlers(app: FastAPI) -> None:
    """Turn every failure into a JSON body with a matching status code."""

    @app.exception_handler(RegistrationDeskError)
    async def desk_error_handler(request: Request, exc: RegistrationDeskError):
        if exc.status_code >= 500:
            logger.error("%s on %s: %s", exc.code, request.url.path, exc.message)
        else:
            logger.info("%s on %s: %s", exc.code, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_response())

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        # Unknown routes and methods use the same body shape as every other error.
        code = str(exc.detail).strip().lower().replace(" ", "_") or "http_error"
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": code},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        logger.info("Rejected malformed request on %s: %s", request.url.path, exc.errors())
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={
                "error": "invalid_request",
                "detail": [
                    {"field": ".".join(str(part) for part in error["loc"]), "message": error["msg"]}
                    for error in exc.errors()
                ],
            },
        )

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.error("Unhandled exception on %s: %s", request.url.path, exc, exc_info=exc)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "internal_error"},
        )


def register_public_routes(
    app: FastAPI,
    registrations: RegistrationService,
    settings: Settings,
) -> None:
    """Routes reachable without signing in: intake, QR codes, health."""

    binder = registrations.uploads
    max_request_bytes = (
        binder.max_bytes * (len(MANDATORY_UPLOADS) + len(OPTIONAL_UPLOADS)) + _FORM_OVERHEAD_BYTES
    )

    app.add_middleware(
        RequestBodyLimit, path="/save-registration", max_bytes=max_request_bytes
    )

    @app.get("/healthz")
    async def healthcheck() -> Dict[str, str]:
        return {"status": "ok"}

    @app.post("/save-registration")
    def save_registration(
        player_name: Optional[str] = Form(None, alias="playerName"),
        player_mobile: Optional[str] = Form(None, alias="playerMobile"),
        player_email: Optional[str] = Form(None, alias="playerEmail"),
        player_role: Optional[str] = Form(None, alias="playerRole"),
        team_name: Optional[str] = Form(None, alias="teamName"),
        jersey_number: Optional[str] = Form(None, alias="jerseyNumber"),
        jersey_size: Optional[str] = Form(None, alias="jerseySize"),
        category: Optional[str] = Form(None),
        payment_screenshot: Optional[UploadFile] = File(None),
        passport_photo: Optional[UploadFile] = File(None),
        screenshot: Optional[UploadFile] = File(None),
        aadhaar: Optional[UploadFile] = File(None),
    ) -> Dict[str, object]:
        form = registrations.validate(
            RegistrationForm(
                player_name=player_name,
                player_mobile=player_mobile,
                player_email=player_email,
                player_role=player_role,
                team_name=team_name,
                jersey_number=jersey_number,
                jersey_size=jersey_size,
                category=category,
            )
        )

        candidates = {
            "payment_screenshot": payment_screenshot,
            "passport_photo": passport_photo,
            "screenshot": screenshot,
            "aadhaar": aadhaar,
        }
        files = {name: upload for name, upload in candidates.items() if _has_content(upload)}
        registrations.check_uploads(files)

        bound: Dict[str, str] = {}
        try:
            for name, upload in files.items():
                bound[name] = binder.bind(name, upload.filename, upload.file)
            registration_id = registrations.submit(form, bound)
        except Exception:
            binder.discard(bound.values())
            raise

        return {"ok": True, "id": registration_id}

    @app.get("/qr", response_class=PlainTextResponse)
    def payment_qr() -> PlainTextResponse:
        if not settings.upi_id:
            return PlainTextResponse(DEFAULT_QR_IMAGE)
        try:
            data_url = render_data_url(build_upi_uri(settings.upi_id, settings.payment_amount))
        except ValueError:
            logger.exception("QR generation failed")
            return PlainTextResponse(DEFAULT_QR_IMAGE, status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)
        return PlainTextResponse(data_url)

    @app.get("/qr.png")
    def payment_qr_png() -> Response:
        if not settings.upi_id:
            return PlainTextResponse("UPI not configured", status_code=status.HTTP_400_BAD_REQUEST)
        try:
            image = render_png(build_upi_uri(settings.upi_id, settings.payment_amount))
        except ValueError:
            logger.exception("QR png generation failed")
            return PlainTextResponse(
                "QR generation failed", status_code=status.HTTP_500_INTERNAL_SERVER_ERROR
            )
        return Response(content=image, media_type="image/png")


def register_admin_routes(
    app: FastAPI,
    registrations: RegistrationService,
    *,
    sessions: SessionManager,
    auth: AdminAuth,
    secure_cookies: bool,
) -> None:
    """Login/logout and the review endpoints behind the admin gate."""

    cookie_name = auth.cookie_name

    def _issue_session_cookie(response: Response, token: str) -> None:
        response.set_cookie(
            cookie_name,
            token,
            max_age=sessions.cookie_max_age,
            secure=secure_cookies,
            httponly=True,
            samesite="lax",
            path="/",
        )

    @app.post("/admin/login")
    async def admin_login(request: Request) -> JSONResponse:
        user, password = await _read_credentials(request)
        if not user or not password:
            return JSONResponse(
                status_code=status.HTTP_400_BAD_REQUEST,
                content={"error": "missing_credentials"},
            )
        if not auth.check_credentials(user, password):
            logger.warning("Failed admin login attempt for %s", user)
            return JSONResponse(
                status_code=status.HTTP_401_UNAUTHORIZED,
                content={"error": "invalid_credentials"},
            )

        sessions.revoke(request.cookies.get(cookie_name))
        session = sessions.create(user)
        logger.info("Admin %s signed in", user)
        response = JSONResponse({"ok": True, "expires": session.expires_at.isoformat()})
        _issue_session_cookie(response, session.token)
        return response

    @app.post("/admin/logout")
    async def admin_logout(request: Request, user: str = Depends(auth)) -> JSONResponse:
        sessions.revoke(request.cookies.get(cookie_name))
        logger.info("Admin %s signed out", user)
        response = JSONResponse({"ok": True})
        response.delete_cookie(cookie_name, path="/")
        return response

    @app.get("/admin/status")
    async def admin_status(request: Request) -> Dict[str, bool]:
        return {"ok": True, "loggedIn": auth.session_user(request) is not None}

    @app.get("/registrations", response_model=List[RegistrationView])
    def list_registrations(_: str = Depends(auth)) -> List[RegistrationView]:
        return [_registration_to_view(item) for item in registrations.list()]

    @app.post("/admin/verify/{registration_id}")
    async def verify_registration(
        registration_id: int, _: str = Depends(auth)
    ) -> Dict[str, object]:
        # The status change is committed before the email is attempted; a mail
        # failure only changes the advisory "email" field.
        registration = await anyio.to_thread.run_sync(registrations.verify, registration_id)
        report = await anyio.to_thread.run_sync(registrations.notify_verified, registration)
        body: Dict[str, object] = {"ok": True, "email": report.status.value}
        if report.error is not None:
            body["error"] = report.error
        return body

    @app.post("/admin/reject/{registration_id}")
    def reject_registration(registration_id: int, _: str = Depends(auth)) -> Dict[str, object]:
        registrations.reject(registration_id)
        return {"ok": True}

    @app.post("/admin/delete/{registration_id}")
    def delete_registration(registration_id: int, _: str = Depends(auth)) -> Dict[str, object]:
        report = registrations.remove(registration_id)
        return {
            "ok": True,
            "assets": {
                "removed": report.removed,
                "missing": report.missing,
                "failed": report.failed,
            },
        }

    @app.get("/uploads/{filename}")
    def serve_upload(filename: str, _: str = Depends(auth)) -> Response:
        path = registrations.uploads.resolve(filename)
        if path is None:
            return PlainTextResponse("Not found", status_code=status.HTTP_404_NOT_FOUND)
        return FileResponse(path)


def create_app(
    *,
    settings: Settings | None = None,
    database: Database | None = None,
    notifier: Notifier | None = None,
    sessions: SessionManager | None = None,
) -> FastAPI:
    """Instantiate the FastAPI application for the registration desk."""

    settings = settings or load_settings()

    db = database or Database(settings.database_path)
    added = db.initialize()
    if added:
        logger.info("Added missing registration columns: %s", ", ".join(added))

    binder = UploadBinder(settings.uploads_dir, max_bytes=settings.max_upload_bytes)
    binder.ensure_directory()

    registrations = RegistrationService(
        db,
        binder,
        notifier=notifier if notifier is not None else build_notifier(settings.smtp),
    )

    session_manager = sessions or SessionManager(ttl=settings.session_ttl)
    auth = AdminAuth(
        session_manager,
        username=settings.admin_user,
        password=settings.admin_pass,
    )

    if not settings.secure_cookies:
        logger.warning(
            "Session cookies are not marked as secure. Set RPL_SESSION_SECURE=1 when"
            " serving over HTTPS."
        )

    app = FastAPI(
        title="RPL Registration Desk",
        version="0.1.0",
        description="Tournament registration intake and payment review.",
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.settings = settings
    app.state.database = db
    app.state.sessions = session_manager
    app.state.registrations = registrations

    register_error_handlers(app)
    register_public_routes(app, registrations, settings)
    register_admin_routes(
        app,
        registrations,
        sessions=session_manager,
        auth=auth,
        secure_cookies=settings.secure_cookies,
    )
    return app


__all__ = ["RegistrationView", "create_app"]
