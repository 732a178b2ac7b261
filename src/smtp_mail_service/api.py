# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""FastAPI application factory for the SMTP mail service.

Every successful response uses the envelope::

    {"code": 200, "message": "...", "data": ...}

and every error::

    {"code": <status>, "message": "...", "error": "..."}

Service errors map to HTTP statuses as follows:

- ValidationError, EncodingError and request validation: 400
- NotFoundError: 404
- TransportError: 502, with the failed delivery record in ``data``
- ServiceUnavailableError: 503

Example:
    Creating and running the API application::

        from smtp_mail_service.core import MailService
        from smtp_mail_service.api import create_app

        service = MailService(db_path="./data/smtp-mail.db")
        app = create_app(service, cors_origins=["https://admin.example.com"])

        uvicorn.run(app, host="0.0.0.0", port=7700)
"""

from __future__ import annotations

import re
from typing import Any, AsyncContextManager, Callable, Iterable, Optional

from fastapi import APIRouter, FastAPI, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .core import MailService
from .errors import (
    EncodingError,
    MailServiceError,
    NotFoundError,
    ServiceUnavailableError,
    TransportError,
    ValidationError,
)
from .logger import get_logger
from .models import (
    ConnectionTestPayload,
    ProfileCreate,
    ProfileUpdate,
    SendRequest,
    SendTestPayload,
    TemplateCreate,
    TemplateUpdate,
)

logger = get_logger("API")

LOCAL_ORIGIN_PATTERN = r"http://(localhost|127\.0\.0\.1)(:\d+)?"
CORS_METHODS = ["GET", "POST", "PUT", "DELETE", "OPTIONS"]

ERROR_STATUS: list[tuple[type[MailServiceError], int]] = [
    (TransportError, 502),
    (ValidationError, 400),
    (EncodingError, 400),
    (NotFoundError, 404),
    (ServiceUnavailableError, 503),
]


def ok(data: Any = None, message: str = "success") -> dict[str, Any]:
    """Wrap ``data`` in the success envelope."""
    return {"code": 200, "message": message, "data": data}


def status_for(exc: MailServiceError) -> int:
    for cls, status in ERROR_STATUS:
        if isinstance(exc, cls):
            return status
    return 500


def cors_settings(origins: Iterable[str]) -> dict[str, Any]:
    """Translate configured origins into CORSMiddleware arguments.

    Entries are exact origins, ``*``, or ``scheme://host:*`` which allows any
    port on that host. Plain-HTTP localhost and 127.0.0.1 are always allowed.
    """
    exact: list[str] = []
    patterns = [LOCAL_ORIGIN_PATTERN]
    for origin in origins:
        origin = origin.strip().rstrip("/")
        if not origin:
            continue
        if origin.endswith(":*"):
            patterns.append(re.escape(origin[:-2]) + r"(:\d+)?")
        else:
            exact.append(origin)
    return {
        "allow_origins": exact,
        "allow_origin_regex": "|".join(f"(?:{p})" for p in patterns),
        "allow_methods": CORS_METHODS,
        "allow_headers": ["Content-Type", "Authorization"],
        "allow_credentials": True,
        "max_age": 86400,
    }


def create_app(
    svc: MailService,
    cors_origins: Iterable[str] = (),
    lifespan: Callable[[FastAPI], AsyncContextManager] | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Parameters
    ----------
    svc:
        The :class:`smtp_mail_service.core.MailService` handling every route.
    cors_origins:
        Extra origins allowed by CORS besides local development hosts.
    lifespan:
        Optional lifespan context manager for startup/shutdown events.

    Returns
    -------
    FastAPI
        A configured application ready to be served by Uvicorn.
    """
    api = FastAPI(title="SMTP Mail Service", lifespan=lifespan)
    api.add_middleware(CORSMiddleware, **cors_settings(cors_origins))

    @api.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        logger.warning("Validation error on %s %s: %s", request.method, request.url.path, exc.errors())
        return JSONResponse(
            status_code=400,
            content={"code": 400, "message": "Invalid request", "error": jsonable_encoder(exc.errors())},
        )

    @api.exception_handler(MailServiceError)
    async def service_exception_handler(request: Request, exc: MailServiceError):
        status = status_for(exc)
        content: dict[str, Any] = {"code": status, "message": exc.message, "error": exc.code}
        if isinstance(exc, ValidationError):
            content["field"] = exc.field
        if isinstance(exc, TransportError):
            content["step"] = exc.step
            if exc.record is not None:
                content["data"] = jsonable_encoder(exc.record)
        return JSONResponse(status_code=status, content=content)

    @api.get("/health")
    async def health():
        """Health check endpoint for container monitoring."""
        return {
            "status": "ok" if svc.accepting else "stopping",
            "default_master_secret": svc.uses_default_key,
        }

    # ------------------------------------------------------------ SMTP profiles
    smtp = APIRouter(prefix="/api/smtp/configs", tags=["smtp"])

    @smtp.get("")
    async def list_profiles():
        return ok(await svc.list_profiles())

    @smtp.post("")
    async def create_profile(payload: ProfileCreate):
        return ok(await svc.create_profile(payload), "SMTP profile created")

    @smtp.get("/default")
    async def get_default_profile():
        return ok(await svc.get_default_profile())

    @smtp.get("/{profile_id}")
    async def get_profile(profile_id: int):
        return ok(await svc.get_profile(profile_id))

    @smtp.put("/{profile_id}")
    async def update_profile(profile_id: int, payload: ProfileUpdate):
        return ok(await svc.update_profile(profile_id, payload), "SMTP profile updated")

    @smtp.delete("/{profile_id}")
    async def delete_profile(profile_id: int):
        await svc.delete_profile(profile_id)
        return ok(message="SMTP profile deleted")

    @smtp.post("/{profile_id}/test")
    async def test_connection(profile_id: int, payload: Optional[ConnectionTestPayload] = None):
        password = payload.password if payload else None
        await svc.test_connection(profile_id, password=password)
        return ok(message="Connection test succeeded")

    @smtp.post("/{profile_id}/default")
    async def set_default_profile(profile_id: int):
        return ok(await svc.set_default_profile(profile_id), "Default SMTP profile updated")

    @smtp.post("/{profile_id}/send-test")
    async def send_test_email(profile_id: int, payload: SendTestPayload):
        return ok(await svc.send_test_email(profile_id, payload.to_email), "Test email sent")

    # -------------------------------------------------------------------- email
    email = APIRouter(prefix="/api/email", tags=["email"])

    @email.post("/send")
    async def send_email(payload: SendRequest):
        return ok(await svc.send_email(payload), "Email sent")

    # ---------------------------------------------------------------- templates
    templates = APIRouter(prefix="/api/templates", tags=["templates"])

    @templates.get("")
    async def list_templates():
        return ok(await svc.list_templates())

    @templates.post("")
    async def create_template(payload: TemplateCreate):
        return ok(await svc.create_template(payload), "Template created")

    @templates.get("/{template_id}")
    async def get_template(template_id: int):
        return ok(await svc.get_template(template_id))

    @templates.put("/{template_id}")
    async def update_template(template_id: int, payload: TemplateUpdate):
        return ok(await svc.update_template(template_id, payload), "Template updated")

    @templates.delete("/{template_id}")
    async def delete_template(template_id: int):
        await svc.delete_template(template_id)
        return ok(message="Template deleted")

    # ------------------------------------------------------------------ history
    history = APIRouter(prefix="/api/history", tags=["history"])

    @history.get("")
    async def list_history(
        page: int = Query(1),
        page_size: Optional[int] = Query(None),
        page_size_camel: Optional[int] = Query(None, alias="pageSize"),
        status: str = Query("all"),
    ):
        size = page_size_camel if page_size_camel is not None else page_size
        result = await svc.list_history(page=page, page_size=10 if size is None else size, status=status)
        return ok({**result, "pageSize": result["page_size"]})

    @history.get("/statistics")
    async def history_statistics():
        return ok(await svc.history_statistics())

    @history.get("/{history_id}")
    async def get_history(history_id: int):
        return ok(await svc.get_history(history_id))

    @history.delete("/{history_id}")
    async def delete_history(history_id: int):
        await svc.delete_history(history_id)
        return ok(message="Delivery record deleted")

    for router in (smtp, email, templates, history):
        api.include_router(router)
    return api


__all__ = ["create_app", "cors_settings", "ok", "status_for"]
