# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Exception hierarchy shared by the dispatch pipeline and the HTTP layer.

Every error carries a machine readable ``code`` so the API can map it to a
status without string matching. ``TransportError`` additionally names the
SMTP step that failed and may carry the DeliveryRecord persisted for the
failed attempt.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .models import DeliveryRecord


class MailServiceError(Exception):
    """Base class for all errors raised by the mail service."""

    code = "mail_service_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(MailServiceError):
    """A request field is missing or malformed."""

    code = "validation_error"

    def __init__(self, field: str, message: str):
        super().__init__(message)
        self.field = field


class NotFoundError(MailServiceError):
    """An unknown profile, template or delivery record id was requested."""

    code = "not_found"

    def __init__(self, kind: str, ident: Any):
        super().__init__(f"{kind} '{ident}' not found")
        self.kind = kind
        self.ident = ident


class EncodingError(MailServiceError):
    """An attachment payload is not valid base64."""

    code = "encoding_error"


class TransportError(MailServiceError):
    """An SMTP step (connect, upgrade, auth, envelope or data) failed."""

    code = "transport_error"

    def __init__(self, step: str, reason: str):
        super().__init__(f"{step} failed: {reason}")
        self.step = step
        self.reason = reason
        self.record: DeliveryRecord | None = None


class UnsupportedByServerError(TransportError):
    """The server does not advertise a capability the profile requires."""

    code = "unsupported_by_server"


class ServiceUnavailableError(MailServiceError):
    """The service is shutting down and no longer accepts sends."""

    code = "service_unavailable"


__all__ = [
    "EncodingError",
    "MailServiceError",
    "NotFoundError",
    "ServiceUnavailableError",
    "TransportError",
    "UnsupportedByServerError",
    "ValidationError",
]
