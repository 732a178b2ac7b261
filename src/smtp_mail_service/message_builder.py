# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""MIME message construction for outgoing mail.

Turns a :class:`~smtp_mail_service.models.SendRequest` into the exact byte
stream relayed after ``DATA``. Output uses CRLF line endings.

Without attachments the message is a single ``text/html; charset=UTF-8``
part whose body is the HTML as submitted (8bit). With attachments it becomes
``multipart/mixed``: the HTML part first, then one base64 part per
attachment.

Bcc addresses never appear in headers; they only reach the SMTP envelope.
"""

from __future__ import annotations

import base64
import binascii
from datetime import datetime
from email import policy
from email.message import EmailMessage
from email.utils import format_datetime, formataddr

from .errors import EncodingError, ValidationError
from .models import AttachmentPayload, Profile, SendRequest

HTML_CONTENT_TYPE = "text/html; charset=UTF-8"
DEFAULT_ATTACHMENT_TYPE = "application/octet-stream"

# CRLF line endings, 78 column folding, 8bit bodies allowed.
SMTP_POLICY = policy.SMTP


def format_sender(profile: Profile) -> str:
    """Return ``"Name <address>"`` when a display name is set, else the address."""
    if profile.from_name:
        return formataddr((profile.from_name, profile.from_email))
    return profile.from_email


def decode_attachment(attachment: AttachmentPayload) -> bytes:
    """Decode the submitted base64 content strictly.

    Line breaks and other whitespace are ignored, any other non-alphabet
    character or bad padding raises :class:`EncodingError`.
    """
    compact = "".join(attachment.content.split())
    try:
        return base64.b64decode(compact, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise EncodingError(f"Attachment {attachment.filename!r} is not valid base64: {exc}") from exc


def _split_content_type(value: str | None) -> tuple[str, str, dict[str, str]]:
    """Split ``type/subtype; key=value`` into its parts.

    Missing or malformed values fall back to ``application/octet-stream``.
    """
    raw = (value or "").strip() or DEFAULT_ATTACHMENT_TYPE
    mime, *param_parts = [part.strip() for part in raw.split(";")]
    if mime.count("/") != 1 or not all(mime.split("/")):
        mime, param_parts = DEFAULT_ATTACHMENT_TYPE, []
    maintype, subtype = mime.lower().split("/")
    params: dict[str, str] = {}
    for item in param_parts:
        key, sep, val = item.partition("=")
        if sep and key.strip():
            params[key.strip().lower()] = val.strip().strip('"')
    return maintype, subtype, params


def build_message(profile: Profile, request: SendRequest, *, now: datetime | None = None) -> bytes:
    """Build the wire-ready message for ``request`` sent through ``profile``.

    Only the Date header and the multipart boundary vary between two calls
    with identical inputs.

    Raises:
        EncodingError: An attachment's content is not valid base64.
        ValidationError: A header value would contain CR or LF.
    """
    payloads = [(att, decode_attachment(att)) for att in request.attachments]

    msg = EmailMessage(policy=SMTP_POLICY)
    try:
        msg["From"] = format_sender(profile)
        msg["To"] = ", ".join(request.to)
        if request.cc:
            msg["Cc"] = ", ".join(request.cc)
        msg["Subject"] = request.subject
    except ValueError as exc:
        raise ValidationError("headers", f"Invalid header value: {exc}") from exc
    msg["Date"] = format_datetime((now or datetime.now()).astimezone())
    msg["MIME-Version"] = "1.0"

    msg.set_content(request.body, subtype="html", charset="utf-8", cte="8bit")
    msg.replace_header("Content-Type", HTML_CONTENT_TYPE)

    for att, content in payloads:
        maintype, subtype, params = _split_content_type(att.content_type)
        try:
            msg.add_attachment(
                content,
                maintype=maintype,
                subtype=subtype,
                filename=att.filename,
                params=params or None,
            )
        except ValueError as exc:
            raise ValidationError("attachments", f"Invalid attachment {att.filename!r}: {exc}") from exc

    return msg.as_bytes()


__all__ = [
    "DEFAULT_ATTACHMENT_TYPE",
    "HTML_CONTENT_TYPE",
    "build_message",
    "decode_attachment",
    "format_sender",
]
