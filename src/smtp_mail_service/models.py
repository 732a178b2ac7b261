# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Pydantic models for the SMTP mail service.

This module defines the data models used for validation, serialization and
type safety across the API, the dispatch pipeline and the CLI.

Models:
    - Encryption: Transport security mode of a server profile
    - ProfileCreate / ProfileUpdate / Profile: SMTP server profiles
    - AttachmentPayload / SendRequest: Ephemeral send requests
    - TemplateCreate / TemplateUpdate / MailTemplate: Mail templates
    - AttachmentMeta / DeliveryRecord: Delivery history entries
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Encryption(str, Enum):
    """Transport security used when connecting to an SMTP server.

    Attributes:
        NONE: Plaintext SMTP.
        TLS: Implicit TLS, the handshake happens on connect (commonly port 465).
        STARTTLS: Plaintext connection upgraded after EHLO (commonly port 587).
    """

    NONE = "none"
    TLS = "tls"
    STARTTLS = "starttls"


class DeliveryStatus(str, Enum):
    """Outcome of a single send attempt."""

    SUCCESS = "success"
    FAILED = "failed"


def _split_addresses(value: Any) -> Any:
    """Accept a comma separated string wherever a list of addresses is expected."""
    if value is None:
        return []
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    return value


# --------------------------------------------------------------------- profiles

class ProfileCreate(BaseModel):
    """Payload for creating an SMTP server profile."""

    model_config = ConfigDict(extra="forbid")

    name: Annotated[str, Field(min_length=1, max_length=100, description="Display name")]
    host: Annotated[str, Field(min_length=1, max_length=255, description="SMTP server host")]
    port: Annotated[int, Field(ge=1, le=65535, description="SMTP server port")]
    username: Annotated[str | None, Field(default=None, max_length=255)]
    password: Annotated[str | None, Field(default=None, description="Plaintext secret, encrypted at rest")]
    from_email: Annotated[str, Field(min_length=3, max_length=255, description="Envelope and From address")]
    from_name: Annotated[str | None, Field(default=None, max_length=100)]
    encryption: Annotated[Encryption, Field(default=Encryption.NONE)]
    is_default: Annotated[bool, Field(default=False)]


class ProfileUpdate(BaseModel):
    """Payload for updating a profile. Only provided fields change.

    An empty or missing password keeps the stored secret.
    """

    model_config = ConfigDict(extra="forbid")

    name: Annotated[str | None, Field(default=None, min_length=1, max_length=100)]
    host: Annotated[str | None, Field(default=None, min_length=1, max_length=255)]
    port: Annotated[int | None, Field(default=None, ge=1, le=65535)]
    username: Annotated[str | None, Field(default=None, max_length=255)]
    password: Annotated[str | None, Field(default=None)]
    from_email: Annotated[str | None, Field(default=None, min_length=3, max_length=255)]
    from_name: Annotated[str | None, Field(default=None, max_length=100)]
    encryption: Annotated[Encryption | None, Field(default=None)]
    is_default: Annotated[bool | None, Field(default=None)]


class Profile(BaseModel):
    """A stored SMTP server profile.

    ``password`` holds the sealed secret when loaded for dispatch and is
    blanked on every path that returns a profile to a caller.
    """

    id: int
    name: str
    host: str
    port: int
    username: str | None = None
    password: str = ""
    from_email: str
    from_name: str | None = None
    encryption: Encryption = Encryption.NONE
    is_default: bool = False
    created_at: str | None = None
    updated_at: str | None = None

    @field_validator("password", mode="before")
    @classmethod
    def _none_password(cls, v: Any) -> Any:
        return v or ""


# ---------------------------------------------------------------- send request

class AttachmentPayload(BaseModel):
    """Attachment submitted inline with a send request."""

    model_config = ConfigDict(extra="forbid")

    filename: Annotated[str, Field(min_length=1, max_length=255)]
    content: Annotated[str, Field(min_length=1, description="Base64 encoded file content")]
    content_type: Annotated[str | None, Field(default=None, description="MIME type, default application/octet-stream")]


class SendRequest(BaseModel):
    """Ephemeral request to send one message through a stored profile.

    ``subject`` and ``body`` may be left empty when ``template_id`` is given;
    the template fills them in before validation.
    """

    model_config = ConfigDict(extra="forbid")

    smtp_config_id: Annotated[int, Field(ge=1)]
    to: Annotated[list[str], Field(default_factory=list)]
    cc: Annotated[list[str], Field(default_factory=list)]
    bcc: Annotated[list[str], Field(default_factory=list)]
    subject: Annotated[str, Field(default="")]
    body: Annotated[str, Field(default="", description="HTML body")]
    attachments: Annotated[list[AttachmentPayload], Field(default_factory=list)]
    template_id: Annotated[int | None, Field(default=None)]

    @field_validator("to", "cc", "bcc", mode="before")
    @classmethod
    def _addresses(cls, v: Any) -> Any:
        return _split_addresses(v)

    def envelope_recipients(self) -> list[str]:
        """To+Cc+Bcc merged for RCPT TO, duplicates removed, order kept."""
        seen: dict[str, None] = {}
        for addr in (*self.to, *self.cc, *self.bcc):
            seen.setdefault(addr, None)
        return list(seen)


# -------------------------------------------------------------------- templates

class TemplateCreate(BaseModel):
    """Payload for creating a mail template."""

    model_config = ConfigDict(extra="forbid")

    name: Annotated[str, Field(min_length=1, max_length=100)]
    subject: Annotated[str, Field(min_length=1, max_length=255)]
    body: Annotated[str, Field(min_length=1, description="HTML body")]


class TemplateUpdate(BaseModel):
    """Payload for updating a mail template. Only provided fields change."""

    model_config = ConfigDict(extra="forbid")

    name: Annotated[str | None, Field(default=None, min_length=1, max_length=100)]
    subject: Annotated[str | None, Field(default=None, min_length=1, max_length=255)]
    body: Annotated[str | None, Field(default=None, min_length=1)]


class MailTemplate(BaseModel):
    """A stored mail template."""

    id: int
    name: str
    subject: str
    body: str
    created_at: str | None = None
    updated_at: str | None = None


# --------------------------------------------------------------------- history

class AttachmentMeta(BaseModel):
    """Attachment metadata retained in history; content is never stored."""

    filename: str
    size: int


class DeliveryRecord(BaseModel):
    """Durable audit entry for one send attempt."""

    id: int | None = None
    smtp_config_id: int
    to_email: str
    cc_email: list[str] = Field(default_factory=list)
    bcc_email: list[str] = Field(default_factory=list)
    subject: str
    body: str
    attachments: list[AttachmentMeta] = Field(default_factory=list)
    status: DeliveryStatus
    error_message: str = ""
    sent_at: str
    created_at: str | None = None


# ------------------------------------------------------------------ API extras

class ConnectionTestPayload(BaseModel):
    """Optional secret overriding the stored one for a connection test."""

    password: str | None = None


class SendTestPayload(BaseModel):
    """Recipient of a canned test message."""

    to_email: Annotated[str, Field(min_length=3)]


__all__ = [
    "AttachmentMeta",
    "AttachmentPayload",
    "ConnectionTestPayload",
    "DeliveryRecord",
    "DeliveryStatus",
    "Encryption",
    "MailTemplate",
    "Profile",
    "ProfileCreate",
    "ProfileUpdate",
    "SendRequest",
    "SendTestPayload",
    "TemplateCreate",
    "TemplateUpdate",
]
