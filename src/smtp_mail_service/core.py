# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Core orchestration logic for the SMTP mail service.

This module provides the MailService class, the central coordinator of the
service. It owns:

- Dispatch: profile lookup, secret decryption, validation, MIME building,
  SMTP delivery and exactly one delivery record per attempt
- Administration of server profiles, templates and delivery history
- Lifecycle: schema initialisation on start, draining of in-flight sends
  on stop

Example:
    Sending one message::

        from smtp_mail_service.core import MailService
        from smtp_mail_service.models import SendRequest

        service = MailService(db_path="./data/smtp-mail.db", master_secret="s3cret")
        await service.start()

        record = await service.send_email(
            SendRequest(smtp_config_id=1, to=["bob@example.com"], subject="Hi", body="<p>hi</p>")
        )

        await service.stop()
"""

from __future__ import annotations

import asyncio
import html
from typing import Any

import aiosqlite
from email_validator import EmailNotValidError, validate_email

from .crypto import SecretCodec
from .errors import NotFoundError, ServiceUnavailableError, TransportError, ValidationError
from .logger import get_logger
from .message_builder import build_message
from .models import (
    AttachmentMeta,
    DeliveryRecord,
    DeliveryStatus,
    MailTemplate,
    Profile,
    ProfileCreate,
    ProfileUpdate,
    SendRequest,
    TemplateCreate,
    TemplateUpdate,
)
from .persistence import Persistence, utc_timestamp
from .settings import DEFAULT_SHUTDOWN_TIMEOUT, DEFAULT_SMTP_TIMEOUT, Settings
from .transport import SMTPTransport

HISTORY_STATUSES = ("all", "success", "failed")
DEFAULT_PAGE_SIZE = 10
TEST_EMAIL_SUBJECT = "SMTP configuration test"

PROFILE_KIND = "SMTP profile"
TEMPLATE_KIND = "Template"
HISTORY_KIND = "Delivery record"


def check_address(field: str, address: str) -> None:
    """Validate the syntax of a bare ASCII address; no DNS lookups.

    Raises:
        ValidationError: Naming ``field`` and the offending address.
    """
    try:
        validate_email(address, check_deliverability=False, allow_smtputf8=False)
    except EmailNotValidError as exc:
        raise ValidationError(field, f"Invalid {field} address {address!r}: {exc}") from exc


def _test_email_body(profile: Profile, timestamp: str) -> str:
    return (
        "<h2>SMTP configuration test</h2>"
        f"<p>This message was sent through the profile <strong>{html.escape(profile.name)}</strong> "
        f"({html.escape(profile.host)}:{profile.port}).</p>"
        f"<p>Sent at {timestamp}</p>"
    )


class MailService:
    """Mail dispatch and administration service.

    Attributes:
        persistence: Store for profiles, templates and delivery records.
        codec: Secret codec sealing stored SMTP passwords.
        transport: SMTP driver used for sends and connection tests.
        shutdown_timeout: Default bound for :meth:`stop`.
    """

    def __init__(
        self,
        *,
        db_path: str = "./data/smtp-mail.db",
        master_secret: str | None = None,
        smtp_timeout: float = DEFAULT_SMTP_TIMEOUT,
        shutdown_timeout: float = DEFAULT_SHUTDOWN_TIMEOUT,
        persistence: Persistence | None = None,
        codec: SecretCodec | None = None,
        transport: SMTPTransport | None = None,
        logger=None,
    ):
        self.logger = logger or get_logger()
        self.persistence = persistence or Persistence(db_path)
        self.codec = codec or SecretCodec(master_secret)
        self.transport = transport or SMTPTransport(timeout=smtp_timeout)
        self.shutdown_timeout = shutdown_timeout

        self._accepting = False
        self._inflight = 0
        self._idle = asyncio.Event()
        self._idle.set()

    @classmethod
    def from_settings(cls, settings: Settings) -> MailService:
        return cls(
            db_path=settings.db_path,
            master_secret=settings.master_secret,
            smtp_timeout=settings.smtp_timeout,
            shutdown_timeout=settings.shutdown_timeout,
        )

    @property
    def uses_default_key(self) -> bool:
        return self.codec.uses_default_key

    @property
    def accepting(self) -> bool:
        return self._accepting

    # ----------------------------------------------------------------- lifecycle
    async def start(self) -> None:
        """Initialise the schema and start accepting sends."""
        await self.persistence.init_db()
        self._accepting = True
        self.logger.info("Mail service started (db=%s)", self.persistence.db_path)

    async def stop(self, timeout: float | None = None) -> None:
        """Stop accepting sends and wait for in-flight ones.

        Waits at most ``timeout`` seconds (default: ``shutdown_timeout``).
        Sends still running after that are left to finish on their own.
        """
        self._accepting = False
        if self._inflight:
            bound = self.shutdown_timeout if timeout is None else timeout
            self.logger.info("Waiting up to %ss for %d in-flight send(s)", bound, self._inflight)
            try:
                await asyncio.wait_for(self._idle.wait(), timeout=bound)
            except asyncio.TimeoutError:
                self.logger.warning("Shutdown timeout reached with %d send(s) still in flight", self._inflight)
        self.logger.info("Mail service stopped")

    # ------------------------------------------------------------------ dispatch
    async def send_email(self, request: SendRequest) -> DeliveryRecord:
        """Send one message and record the attempt.

        Returns:
            The persisted delivery record of a successful send.

        Raises:
            ServiceUnavailableError: The service is stopped or stopping.
            NotFoundError: Unknown profile or template id.
            ValidationError: Missing fields or malformed addresses.
            EncodingError: An attachment is not valid base64.
            TransportError: Delivery failed; ``record`` holds the failed record.
        """
        if not self._accepting:
            raise ServiceUnavailableError("Mail service is not accepting new sends")
        self._inflight += 1
        self._idle.clear()
        try:
            return await self._dispatch(request)
        finally:
            self._inflight -= 1
            if self._inflight == 0:
                self._idle.set()

    async def _dispatch(self, request: SendRequest) -> DeliveryRecord:
        row = await self.persistence.get_profile(request.smtp_config_id)
        if row is None:
            raise NotFoundError(PROFILE_KIND, request.smtp_config_id)
        profile = Profile(**row)
        secret = self.codec.decrypt(profile.password)

        if request.template_id is not None:
            request = await self._apply_template(request)
        self._validate_request(request)

        message = build_message(profile, request)
        recipients = request.envelope_recipients()

        self.logger.info(
            "Sending mail via profile %s (%s:%s) to %d recipient(s)",
            profile.id,
            profile.host,
            profile.port,
            len(recipients),
        )
        try:
            await self.transport.send(profile, secret, recipients, message)
        except TransportError as exc:
            self.logger.error("Delivery via profile %s failed: %s", profile.id, exc)
            exc.record = await self._record(request, DeliveryStatus.FAILED, str(exc))
            raise

        record = await self._record(request, DeliveryStatus.SUCCESS, "")
        self.logger.info("Delivery via profile %s succeeded (record=%s)", profile.id, record.id)
        return record

    async def _apply_template(self, request: SendRequest) -> SendRequest:
        template = await self.get_template(request.template_id)
        return request.model_copy(
            update={
                "subject": request.subject or template.subject,
                "body": request.body or template.body,
            }
        )

    @staticmethod
    def _validate_request(request: SendRequest) -> None:
        if not request.to:
            raise ValidationError("to", "At least one recipient is required")
        if not request.subject.strip():
            raise ValidationError("subject", "Subject is required")
        if not request.body.strip():
            raise ValidationError("body", "Body is required")
        for field in ("to", "cc", "bcc"):
            for address in getattr(request, field):
                check_address(field, address)

    async def _record(self, request: SendRequest, status: DeliveryStatus, error_message: str) -> DeliveryRecord:
        now = utc_timestamp()
        record = DeliveryRecord(
            smtp_config_id=request.smtp_config_id,
            to_email=", ".join(request.to),
            cc_email=list(request.cc),
            bcc_email=list(request.bcc),
            subject=request.subject,
            body=request.body,
            attachments=[AttachmentMeta(filename=a.filename, size=len(a.content)) for a in request.attachments],
            status=status,
            error_message=error_message,
            sent_at=now,
            created_at=now,
        )
        try:
            record.id = await self.persistence.add_history(record.model_dump(mode="json", exclude={"id"}))
        except Exception:
            self.logger.exception("Failed to persist delivery record for profile %s", request.smtp_config_id)
        return record

    # ------------------------------------------------------------------ profiles
    @staticmethod
    def _public_profile(row: dict[str, Any]) -> Profile:
        return Profile(**{**row, "password": ""})

    async def _require_profile_row(self, profile_id: int) -> dict[str, Any]:
        row = await self.persistence.get_profile(profile_id)
        if row is None:
            raise NotFoundError(PROFILE_KIND, profile_id)
        return row

    async def create_profile(self, payload: ProfileCreate) -> Profile:
        check_address("from_email", payload.from_email)
        data = payload.model_dump()
        data["encryption"] = payload.encryption.value
        data["password"] = self.codec.encrypt(payload.password or "")
        profile_id = await self.persistence.add_profile(data)
        self.logger.info("Created SMTP profile %s (%s)", profile_id, payload.name)
        return await self.get_profile(profile_id)

    async def update_profile(self, profile_id: int, payload: ProfileUpdate) -> Profile:
        """Apply the fields set in ``payload``; an empty password keeps the stored one."""
        updates = payload.model_dump(exclude_unset=True)
        password = updates.pop("password", None)
        if password:
            updates["password"] = self.codec.encrypt(password)
        # username and from_name may be cleared; other columns are NOT NULL.
        updates = {k: v for k, v in updates.items() if v is not None or k in ("username", "from_name")}
        if "encryption" in updates:
            updates["encryption"] = payload.encryption.value
        if "from_email" in updates:
            check_address("from_email", updates["from_email"])
        if not await self.persistence.update_profile(profile_id, updates):
            raise NotFoundError(PROFILE_KIND, profile_id)
        self.logger.info("Updated SMTP profile %s", profile_id)
        return await self.get_profile(profile_id)

    async def delete_profile(self, profile_id: int) -> None:
        if not await self.persistence.delete_profile(profile_id):
            raise NotFoundError(PROFILE_KIND, profile_id)
        self.logger.info("Deleted SMTP profile %s", profile_id)

    async def get_profile(self, profile_id: int) -> Profile:
        return self._public_profile(await self._require_profile_row(profile_id))

    async def list_profiles(self) -> list[Profile]:
        return [self._public_profile(row) for row in await self.persistence.list_profiles()]

    async def get_default_profile(self) -> Profile:
        row = await self.persistence.get_default_profile()
        if row is None:
            raise NotFoundError(PROFILE_KIND, "default")
        return self._public_profile(row)

    async def set_default_profile(self, profile_id: int) -> Profile:
        if not await self.persistence.set_default_profile(profile_id):
            raise NotFoundError(PROFILE_KIND, profile_id)
        self.logger.info("SMTP profile %s is now the default", profile_id)
        return await self.get_profile(profile_id)

    async def test_connection(self, profile_id: int, password: str | None = None) -> None:
        """Connect, upgrade and authenticate without sending anything.

        ``password``, when given, replaces the stored secret for this test.

        Raises:
            NotFoundError: Unknown profile id.
            TransportError: The server could not be reached or rejected us.
        """
        profile = Profile(**await self._require_profile_row(profile_id))
        secret = password or self.codec.decrypt(profile.password)
        try:
            await self.transport.verify(profile, secret)
        except TransportError as exc:
            self.logger.error("Connection test for profile %s failed: %s", profile_id, exc)
            raise
        self.logger.info("Connection test for profile %s succeeded (%s:%s)", profile_id, profile.host, profile.port)

    async def send_test_email(self, profile_id: int, to_email: str) -> DeliveryRecord:
        """Send a canned HTML message through ``profile_id`` and record it."""
        check_address("to_email", to_email)
        profile = await self.get_profile(profile_id)
        request = SendRequest(
            smtp_config_id=profile_id,
            to=[to_email],
            subject=TEST_EMAIL_SUBJECT,
            body=_test_email_body(profile, utc_timestamp()),
        )
        return await self.send_email(request)

    # ----------------------------------------------------------------- templates
    async def create_template(self, payload: TemplateCreate) -> MailTemplate:
        if await self.persistence.template_name_exists(payload.name):
            raise ValidationError("name", f"Template name {payload.name!r} already exists")
        try:
            template_id = await self.persistence.add_template(payload.model_dump())
        except aiosqlite.IntegrityError as exc:
            raise ValidationError("name", f"Template name {payload.name!r} already exists") from exc
        self.logger.info("Created template %s (%s)", template_id, payload.name)
        return await self.get_template(template_id)

    async def update_template(self, template_id: int, payload: TemplateUpdate) -> MailTemplate:
        await self.get_template(template_id)
        updates = {k: v for k, v in payload.model_dump(exclude_unset=True).items() if v is not None}
        name = updates.get("name")
        if name and await self.persistence.template_name_exists(name, exclude_id=template_id):
            raise ValidationError("name", f"Template name {name!r} already exists")
        try:
            await self.persistence.update_template(template_id, updates)
        except aiosqlite.IntegrityError as exc:
            raise ValidationError("name", f"Template name {name!r} already exists") from exc
        return await self.get_template(template_id)

    async def delete_template(self, template_id: int) -> None:
        if not await self.persistence.delete_template(template_id):
            raise NotFoundError(TEMPLATE_KIND, template_id)
        self.logger.info("Deleted template %s", template_id)

    async def get_template(self, template_id: int) -> MailTemplate:
        row = await self.persistence.get_template(template_id)
        if row is None:
            raise NotFoundError(TEMPLATE_KIND, template_id)
        return MailTemplate(**row)

    async def get_template_by_name(self, name: str) -> MailTemplate:
        row = await self.persistence.get_template_by_name(name)
        if row is None:
            raise NotFoundError(TEMPLATE_KIND, name)
        return MailTemplate(**row)

    async def list_templates(self) -> list[MailTemplate]:
        return [MailTemplate(**row) for row in await self.persistence.list_templates()]

    # ------------------------------------------------------------------- history
    async def list_history(
        self, page: int = 1, page_size: int = DEFAULT_PAGE_SIZE, status: str = "all"
    ) -> dict[str, Any]:
        """Return one page of delivery records, newest first.

        ``page`` below 1 becomes 1 and ``page_size`` below 1 becomes 10.

        Returns:
            ``{"list": [...], "total": n, "page": p, "page_size": s}``
        """
        status = (status or "all").lower()
        if status not in HISTORY_STATUSES:
            raise ValidationError("status", f"status must be one of {', '.join(HISTORY_STATUSES)}")
        page = page if page >= 1 else 1
        page_size = page_size if page_size >= 1 else DEFAULT_PAGE_SIZE
        items, total = await self.persistence.list_history(
            limit=page_size,
            offset=(page - 1) * page_size,
            status=None if status == "all" else status,
        )
        return {
            "list": [DeliveryRecord(**item) for item in items],
            "total": total,
            "page": page,
            "page_size": page_size,
        }

    async def get_history(self, history_id: int) -> DeliveryRecord:
        row = await self.persistence.get_history(history_id)
        if row is None:
            raise NotFoundError(HISTORY_KIND, history_id)
        return DeliveryRecord(**row)

    async def delete_history(self, history_id: int) -> None:
        if not await self.persistence.delete_history(history_id):
            raise NotFoundError(HISTORY_KIND, history_id)

    async def history_statistics(self) -> dict[str, int]:
        counts = await self.persistence.count_history_by_status()
        success = counts.get(DeliveryStatus.SUCCESS.value, 0)
        failed = counts.get(DeliveryStatus.FAILED.value, 0)
        return {"total": sum(counts.values()), "success": success, "failed": failed}


__all__ = ["MailService", "check_address"]
