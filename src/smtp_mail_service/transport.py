# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""SMTP transport driver built on aiosmtplib.

One connection is opened per send and released before returning. The
session always follows the same sequence::

    connect -> [starttls] -> [auth] -> MAIL FROM -> RCPT TO (each) -> DATA -> QUIT

Only the connect and upgrade steps depend on the profile's encryption mode:

- ``none``: plain SMTP.
- ``tls``: implicit TLS, the handshake happens on connect (typically port 465).
- ``starttls``: plain connect and EHLO, then an in-session upgrade. Servers
  that do not advertise STARTTLS are rejected before any credentials or
  message data are sent.

Certificates are always verified against the profile host.

Every step runs under the same deadline. The first failing step aborts the
session with a :class:`~smtp_mail_service.errors.TransportError` naming it.
There are no retries.
"""

from __future__ import annotations

import asyncio
import ssl
from typing import Any, Awaitable, Iterable

import aiosmtplib

from .errors import TransportError, UnsupportedByServerError
from .logger import get_logger
from .models import Encryption, Profile

DEFAULT_TIMEOUT = 30.0

logger = get_logger("Transport")


def _describe(exc: BaseException) -> str:
    """Render an SMTP or socket failure as a short human readable reason."""
    if isinstance(exc, aiosmtplib.SMTPResponseException):
        return f"{exc.code} {exc.message}".strip()
    text = str(exc)
    return text or exc.__class__.__name__


class SMTPTransport:
    """Deliver pre-built messages through a single SMTP session per call.

    Attributes:
        timeout: Deadline in seconds applied to each protocol step.
        tls_context: SSL context used for implicit TLS and STARTTLS. Defaults
            to ``ssl.create_default_context()``, which verifies certificates
            and host names.
    """

    def __init__(self, timeout: float = DEFAULT_TIMEOUT, tls_context: ssl.SSLContext | None = None):
        self.timeout = timeout
        self.tls_context = tls_context

    def _context(self) -> ssl.SSLContext:
        return self.tls_context or ssl.create_default_context()

    def _client(self, profile: Profile, context: ssl.SSLContext) -> aiosmtplib.SMTP:
        # start_tls=False: the upgrade is driven explicitly so a missing
        # STARTTLS capability is detected instead of silently skipped.
        return aiosmtplib.SMTP(
            hostname=profile.host,
            port=profile.port,
            use_tls=profile.encryption == Encryption.TLS,
            start_tls=False,
            tls_context=context,
            timeout=self.timeout,
        )

    async def _step(self, step: str, awaitable: Awaitable[Any]) -> Any:
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            raise TransportError(step, f"timed out after {self.timeout:g}s") from exc
        except (aiosmtplib.SMTPException, OSError) as exc:
            raise TransportError(step, _describe(exc)) from exc
        except UnicodeEncodeError as exc:
            raise TransportError(step, f"server does not accept non-ASCII addresses ({exc.object!r})") from exc

    async def _open(self, smtp: aiosmtplib.SMTP, profile: Profile, secret: str, context: ssl.SSLContext) -> None:
        await self._step("connect", smtp.connect())
        if profile.encryption == Encryption.STARTTLS:
            await self._step("connect", smtp.ehlo())
            if not smtp.supports_extension("starttls"):
                raise UnsupportedByServerError(
                    "starttls", f"{profile.host}:{profile.port} does not advertise STARTTLS"
                )
            await self._step("starttls", smtp.starttls(server_hostname=profile.host, tls_context=context))
        if profile.username and secret:
            await self._step("auth", smtp.login(profile.username, secret))

    async def _release(self, smtp: aiosmtplib.SMTP) -> None:
        try:
            await asyncio.wait_for(smtp.quit(), timeout=self.timeout)
        except (asyncio.TimeoutError, aiosmtplib.SMTPException, OSError) as exc:
            logger.debug("QUIT failed (%s), closing connection", _describe(exc))
            smtp.close()

    async def send(self, profile: Profile, secret: str, recipients: Iterable[str], message: bytes) -> None:
        """Relay ``message`` to every address in ``recipients``.

        Args:
            profile: Server profile; ``from_email`` is the envelope sender.
            secret: Decrypted SMTP password, empty for anonymous relays.
            recipients: Envelope recipients, already merged and de-duplicated.
            message: Wire-ready message bytes.

        Raises:
            TransportError: A step failed or exceeded the deadline.
            UnsupportedByServerError: STARTTLS required but not advertised.
        """
        recipients = list(recipients)
        context = self._context()
        smtp = self._client(profile, context)
        logger.debug(
            "Opening %s session to %s:%s for %d recipient(s)",
            profile.encryption.value,
            profile.host,
            profile.port,
            len(recipients),
        )
        try:
            await self._open(smtp, profile, secret, context)
            await self._step("mail from", smtp.mail(profile.from_email))
            for addr in recipients:
                await self._step(f"rcpt to {addr}", smtp.rcpt(addr))
            await self._step("data", smtp.data(message))
        finally:
            await self._release(smtp)

    async def verify(self, profile: Profile, secret: str) -> None:
        """Check that the server accepts a connection and the credentials.

        Runs connect, upgrade and auth only. Nothing is sent.
        """
        context = self._context()
        smtp = self._client(profile, context)
        try:
            await self._open(smtp, profile, secret, context)
        finally:
            await self._release(smtp)


__all__ = ["DEFAULT_TIMEOUT", "SMTPTransport"]
