"""End-to-end dispatch scenarios through MailService and SMTPTransport.

The aiosmtplib client is replaced by a scripted double so the STARTTLS
sequence can be asserted without certificates.
"""

import aiosmtplib
import pytest

from smtp_mail_service.core import MailService
from smtp_mail_service.errors import TransportError, UnsupportedByServerError
from smtp_mail_service.models import DeliveryStatus, Encryption, ProfileCreate, SendRequest


class ScriptedSMTP:
    def __init__(self, script, **kwargs):
        self.kwargs = kwargs
        self.script = script
        self.log: list[str] = []
        self.message: bytes | None = None

    async def connect(self):
        self.log.append("CONNECT")

    async def ehlo(self):
        self.log.append("EHLO")

    def supports_extension(self, name):
        return name.lower() in self.script.get("extensions", {"starttls", "auth"})

    async def starttls(self, server_hostname=None, tls_context=None):
        self.log.append("STARTTLS")

    async def login(self, username, password):
        self.log.append(f"AUTH {username}:{password}")

    async def mail(self, sender):
        self.log.append(f"MAIL FROM:<{sender}>")

    async def rcpt(self, recipient):
        self.log.append(f"RCPT TO:<{recipient}>")
        if recipient in self.script.get("reject", ()):
            raise aiosmtplib.SMTPRecipientRefused(550, "No such user", recipient)

    async def data(self, message):
        self.log.append("DATA")
        self.message = message

    async def quit(self):
        self.log.append("QUIT")

    def close(self):
        self.log.append("CLOSE")


@pytest.fixture
def script():
    return {}


@pytest.fixture
def sessions(monkeypatch, script):
    created: list[ScriptedSMTP] = []

    def factory(**kwargs):
        smtp = ScriptedSMTP(script, **kwargs)
        created.append(smtp)
        return smtp

    monkeypatch.setattr("smtp_mail_service.transport.aiosmtplib.SMTP", factory)
    return created


async def make_service(tmp_path):
    svc = MailService(db_path=str(tmp_path / "e2e.db"), master_secret="e2e-master")
    await svc.start()
    profile = await svc.create_profile(
        ProfileCreate(
            name="example",
            host="smtp.example.com",
            port=587,
            username="u",
            password="p",
            from_email="a@x.com",
            encryption=Encryption.STARTTLS,
        )
    )
    return svc, profile


@pytest.mark.asyncio
async def test_starttls_send_success(tmp_path, sessions):
    svc, profile = await make_service(tmp_path)

    record = await svc.send_email(
        SendRequest(smtp_config_id=profile.id, to=["b@y.com"], subject="Hi", body="<p>hi</p>")
    )

    smtp = sessions[0]
    assert smtp.kwargs["hostname"] == "smtp.example.com"
    assert smtp.kwargs["port"] == 587
    assert smtp.log == [
        "CONNECT",
        "EHLO",
        "STARTTLS",
        "AUTH u:p",
        "MAIL FROM:<a@x.com>",
        "RCPT TO:<b@y.com>",
        "DATA",
        "QUIT",
    ]
    assert b"Content-Type: text/html; charset=UTF-8" in smtp.message
    assert b"<p>hi</p>" in smtp.message

    assert record.status == DeliveryStatus.SUCCESS
    assert record.to_email == "b@y.com"
    assert record.error_message == ""
    history = await svc.list_history()
    assert history["total"] == 1


@pytest.mark.asyncio
async def test_rcpt_rejection_records_failure(tmp_path, sessions, script):
    script["reject"] = {"c@y.com"}
    svc, profile = await make_service(tmp_path)

    with pytest.raises(TransportError) as exc_info:
        await svc.send_email(
            SendRequest(smtp_config_id=profile.id, to=["b@y.com", "c@y.com"], subject="Hi", body="<p>hi</p>")
        )

    err = exc_info.value
    assert err.step == "rcpt to c@y.com"
    assert "DATA" not in sessions[0].log
    assert sessions[0].log[-1] == "QUIT"

    history = await svc.list_history()
    assert history["total"] == 1
    stored = history["list"][0]
    assert stored.status == DeliveryStatus.FAILED
    assert "rcpt to c@y.com" in stored.error_message
    assert stored.to_email == "b@y.com, c@y.com"


@pytest.mark.asyncio
async def test_missing_starttls_never_authenticates(tmp_path, sessions, script):
    script["extensions"] = {"auth"}
    svc, profile = await make_service(tmp_path)

    with pytest.raises(UnsupportedByServerError):
        await svc.send_email(
            SendRequest(smtp_config_id=profile.id, to=["b@y.com"], subject="Hi", body="<p>hi</p>")
        )

    log = sessions[0].log
    assert not any(line.startswith("AUTH") for line in log)
    assert "DATA" not in log
    assert (await svc.history_statistics())["failed"] == 1
