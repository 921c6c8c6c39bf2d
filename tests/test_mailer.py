import pytest

from mailflow.config import Settings
from mailflow.errors import MailDeliveryError, MailVerificationError
from mailflow.mailer import MailDispatcher, render_template


def _parts(msg):
    return {part.get_content_type(): part.get_payload() for part in msg.get_payload()}


def test_render_template_fills_placeholders():
    assert render_template("Hi {{ email }}", {"email": "a@example.com"}) == "Hi a@example.com"


def test_render_template_falls_back_on_unknown_placeholder():
    assert render_template("Hi {{ first_name }}", {"email": "a@example.com"}) == "Hi {{ first_name }}"


def test_verify_uses_starttls_login_and_noop(mailer, smtp):
    mailer.verify()
    assert smtp.hosts == [("smtp.test", 587)]
    assert smtp.calls == ["starttls", "login", "noop"]


def test_secure_transport_skips_starttls(config, smtp):
    config.SMTP_SECURE = True
    config.SMTP_PORT = 465
    MailDispatcher(config, smtp_factory=None, smtp_ssl_factory=smtp).verify()
    assert smtp.hosts == [("smtp.test", 465)]
    assert "starttls" not in smtp.calls


def test_verify_reports_login_failure(mailer, smtp):
    smtp.fail_on.add("login")
    with pytest.raises(MailVerificationError):
        mailer.verify()


def test_verify_reports_rejected_noop(mailer, smtp):
    smtp.noop_code = 421
    with pytest.raises(MailVerificationError):
        mailer.verify()


def test_verify_reports_unreachable_server(mailer, smtp):
    smtp.fail_on.add("connect")
    with pytest.raises(MailVerificationError):
        mailer.verify()


def test_unconfigured_transport_cannot_verify_or_send(smtp):
    mailer = MailDispatcher(Settings(SMTP_USER="", SMTP_PASSWORD=""), smtp_factory=smtp)
    assert mailer.configured is False
    with pytest.raises(MailVerificationError):
        mailer.verify()
    with pytest.raises(MailDeliveryError):
        mailer.send("a@example.com", "Hi", "Body")
    assert smtp.hosts == []


def test_send_builds_multipart_message(mailer, smtp):
    message_id = mailer.send(
        "lead@example.com", "Hello {{ email }}", "Welcome {{ email }}", {"email": "lead@example.com"}
    )

    assert len(smtp.sent) == 1
    msg = smtp.sent[0]
    assert msg["Message-ID"] == message_id
    assert msg["From"] == "bot@example.com"
    assert msg["To"] == "lead@example.com"
    assert msg["Subject"] == "Hello lead@example.com"
    assert msg["Bcc"] is None

    parts = _parts(msg)
    assert parts["text/html"] == "<div>Welcome lead@example.com</div>"
    assert "Welcome lead@example.com" in parts["text/plain"]
    assert "<div>" not in parts["text/plain"]


def test_html_body_is_kept_as_is(mailer, smtp):
    mailer.send("lead@example.com", "Hi", "<p>Already <b>html</b></p>")
    parts = _parts(smtp.sent[0])
    assert parts["text/html"] == "<p>Already <b>html</b></p>"
    assert "**html**" in parts["text/plain"]


def test_bcc_is_added_when_configured(config, smtp):
    config.SMTP_BCC = "manager@example.com"
    MailDispatcher(config, smtp_factory=smtp).send("lead@example.com", "Hi", "Body")
    assert smtp.sent[0]["Bcc"] == "manager@example.com"


def test_failed_send_reloads_transport(mailer, smtp):
    smtp.fail_on.add("send")
    before = mailer._transport
    with pytest.raises(MailDeliveryError):
        mailer.send("lead@example.com", "Hi", "Body")
    assert mailer.configured
    assert mailer._transport is not before
    assert smtp.sent == []


def test_diagnose_reports_settings_and_verification(mailer, smtp):
    report = mailer.diagnose()
    assert report["configured"] is True
    assert report["username"] == "Set"
    assert report["verifyResult"] == {"success": True}

    smtp.fail_on.add("login")
    assert mailer.diagnose()["verifyResult"]["success"] is False
