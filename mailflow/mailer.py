# mailflow/mailer.py
# 📄 SMTP dispatch: multipart/alternative emails with Jinja2 {{placeholders}}

import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import make_msgid
from typing import Any, Callable, Dict, Optional

import html2text
from jinja2 import Template, StrictUndefined
from jinja2.exceptions import UndefinedError

from mailflow.config import Settings, settings as default_settings
from mailflow.errors import MailDeliveryError, MailVerificationError
from mailflow.utils import anonymize_email

logger = logging.getLogger(__name__)

SMTPFactory = Callable[..., smtplib.SMTP]


def render_template(text: str, context: Dict[str, Any]) -> str:
    """
    Replace {{placeholders}} using Jinja2 and the recipient context.
    """
    try:
        template = Template(text, undefined=StrictUndefined)
        return template.render(**context)
    except UndefinedError as e:
        logger.warning("Template rendering error: %s", e)
        return text  # fallback


def _html_body(body: str) -> str:
    stripped = body.lstrip()
    return body if stripped.startswith("<") else f"<div>{body}</div>"


class MailDispatcher:
    """
    Thin wrapper over an SMTP transport.

    Connection settings are snapshotted by ``initialize()`` and reloaded after
    every failed send, so fixed credentials are picked up without a restart.
    """

    def __init__(
        self,
        config: Optional[Settings] = None,
        smtp_factory: SMTPFactory = smtplib.SMTP,
        smtp_ssl_factory: SMTPFactory = smtplib.SMTP_SSL,
    ):
        self.config = config or default_settings
        self._smtp_factory = smtp_factory
        self._smtp_ssl_factory = smtp_ssl_factory
        self._transport: Optional[Dict[str, Any]] = None
        self.initialize()

    # ── Transport ───────────────────────────────────────────────────────────────
    def initialize(self) -> bool:
        cfg = self.config
        if not cfg.smtp_configured:
            logger.error("SMTP_USER or SMTP_PASSWORD is not set in environment variables")
            self._transport = None
            return False
        self._transport = {
            "host":     cfg.SMTP_SERVER,
            "port":     cfg.SMTP_PORT,
            "secure":   cfg.SMTP_SECURE,
            "user":     cfg.SMTP_USER,
            "password": cfg.SMTP_PASSWORD,
            "timeout":  cfg.SMTP_TIMEOUT,
            "bcc":      cfg.SMTP_BCC,
        }
        logger.info("Setting up email transporter with %s via %s", cfg.SMTP_USER, cfg.SMTP_SERVER)
        return True

    @property
    def configured(self) -> bool:
        return self._transport is not None

    def _connect(self) -> smtplib.SMTP:
        t = self._transport
        if t["secure"]:
            server = self._smtp_ssl_factory(t["host"], t["port"], timeout=t["timeout"])
        else:
            server = self._smtp_factory(t["host"], t["port"], timeout=t["timeout"])
        try:
            if not t["secure"]:
                server.starttls()
            server.login(t["user"], t["password"])
        except Exception:
            server.close()
            raise
        return server

    def verify(self) -> None:
        if not self.configured and not self.initialize():
            raise MailVerificationError("Failed to initialize email transporter")
        try:
            with self._connect() as server:
                code, _ = server.noop()
            if code != 250:
                raise smtplib.SMTPResponseException(code, b"NOOP rejected")
        except (smtplib.SMTPException, OSError) as e:
            logger.error("Transporter verification failed: %s", e)
            raise MailVerificationError(str(e)) from e
        logger.debug("Transporter is ready to send messages")

    # ── Sending ─────────────────────────────────────────────────────────────────
    def build_message(self, to_email: str, subject: str, body: str) -> MIMEMultipart:
        html = _html_body(body)
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = self._transport["user"]
        msg["To"] = to_email
        if self._transport["bcc"]:
            msg["Bcc"] = self._transport["bcc"]
        msg["Message-ID"] = make_msgid()

        # plain-text version derived from the HTML part
        msg.attach(MIMEText(html2text.html2text(html), "plain"))
        msg.attach(MIMEText(html, "html"))
        return msg

    def send(
        self,
        to_email: str,
        subject: str,
        body: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> str:
        """
        Send one message and return its Message-ID. Renders subject/body via
        Jinja2 when a context is given.
        """
        if not self.configured and not self.initialize():
            raise MailDeliveryError("Email transporter is not configured")

        if context:
            subject = render_template(subject, context)
            body = render_template(body, context)
        msg = self.build_message(to_email, subject, body)

        try:
            with self._connect() as server:
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.error("Failed to send email to %s: %s", anonymize_email(to_email), e)
            logger.info("Attempting to reinitialize email transporter...")
            self.initialize()
            raise MailDeliveryError(str(e)) from e

        logger.info("Email sent to %s: %s", anonymize_email(to_email), msg["Message-ID"])
        return msg["Message-ID"]

    # ── Diagnostics ─────────────────────────────────────────────────────────────
    def diagnose(self) -> Dict[str, Any]:
        cfg = self.config
        report: Dict[str, Any] = {
            "configured":   cfg.smtp_configured,
            "username":     "Set" if cfg.SMTP_USER else "Not Set",
            "password":     "Set" if cfg.SMTP_PASSWORD else "Not Set",
            "host":         cfg.SMTP_SERVER or "Not Set",
            "port":         cfg.SMTP_PORT,
            "verifyResult": None,
        }
        if cfg.smtp_configured:
            try:
                self.verify()
                report["verifyResult"] = {"success": True}
            except MailVerificationError as e:
                report["verifyResult"] = {"success": False, "error": str(e)}
        return report
