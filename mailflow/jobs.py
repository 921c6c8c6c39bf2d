# mailflow/jobs.py
# Job handlers registered on the scheduler.

import asyncio
import logging
from typing import Any, Dict

from mailflow.mailer import MailDispatcher
from mailflow.scheduler import JobScheduler
from mailflow.utils import anonymize_email

logger = logging.getLogger(__name__)

SEND_EMAIL_JOB = "send email"


def make_send_email_handler(mailer: MailDispatcher):
    async def send_email_job(data: Dict[str, Any]) -> None:
        to = data["to"]
        subject = data.get("subject") or "No Subject"
        body = data.get("body") or ""
        logger.info("Attempting to send email to %s with subject %r", anonymize_email(to), subject)

        # Raising keeps the job leased until the health monitor releases it
        await asyncio.to_thread(mailer.verify)
        message_id = await asyncio.to_thread(mailer.send, to, subject, body, {"email": to})
        logger.info("Email sent: %s by user %s", message_id, data.get("userId"))

    return send_email_job


def register_jobs(scheduler: JobScheduler, mailer: MailDispatcher) -> None:
    scheduler.define(SEND_EMAIL_JOB, make_send_email_handler(mailer))
