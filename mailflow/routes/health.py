from datetime import datetime, timezone

import asyncio
import logging

from fastapi import APIRouter, Depends, HTTPException

from mailflow.deps import get_mailer, get_service
from mailflow.errors import MailError
from mailflow.mailer import MailDispatcher
from mailflow.schemas import TestEmailRequest
from mailflow.service import SchedulingService
from mailflow.utils import validate_email

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["health"])

TEST_SUBJECT = "Test Email from Flow Email Automator"
TEST_BODY = "<h2>Test Email</h2><p>This is a test email from your Flow Email Automator application.</p>"


@router.get("/health")
async def health(service: SchedulingService = Depends(get_service)):
    return {
        "status":             "Server is running",
        "databaseConnected":  await service.is_store_reachable(),
        "schedulerAvailable": service.is_scheduler_available(),
    }


@router.get("/diagnose-email")
async def diagnose_email(
    service: SchedulingService = Depends(get_service),
    mailer: MailDispatcher = Depends(get_mailer),
):
    scheduler = service.scheduler
    diagnostics = {
        "email":     await asyncio.to_thread(mailer.diagnose),
        "scheduler": {**scheduler.status(), "jobsInQueue": 0, "pendingJobs": 0},
        "database":  {"connected": False},
    }
    try:
        stats = await scheduler.stats()
        diagnostics["database"]["connected"] = True
        diagnostics["scheduler"]["jobsInQueue"] = stats["total"]
        diagnostics["scheduler"]["pendingJobs"] = stats["due"]
    except Exception as exc:
        logger.error("Diagnostic database check failed: %s", exc)

    return {
        "timestamp":   datetime.now(timezone.utc).isoformat(),
        "diagnostics": diagnostics,
    }


@router.post("/test-email")
async def send_test_email(data: TestEmailRequest, mailer: MailDispatcher = Depends(get_mailer)):
    if not validate_email(data.to):
        raise HTTPException(status_code=400, detail="Email recipient is required")
    try:
        message_id = await asyncio.to_thread(mailer.send, data.to, TEST_SUBJECT, TEST_BODY)
    except MailError as exc:
        raise HTTPException(status_code=500, detail=f"Failed to send test email: {exc}")
    return {
        "success":   True,
        "messageId": message_id,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
