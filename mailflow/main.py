# 📄 mailflow/main.py  – FastAPI app: scheduling API, job introspection, lifecycle

import asyncio
import logging
import sys
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import APIRouter, FastAPI, HTTPException, Depends, Request, status
from fastapi.responses import JSONResponse

from mailflow import crud
from mailflow.config import Settings, settings as default_settings
from mailflow.database import ConnectionManager
from mailflow.deps import get_scheduler, get_service, get_user_id
from mailflow.dev import router as dev_router
from mailflow.errors import (
    InvalidSchedulingOptionsError, MailVerificationError, NoEligibleItemsError,
    SchedulingUnavailableError,
)
from mailflow.jobs import SEND_EMAIL_JOB, register_jobs
from mailflow.mailer import MailDispatcher
from mailflow.models import ScheduledJob
from mailflow.monitor import JobHealthMonitor
from mailflow.routes import health
from mailflow.scheduler import JobScheduler
from mailflow.schemas import (
    JobRead, ScheduleEmailRequest, ScheduleEmailResponse,
    ScheduledEmailRead, ScheduleSequenceRequest, ScheduleSequenceResponse, SkippedItemRead,
)
from mailflow.service import SchedulingService

logger = logging.getLogger("mailflow")

# ────────────── Scheduling API ──────────────
api = APIRouter(prefix="/api", tags=["scheduling"])


@api.post("/schedule-email", response_model=ScheduleEmailResponse)
async def schedule_email(
    payload: ScheduleEmailRequest,
    user_id: str = Depends(get_user_id),
    service: SchedulingService = Depends(get_service),
):
    result = await service.schedule_single(
        payload.to, payload.subject, payload.body, payload.delay, payload.unit, user_id
    )
    return ScheduleEmailResponse(
        message="Email scheduled successfully",
        scheduledFor=result.scheduled_for,
        jobId=str(result.job_id),
    )


@api.post("/schedule-sequence", response_model=ScheduleSequenceResponse)
async def schedule_sequence(
    payload: ScheduleSequenceRequest,
    user_id: str = Depends(get_user_id),
    service: SchedulingService = Depends(get_service),
):
    result = await service.schedule_sequence(
        payload.sequence, payload.schedulingOptions, payload.sendNow, user_id
    )
    return ScheduleSequenceResponse(
        message="Sequence sent successfully" if payload.sendNow else "Sequence scheduled successfully",
        scheduledEmails=[
            ScheduledEmailRead(
                email=s.email, subject=s.subject, scheduledFor=s.scheduled_for, jobId=str(s.job_id)
            )
            for s in result.scheduled
        ],
        skipped=[
            SkippedItemRead(itemId=s.item_id, email=s.email, reason=s.reason.value)
            for s in result.skipped
        ],
        schedulingOptions=(
            result.options.model_dump(by_alias=True, mode="json") if result.options else None
        ),
    )


# ────────────── Job introspection ──────────────
def _job_read(job: ScheduledJob) -> JobRead:
    return JobRead.model_validate(job)


@api.get("/jobs", response_model=List[JobRead])
async def list_jobs(
    include_completed: bool = True,
    limit: int = 100,
    scheduler: JobScheduler = Depends(get_scheduler),
):
    jobs = await scheduler.connections.run(crud.list_jobs, include_completed, limit)
    return [_job_read(j) for j in jobs]


@api.get("/jobs/stats")
async def job_stats(scheduler: JobScheduler = Depends(get_scheduler)):
    return await scheduler.stats()


@api.get("/jobs/{job_id}", response_model=JobRead)
async def get_job(job_id: int, scheduler: JobScheduler = Depends(get_scheduler)):
    job = await scheduler.get_job(job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")
    return _job_read(job)


@api.delete("/jobs/{job_id}")
async def delete_job(job_id: int, scheduler: JobScheduler = Depends(get_scheduler)):
    if not await scheduler.connections.run(crud.delete_job, job_id):
        raise HTTPException(status_code=404, detail="Job not found")
    return {"message": "deleted"}


@api.get("/scheduler/status")
def scheduler_status(scheduler: JobScheduler = Depends(get_scheduler)):
    return scheduler.status()


@api.post("/run-scheduler", status_code=status.HTTP_200_OK)
async def run_scheduler(service: SchedulingService = Depends(get_service)):
    scheduler = await service.ensure_scheduler()
    summary = await scheduler.run_due_jobs()
    return {
        "message":   f"processed {summary.succeeded}",
        "claimed":   summary.claimed,
        "succeeded": summary.succeeded,
        "failed":    summary.failed,
    }


# ────────────── Logging ──────────────
def configure_logging(config: Settings) -> logging.Logger:
    logging.basicConfig(
        level=config.LOG_LEVEL.upper(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stdout,
    )
    elog = logging.getLogger("error_logger")
    elog.setLevel(logging.ERROR)
    if not elog.handlers:
        fh = logging.FileHandler(config.LOG_PATH, delay=True)
        fh.setFormatter(logging.Formatter("%(asctime)s | %(levelname)s | %(message)s"))
        elog.addHandler(fh)
    return elog


# ────────────── App factory ──────────────
def create_app(
    config: Optional[Settings] = None,
    mailer: Optional[MailDispatcher] = None,
    service: Optional[SchedulingService] = None,
) -> FastAPI:
    config = config or default_settings
    elog = configure_logging(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.service = service or SchedulingService(
            JobScheduler(ConnectionManager(config), config), timezone=config.TIMEZONE
        )
        scheduler = app.state.service.scheduler
        app.state.mailer = mailer or MailDispatcher(config)
        if SEND_EMAIL_JOB not in scheduler.handler_names:
            register_jobs(scheduler, app.state.mailer)
        app.state.monitor = JobHealthMonitor(scheduler, config)

        try:
            await scheduler.init()
        except Exception as exc:
            # keep serving; the next scheduling request retries initialization
            logger.error("Failed to initialize scheduler during startup: %s", exc)
        if not app.state.mailer.configured:
            logger.warning("SMTP_USER or SMTP_PASSWORD is not set. Emails will not be sent!")
        else:
            try:
                await asyncio.to_thread(app.state.mailer.verify)
                logger.info("Server is ready to send emails")
            except MailVerificationError as exc:
                # jobs still get queued; each send re-verifies the transport
                logger.error("Email transporter verification failed: %s", exc)
        app.state.monitor.start()

        yield

        await app.state.monitor.stop()
        await scheduler.shutdown()

    app = FastAPI(title="mailflow", lifespan=lifespan)
    app.state.settings = config
    app.include_router(api)
    app.include_router(health.router)
    app.include_router(dev_router)

    # ────────────── Error mapping ──────────────
    @app.exception_handler(SchedulingUnavailableError)
    async def _unavailable(request: Request, exc: SchedulingUnavailableError):
        return JSONResponse(status_code=503, content={"error": str(exc)})

    @app.exception_handler(NoEligibleItemsError)
    async def _no_items(request: Request, exc: NoEligibleItemsError):
        return JSONResponse(
            status_code=400, content={"error": str(exc), "message": "Failed to send emails"}
        )

    @app.exception_handler(InvalidSchedulingOptionsError)
    async def _bad_options(request: Request, exc: InvalidSchedulingOptionsError):
        return JSONResponse(status_code=422, content={"error": str(exc)})

    @app.exception_handler(Exception)
    async def _unhandled(request: Request, exc: Exception):
        elog.error("URL: %s METHOD: %s\n%r", request.url, request.method, exc)
        return JSONResponse(status_code=500, content={"detail": "Internal error"})

    return app


app = create_app()

# ────────────── CLI Entrypoint ──────────────
if __name__ == "__main__":
    import uvicorn
    uvicorn.run("mailflow.main:app", host="0.0.0.0", port=8000, reload=True)
