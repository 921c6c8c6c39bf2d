# mailflow/dev.py

import os
import logging
from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException, Request, status
from faker import Faker

from mailflow import crud
from mailflow.deps import get_monitor, get_scheduler
from mailflow.jobs import SEND_EMAIL_JOB
from mailflow.monitor import JobHealthMonitor
from mailflow.scheduler import JobScheduler
from mailflow.utils import utcnow

router = APIRouter(prefix="/dev", tags=["dev"])


def dev_only(request: Request):
    """Raise error if not in DEV_MODE (for development safety)."""
    if not request.app.state.settings.DEV_MODE:
        raise HTTPException(status_code=403, detail="Not allowed outside DEV_MODE")


# --- Purge the job table ---
@router.post("/reset-jobs", status_code=status.HTTP_200_OK, dependencies=[Depends(dev_only)])
async def reset_jobs(scheduler: JobScheduler = Depends(get_scheduler)):
    """
    Danger: Deletes every scheduled, locked and completed job.
    Only allowed in DEV_MODE.
    """
    deleted = await scheduler.connections.run(crud.delete_all_jobs)
    return {"message": "All jobs deleted.", "deleted": deleted}


# --- Bulk insert dummy/test jobs ---
@router.post("/generate-jobs", dependencies=[Depends(dev_only)])
async def generate_jobs(
    n: int = 10,
    spread_minutes: int = 60,
    scheduler: JobScheduler = Depends(get_scheduler),
):
    """
    Add N fake send-email jobs spread over the next `spread_minutes`.
    Only allowed in DEV_MODE.
    """
    fake = Faker()
    now = utcnow()
    for i in range(n):
        run_at = now + timedelta(minutes=fake.random_int(0, max(spread_minutes, 0)))
        await scheduler.schedule(run_at, SEND_EMAIL_JOB, {
            "to":      fake.unique.email(),
            "subject": fake.sentence(nb_words=6),
            "body":    f"<p>Hello {{{{email}}}}, {fake.text(max_nb_chars=80)}</p>",
            "userId":  "dev",
        })
    return {"added": n}


# --- Run the health sweep now ---
@router.post("/sweep", dependencies=[Depends(dev_only)])
async def sweep(monitor: JobHealthMonitor = Depends(get_monitor)):
    report = await monitor.sweep()
    return report.to_dict()


# --- Toggle logging level ---
@router.post("/log-level", dependencies=[Depends(dev_only)])
def set_log_level(level: str):
    """Change the root log level at runtime, e.g. DEBUG to trace every poll cycle."""
    level = level.upper()
    if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
        raise HTTPException(status_code=400, detail="Invalid log level.")
    logging.getLogger().setLevel(level)
    return {"message": f"Log level set to {level}"}


# --- Error log ---
@router.get("/error-log", dependencies=[Depends(dev_only)])
def get_error_log(request: Request):
    path = request.app.state.settings.LOG_PATH
    if not os.path.exists(path):
        return {"log": ""}
    with open(path) as f:
        return {"log": f.read()}


@router.post("/clear-error-log", dependencies=[Depends(dev_only)])
def clear_error_log(request: Request):
    open(request.app.state.settings.LOG_PATH, "w").close()
    return {"message": "Error log cleared"}
