# mailflow/deps.py
# FastAPI dependencies: objects built in the app lifespan live on app.state.

from typing import Optional

from fastapi import Header, HTTPException, Request, status

from mailflow.mailer import MailDispatcher
from mailflow.monitor import JobHealthMonitor
from mailflow.scheduler import JobScheduler
from mailflow.service import SchedulingService


def get_service(request: Request) -> SchedulingService:
    return request.app.state.service


def get_scheduler(request: Request) -> JobScheduler:
    return request.app.state.service.scheduler


def get_monitor(request: Request) -> JobHealthMonitor:
    return request.app.state.monitor


def get_mailer(request: Request) -> MailDispatcher:
    return request.app.state.mailer


def get_user_id(x_user_id: Optional[str] = Header(None)) -> str:
    """Identity injected by the upstream auth gateway."""
    if not x_user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")
    return x_user_id
