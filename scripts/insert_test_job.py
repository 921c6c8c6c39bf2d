# 📄 File: scripts/insert_test_job.py

import sys

from sqlmodel import Session

from mailflow import crud
from mailflow.config import settings
from mailflow.database import create_db_engine, init_db
from mailflow.jobs import SEND_EMAIL_JOB
from mailflow.utils import utcnow


def insert_test_job(to: str):
    engine = create_db_engine(settings.DB_URL, settings.CONNECT_TIMEOUT_SECONDS)
    init_db(engine)
    with Session(engine) as session:
        # Already due: the next poll cycle picks it up
        job = crud.create_job(session, SEND_EMAIL_JOB, {
            "to":      to,
            "subject": "Scheduled Email Test",
            "body":    "<p>Hello {{email}}, this is a scheduled email test.</p>",
            "userId":  "script",
        }, utcnow())
        print(f"✅ Test job {job.id} inserted.")


if __name__ == "__main__":
    insert_test_job(sys.argv[1] if len(sys.argv) > 1 else "test@example.com")
