# scripts/reset_db.py
# DANGER: drops every table, including pending jobs.

from sqlmodel import SQLModel

from mailflow import models  # noqa: F401  registers email_jobs on the metadata
from mailflow.config import settings
from mailflow.database import create_db_engine, init_db

engine = create_db_engine(settings.DB_URL, settings.CONNECT_TIMEOUT_SECONDS)
SQLModel.metadata.drop_all(engine)
init_db(engine)

print("✅ Database reset successfully.")
