# 📄 File: scripts/init_db.py

from mailflow.config import settings
from mailflow.database import create_db_engine, init_db


def main():
    engine = create_db_engine(settings.DB_URL, settings.CONNECT_TIMEOUT_SECONDS)
    init_db(engine)  # <-- creates the email_jobs table if missing
    print("✅ Tables created.")


if __name__ == "__main__":
    main()


# python3 -m scripts.init_db
