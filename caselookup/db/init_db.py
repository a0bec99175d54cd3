# caselookup/db/init_db.py
import logging
from caselookup.db.session import engine, Base
from caselookup.db import models # noqa: F401  registers tables on Base.metadata

logger = logging.getLogger(__name__)

def init_db(bind=None):
    logger.info("Initializing database...")
    try:
        Base.metadata.create_all(bind=bind or engine)
        logger.info("Database initialization completed successfully.")
    except Exception as e:
        logger.error(f"Error initializing database: {e}")
        raise

if __name__ == "__main__":
    from caselookup.core.config import settings as app_settings
    logger.info(f"Manual DB Init: Using database at {app_settings.DATABASE_URL}")
    init_db()
