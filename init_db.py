import logging
from sqlalchemy import text
from config import DATABASE_URL, LOG_LEVEL
from database import Base, engine, init_db, SessionLocal
# Registers the tables on Base.metadata before drop_all
import models  # noqa: F401

# Configure logging
logging.basicConfig(level=LOG_LEVEL)
logger = logging.getLogger(__name__)

def init_database(reset: bool = False):
    try:
        logger.info(f"Initializing database at {DATABASE_URL}...")

        if reset:
            logger.info("Dropping all existing tables...")
            Base.metadata.drop_all(bind=engine)

        logger.info("Creating database tables...")
        init_db()

        # Verify tables exist by running a simple query
        db = SessionLocal()
        try:
            for table in Base.metadata.tables.keys():
                db.execute(text(f"SELECT 1 FROM {table} LIMIT 1"))
                logger.info(f"Table '{table}' verified successfully!")
        finally:
            db.close()

        logger.info("Database initialization completed successfully!")

    except Exception as e:
        logger.error(f"Error initializing database: {str(e)}")
        raise

if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Create the workspace statistics tables")
    parser.add_argument("--reset", action="store_true", help="drop all tables before creating them")
    args = parser.parse_args()
    init_database(reset=args.reset)
