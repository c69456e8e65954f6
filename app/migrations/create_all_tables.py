"""
Migration script to create all database tables

Run this script to create all database tables:
    python -m app.migrations.create_all_tables
"""

import logging

from app.database import engine, Base
# Import all models to ensure they're registered with Base
from app.models import User, Movie, IdentityAccount

logger = logging.getLogger(__name__)


def create_tables():
    """Create all database tables"""
    tables = [User.__tablename__, Movie.__tablename__, IdentityAccount.__tablename__]
    logger.info(f"Creating tables on {engine.url.render_as_string(hide_password=True)}")

    try:
        Base.metadata.create_all(bind=engine)
    except Exception as e:
        logger.error(f"Error creating tables: {e}", exc_info=True)
        raise

    for name in tables:
        logger.info(f"   - {name}")
    logger.info("All tables created successfully")
    return tables


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s [%(name)s] %(message)s")
    create_tables()
