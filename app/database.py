from sqlalchemy import create_engine, pool, event
from sqlalchemy.orm import declarative_base, sessionmaker
import os
from dotenv import load_dotenv
import logging

load_dotenv()
logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./watchlist.db")


def _engine_options(url: str) -> dict:
    """Pool settings for server databases; SQLite gets a single-file setup."""
    if url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    return {
        "poolclass": pool.QueuePool,
        "pool_size": int(os.getenv("DB_POOL_SIZE", 5)),  # Number of connections to keep open
        "max_overflow": int(os.getenv("DB_MAX_OVERFLOW", 10)),  # Max connections beyond pool_size
        "pool_timeout": int(os.getenv("DB_POOL_TIMEOUT", 30)),  # Seconds to wait for connection
        "pool_recycle": int(os.getenv("DB_POOL_RECYCLE", 3600)),  # Recycle connections after 1 hour
        "pool_pre_ping": True,  # Test connections before using them
    }


engine = create_engine(
    DATABASE_URL,
    echo=os.getenv("DB_ECHO", "false").lower() == "true",  # Set to true for SQL debugging
    **_engine_options(DATABASE_URL),
)


@event.listens_for(engine, "connect")
def receive_connect(dbapi_conn, connection_record):
    """Log when a new connection is created"""
    logger.debug("Database connection established")


SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


# Dependency for FastAPI routes
def get_db():
    """
    Database session dependency for FastAPI.
    Automatically handles session creation and cleanup.

    Usage:
        @router.get("/endpoint")
        def endpoint(db: Session = Depends(get_db)):
            # Use db here
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
