from sqlalchemy import create_engine
from sqlalchemy.ext.declarative import declarative_base
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
import logging
from config import get_settings

logger = logging.getLogger(__name__)

settings = get_settings()


def _build_engine():
    if settings.instance_connection_name:
        # Google Cloud SQL Connector for production
        from google.cloud.sql.connector import Connector

        connector = Connector()

        def getconn():
            return connector.connect(
                settings.instance_connection_name,
                "pg8000",
                user=settings.db_user,
                password=settings.db_password,
                db=settings.db_name,
            )

        logger.info(f"Connecting to Google Cloud SQL: {settings.instance_connection_name}")
        return create_engine(
            "postgresql+pg8000://",
            creator=getconn,
            pool_size=12,
            max_overflow=20,
            pool_timeout=30,
            pool_recycle=1000,
        )

    url = settings.database_url
    if url.startswith("sqlite"):
        options = {"connect_args": {"check_same_thread": False}}
        if url in ("sqlite://", "sqlite:///:memory:"):
            # One shared connection, otherwise every session sees an empty database
            options["poolclass"] = StaticPool
        logger.info(f"Using SQLite database: {url}")
        return create_engine(url, **options)

    logger.info("Using database from DATABASE_URL")
    return create_engine(
        url,
        pool_size=12,
        max_overflow=20,
        pool_timeout=30,
        pool_recycle=1000,
        pool_pre_ping=True,
    )


engine = _build_engine()

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """Dependency for getting database session"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
