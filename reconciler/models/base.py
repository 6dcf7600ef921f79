"""Database base configuration"""
from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

Base = declarative_base()

# Configured by the application at startup; never derived from a hardcoded path.
SessionLocal: Optional[sessionmaker] = None


def create_db_engine(database_url: str) -> Engine:
    """Create an engine for the configured ledger database"""
    return create_engine(
        database_url,
        connect_args={"check_same_thread": False} if database_url.startswith("sqlite") else {},
    )


def create_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(engine: Engine):
    """Create all tables"""
    # Ensure all models are imported so SQLAlchemy metadata is populated.
    import reconciler.models  # noqa: F401  (import for side-effects)

    Base.metadata.create_all(bind=engine)


def configure_database(database_url: str) -> sessionmaker:
    """Create engine + tables and install the process-wide session factory"""
    global SessionLocal
    engine = create_db_engine(database_url)
    init_db(engine)
    SessionLocal = create_session_factory(engine)
    return SessionLocal


def get_db():
    """Get database session"""
    if SessionLocal is None:
        raise RuntimeError("Database is not configured; call configure_database() first")
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
