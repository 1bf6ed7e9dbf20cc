"""Database base configuration"""
from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from deskbridge.config import settings

engine = create_engine(
    settings.database_url,
    connect_args={"check_same_thread": False} if "sqlite" in settings.database_url else {},
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """Get database session"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(bind=None):
    """Initialize database"""
    # Ensure all models are imported so SQLAlchemy metadata is populated.
    # (Without this, create_all() may create no tables in some import orders.)
    import deskbridge.models  # noqa: F401  (import for side-effects)

    Base.metadata.create_all(bind=bind or engine)
