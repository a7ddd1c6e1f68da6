"""
Base database model and session management
"""
import os
import uuid
from datetime import datetime
from sqlalchemy import create_engine, Column, String, DateTime
from sqlalchemy.pool import NullPool, StaticPool
from sqlalchemy.orm import declarative_base, sessionmaker
from bizos.config import get_settings

settings = get_settings()

# Resolve relative SQLite paths to absolute so cwd changes can't break it
_db_url = settings.database_url
if _db_url.startswith("sqlite:///") and not _db_url.startswith("sqlite:////"):
    rel_path = _db_url[len("sqlite:///"):]
    if rel_path and rel_path != ":memory:":
        _db_url = "sqlite:///" + os.path.abspath(rel_path)

# Create database engine
if _db_url in ("sqlite://", "sqlite:///:memory:"):
    # In-memory store shared by every session in the process
    engine = create_engine(
        _db_url,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
elif _db_url.startswith("sqlite"):
    engine = create_engine(
        _db_url,
        connect_args={"check_same_thread": False, "timeout": 60},
        poolclass=NullPool,
        pool_pre_ping=True
    )
else:
    engine = create_engine(
        _db_url,
        pool_pre_ping=True,
        pool_size=5,
        max_overflow=10,
        pool_recycle=300,
    )

# Create session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for all models
Base = declarative_base()


def generate_id() -> str:
    return str(uuid.uuid4())


class NormalizedEntityMixin:
    """
    Columns shared by every normalized entity table.

    (workspace_id, source, external_id) is the identity triple; each table
    declares the matching UniqueConstraint in __table_args__.
    """
    id = Column(String, primary_key=True, default=generate_id)
    workspace_id = Column(String, nullable=False, index=True)
    source = Column(String, nullable=False)
    external_id = Column(String, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)


def get_db():
    """Request-scoped session for FastAPI dependencies"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db():
    """Initialize database tables."""
    # Import models so they register on Base.metadata
    from bizos.models import connector, ecommerce, saas, ads, ga4  # noqa: F401
    Base.metadata.create_all(bind=engine)


def drop_db():
    """Drop all tables (tests and local resets only)."""
    Base.metadata.drop_all(bind=engine)
