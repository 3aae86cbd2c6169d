# vehiclesearch/db.py
"""Database engine and session utilities for the listing record store.

The search core only reads from the record store; the CRUD layer that owns
the writes lives elsewhere.
"""
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base

from . import config

DATABASE_URL = config.POSTGRES_URL
if not DATABASE_URL:
    raise RuntimeError("POSTGRES_URL not set")

# Normalize SQLAlchemy URL scheme (SQLAlchemy 2.x doesn't accept 'postgres://')
if DATABASE_URL.startswith("postgres://"):
    DATABASE_URL = DATABASE_URL.replace("postgres://", "postgresql+psycopg2://", 1)

engine_kwargs = {"pool_pre_ping": True}
# sqlite (local runs, tests) uses its own pool class without overflow settings
if not DATABASE_URL.startswith("sqlite"):
    engine_kwargs.update(
        pool_size=config.DB_POOL_SIZE,
        max_overflow=config.DB_MAX_OVERFLOW,
    )

engine = create_engine(DATABASE_URL, **engine_kwargs)

# services open their own short-lived sessions from this factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()
