"""
Shared fixtures: in-memory SQLite session and caller identities.
"""
import os

# Must be set before credentialing.database is imported
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from credentialing.database import Base, engine_connect_args
from credentialing.models import db_models  # noqa: F401
from credentialing.models.identity import AuthUser


@pytest.fixture
def db_session():
    engine = create_engine(
        "sqlite://",
        connect_args=engine_connect_args("sqlite://"),
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    Session = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = Session()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def brand_user():
    return AuthUser(id="user-1", company_id="company-1", brand_id="brand-1")


@pytest.fixture
def other_brand_user():
    return AuthUser(id="user-2", company_id="company-2", brand_id="brand-2")
