import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["LOG_FILE"] = ""

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from database import operations
from database.models import Base


@pytest.fixture
def db():
    """Чистая БД в памяти для каждого теста."""
    test_engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    operations.Session.configure(bind=test_engine)
    operations.init_db()
    yield test_engine
    Base.metadata.drop_all(test_engine)
    test_engine.dispose()
