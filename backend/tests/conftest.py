"""Pytest configuration and fixtures."""

import os
import shutil
import tempfile

# Settings are read at import time, so the environment goes first.
UPLOAD_ROOT = tempfile.mkdtemp(prefix="intranet-test-uploads-")
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["UPLOAD_DIR"] = UPLOAD_ROOT
os.environ["LOG_JSON"] = "false"

import pytest
from fastapi.testclient import TestClient

from intranet.core.security import create_access_token
from intranet.database.base import Base
from intranet.database.session import SessionLocal, engine
from intranet.main import app
from intranet.models import chat  # noqa: F401
from intranet.models.user import User


@pytest.fixture(autouse=True)
def _schema():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)
    shutil.rmtree(UPLOAD_ROOT, ignore_errors=True)


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client():
    with TestClient(app) as test_client:
        yield test_client


def make_user(db, first_name, last_name, role="employee", password_hash="not-a-real-hash", is_active=True):
    user = User(
        first_name=first_name,
        last_name=last_name,
        email=f"{first_name.lower()}.{last_name.lower()}@company.com",
        password_hash=password_hash,
        role=role,
        is_active=is_active,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def alice(db):
    return make_user(db, "Alice", "Martin")


@pytest.fixture
def bob(db):
    return make_user(db, "Bob", "Durand")


@pytest.fixture
def carol(db):
    return make_user(db, "Carol", "Petit")


@pytest.fixture
def admin(db):
    return make_user(db, "Ada", "Admin", role="admin")


def token_for(user):
    return create_access_token({"sub": str(user.id), "role": user.role})


def auth_headers(user):
    return {"Authorization": f"Bearer {token_for(user)}"}
