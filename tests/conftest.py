"""
Shared fixtures: a file-backed SQLite database per test and seeded users.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("GITHUB_WEBHOOK_SECRET", "test-webhook-secret")
os.environ.setdefault("AI_SERVICE_URL", "http://ai-service.test")

import pytest
from sqlalchemy.orm import sessionmaker

from graphbug.core.database import create_db_engine, init_db
from graphbug.models.db.github_installations import GithubInstallation
from graphbug.models.db.repositories import IngestionStatus, Repository
from graphbug.models.db.users import User


@pytest.fixture
def engine(tmp_path):
    engine = create_db_engine(f"sqlite:///{tmp_path / 'graphbug-test.db'}")
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def user(db):
    user = User(email="u1@example.com")
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def other_user(db):
    user = User(email="someone-else@example.com")
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def make_repository(db):
    """Insert an installation (if needed) and a repository in a given state."""

    def _make(installation_id=42, full_name="acme/api", user_id=None, **fields):
        installation = (
            db.query(GithubInstallation)
            .filter(GithubInstallation.installation_id == installation_id)
            .first()
        )
        if installation is None:
            installation = GithubInstallation(
                installation_id=installation_id,
                user_id=user_id,
                account_login="acme",
                account_type="Organization",
                target_type="Organization",
            )
            db.add(installation)
            db.flush()

        fields.setdefault("ingestion_status", IngestionStatus.NOT_STARTED.value)
        repository = Repository(
            installation_id=installation.id,
            name=full_name.split("/", 1)[-1],
            full_name=full_name,
            **fields,
        )
        db.add(repository)
        db.commit()
        db.refresh(repository)
        return repository

    return _make
