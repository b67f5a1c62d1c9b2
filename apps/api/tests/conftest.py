"""Pytest configuration and fixtures."""

import os
import tempfile

# Settings are read once at import; point them at throwaway resources first.
_TMP = tempfile.mkdtemp(prefix="attest-tests-")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("ARTIFACT_ROOT", os.path.join(_TMP, "artifacts"))
os.environ.setdefault("REPORTS_DIR", os.path.join(_TMP, "reports"))
os.environ.setdefault("LOG_FORMAT", "text")

import pytest  # noqa: E402
from sqlalchemy import create_engine, text  # noqa: E402
from sqlalchemy.orm import Session, sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from attest_api.db.base import Base  # noqa: E402
from attest_api.models import ProvenanceEvent  # noqa: E402
from attest_api.proofs.schema import reset_schema_cache  # noqa: E402
from attest_api.proofs.store import ProofStore  # noqa: E402
from attest_api.storage.service import LocalStorage  # noqa: E402

LEGACY_PROOFS_DDL = {
    "v1": """
        CREATE TABLE proofs (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            subject_id TEXT NOT NULL,
            type TEXT,
            sha256 TEXT,
            payload TEXT,
            path TEXT,
            ts INTEGER NOT NULL
        )
    """,
    "v2": """
        CREATE TABLE proofs (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            subject_id TEXT NOT NULL,
            kind TEXT,
            hash TEXT,
            meta TEXT,
            path TEXT,
            ts INTEGER NOT NULL
        )
    """,
}


def _memory_engine():
    return create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )


@pytest.fixture(scope="function")
def engine():
    """In-memory database with the current schema."""
    engine = _memory_engine()
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()
    reset_schema_cache()


@pytest.fixture(scope="function")
def db(engine) -> Session:
    """Create a test database session."""
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def legacy_db():
    """Factory for sessions bound to an older proofs table generation."""
    engines = []
    sessions = []

    def make(generation: str) -> Session:
        engine = _memory_engine()
        with engine.begin() as conn:
            conn.execute(text(LEGACY_PROOFS_DDL[generation]))
        ProvenanceEvent.__table__.create(engine)
        engines.append(engine)
        session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
        sessions.append(session)
        return session

    yield make
    for session in sessions:
        session.close()
    for engine in engines:
        engine.dispose()
    reset_schema_cache()


@pytest.fixture
def storage(tmp_path) -> LocalStorage:
    root = tmp_path / "artifacts"
    root.mkdir()
    return LocalStorage(str(root))


@pytest.fixture
def store(db) -> ProofStore:
    return ProofStore(db, storage_provider="local")


@pytest.fixture
def write_artifact(storage):
    """Write bytes into storage and return the locator."""

    def write(locator: str, data: bytes) -> str:
        storage.write(locator, data)
        return locator

    return write
