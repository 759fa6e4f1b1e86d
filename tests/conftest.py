import pytest
from fastapi.testclient import TestClient

from leadflow.core.collaborators import Collaborators
from leadflow.db.database import init_db, make_session_factory
from leadflow.main import create_app
from helpers import Outbox


@pytest.fixture()
def session_factory(tmp_path):
    """A sessionmaker bound to a fresh temporary database."""
    factory = make_session_factory(f"sqlite:///{tmp_path / 'test.db'}")
    init_db(bind=factory.kw["bind"])
    return factory


@pytest.fixture()
def client(session_factory):
    """Provide a TestClient with a fresh temporary database per test.

    Background polling is off so tests observe queue state deterministically.
    """
    app = create_app(session_factory=session_factory, start_workers=False)
    with TestClient(app) as c:
        yield c


@pytest.fixture()
def outbox():
    return Outbox()


@pytest.fixture()
def collaborators(outbox):
    return Collaborators(email_sender=outbox)
