import pytest

from event_log import EventLogStore
from railway_app import create_app


@pytest.fixture
def log_path(tmp_path):
    return tmp_path / 'tracklog.jsonl'


@pytest.fixture
def store(log_path):
    return EventLogStore(log_path, fsync=False).initialize()


@pytest.fixture
def app(store):
    app = create_app({'COMMIT': 'test-commit'}, store=store)
    app.config['TESTING'] = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()
