import pytest
from fastapi.testclient import TestClient

from DB import SensorDatabase
from Host import create_app
from Relay import BroadcastRelay


@pytest.fixture
def db(tmp_path):
    database = SensorDatabase(str(tmp_path / "garden.db"), pool_size=2)
    database.start()
    yield database
    database.stop()


@pytest.fixture
def app(tmp_path):
    return create_app(db=SensorDatabase(str(tmp_path / "host.db"), pool_size=2), relay=BroadcastRelay())


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c
