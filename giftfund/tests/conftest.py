# giftfund/tests/conftest.py

# Shared fixtures: an in-memory MongoDB (mongomock) wired into the db module,
# a recording notifier and an HTTP client for the FastAPI app.

import mongomock
import pytest
from fastapi.testclient import TestClient

from giftfund.api.main import app
from giftfund.config.settings import settings
from giftfund.db import mongo_client
from giftfund.features.contributions.payment_gateway import SimulatedPaymentGateway
from giftfund.tests.factories import RecordingNotifier


@pytest.fixture
def db(monkeypatch):
    client = mongomock.MongoClient()
    database = client["giftfund_test"]
    monkeypatch.setattr(mongo_client, "mongo_client", client)
    monkeypatch.setattr(mongo_client, "mongo_db", database)
    monkeypatch.setattr(settings, "PAYMENT_SIMULATION_ENABLED", False)
    monkeypatch.setattr(settings, "MONGO_USE_TRANSACTIONS", False)
    yield database


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def client(db, notifier, monkeypatch):
    # No context manager: startup would try to reach a real MongoDB.
    monkeypatch.setattr(app.state, "notifier", notifier)
    monkeypatch.setattr(app.state, "payment_gateway", SimulatedPaymentGateway())
    return TestClient(app)
