from __future__ import annotations

import pytest

from careconnect.core.events import Notifier
from careconnect.core.identity import DemoIdentityClient
from careconnect.core.session import SessionManager
from careconnect.core.storage import MemoryStore


@pytest.fixture
def demo_client():
    return DemoIdentityClient()


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def notifier():
    return Notifier()


@pytest.fixture
def session(demo_client, store, notifier):
    """
    A SessionManager over the demo identity service and an in-memory store.
    Not yet initialized.
    """
    return SessionManager(identity_client=demo_client, store=store, notifier=notifier)


@pytest.fixture
def ready_session(session):
    session.initialize()
    return session
