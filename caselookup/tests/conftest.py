import pytest
from datetime import datetime, timezone
from unittest.mock import AsyncMock
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from caselookup.core.config import AppSettings
from caselookup.db.session import Base, build_engine
from caselookup.db import models as db_models # noqa: F401
from caselookup.services.case_store import CaseStore
from caselookup.services.portal_authenticator import PortalSession
import httpx
from cryptography.fernet import Fernet

PORTAL_URL = "https://portal.example.test"
NOW = datetime(2025, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def settings():
    return AppSettings(
        PORTAL_URL=PORTAL_URL,
        API_ACCESS_KEY="test-key",
        ALERT_WEBHOOK_URL=None,
        TRACE_PORTAL_HTTP=False,
        CREDENTIALS_ENCRYPTION_KEY=Fernet.generate_key().decode(),
    )


@pytest.fixture
def session_factory():
    engine = build_engine("sqlite://", poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    engine.dispose()


@pytest.fixture
def store(session_factory):
    return CaseStore(session_factory)


@pytest.fixture
def alert_service():
    service = AsyncMock()
    service.report = AsyncMock(return_value=True)
    scoped = {}

    def for_category(category):
        if category not in scoped:
            alerter = AsyncMock()
            alerter.category = category
            scoped[category] = alerter
        return scoped[category]

    service.for_category = for_category
    service.scoped = scoped
    return service


@pytest.fixture
def queue_client():
    queues = AsyncMock()
    queues.queue_cases_for_search = AsyncMock(return_value=1)
    queues.queue_case_for_data_retrieval = AsyncMock(return_value=True)
    queues.acknowledge = AsyncMock(return_value=None)
    return queues


@pytest.fixture
def good_session():
    cookies = httpx.Cookies()
    cookies.set("FedAuth", "token", domain="portal.example.test")
    return PortalSession(success=True, cookies=cookies, user_agent="Mozilla/5.0 Test")


@pytest.fixture
def session_provider(good_session):
    provider = AsyncMock()
    provider.get_or_create_session = AsyncMock(return_value=good_session)
    return provider
