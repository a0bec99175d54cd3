import random
import pytest
from datetime import timedelta
from unittest.mock import AsyncMock

from caselookup.db import crud
from caselookup.services.alert_service import AlertCategory, Severity
from caselookup.services.portal_authenticator import (
    PortalAuthenticator, PortalSession, BAD_CREDENTIALS_MESSAGE, NO_CREDENTIALS_MESSAGE, MISSING_PORTAL_URL_MESSAGE,
    UNREADABLE_CREDENTIALS_MESSAGE,
)
from caselookup.services.user_agent_client import UserAgentClient, FALLBACK_USER_AGENTS, SYSTEM_PURPOSE
from caselookup.utils import playwright_utils
from caselookup.utils.common import utcnow
from caselookup.utils.crypto import CredentialCipher
from cryptography.fernet import Fernet


@pytest.fixture
def user_agents(settings, session_factory):
    return UserAgentClient(settings, session_factory, rng=random.Random(7))


@pytest.fixture
def authenticator(settings, session_factory, alert_service, user_agents):
    return PortalAuthenticator(None, settings, session_factory, alert_service, user_agents)


def save_credentials(session_factory, settings, user_id="u1", is_bad=False):
    db = session_factory()
    try:
        encrypted = CredentialCipher.from_settings(settings).encrypt("secret")
        crud.save_portal_credentials(db, user_id, "clerk@example.test", encrypted)
        if is_bad:
            crud.mark_portal_credentials_bad(db, user_id)
    finally:
        db.close()


@pytest.mark.asyncio
async def test_fresh_stored_session_is_reused(authenticator, session_factory):
    db = session_factory()
    crud.save_user_session(
        db, "u1", [{"name": "FedAuth", "value": "abc", "domain": "portal.example.test", "path": "/"}],
        utcnow() + timedelta(hours=1), "Mozilla/5.0 Stored",
    )
    db.close()
    authenticator.authenticate_with_portal = AsyncMock()

    session = await authenticator.get_or_create_session("u1")

    assert session.success
    assert session.cookies.get("FedAuth") == "abc"
    assert session.user_agent == "Mozilla/5.0 Stored"
    authenticator.authenticate_with_portal.assert_not_awaited()


@pytest.mark.asyncio
async def test_missing_credentials_fail_without_login(authenticator):
    authenticator.authenticate_with_portal = AsyncMock()

    session = await authenticator.get_or_create_session("nobody")

    assert not session.success
    assert session.message == NO_CREDENTIALS_MESSAGE
    authenticator.authenticate_with_portal.assert_not_awaited()


@pytest.mark.asyncio
async def test_credentials_flagged_bad_are_not_retried(authenticator, session_factory, settings):
    save_credentials(session_factory, settings, is_bad=True)
    authenticator.authenticate_with_portal = AsyncMock()

    session = await authenticator.get_or_create_session("u1")

    assert session.message == BAD_CREDENTIALS_MESSAGE
    authenticator.authenticate_with_portal.assert_not_awaited()


@pytest.mark.asyncio
async def test_rejected_login_flags_credentials_bad(authenticator, session_factory, settings):
    save_credentials(session_factory, settings)
    authenticator.authenticate_with_portal = AsyncMock(
        return_value=PortalSession(success=False, message="Invalid Email or password")
    )

    session = await authenticator.get_or_create_session("u1")

    assert session.message == "Invalid Email or password"
    db = session_factory()
    assert crud.get_portal_credentials(db, "u1").is_bad is True
    db.close()


@pytest.mark.asyncio
async def test_successful_login_is_stored_for_reuse(authenticator, session_factory, settings):
    save_credentials(session_factory, settings)
    cookies = playwright_utils.cookies_to_jar([{"name": "FedAuth", "value": "new", "domain": "portal.example.test"}])
    authenticator.authenticate_with_portal = AsyncMock(
        return_value=PortalSession(success=True, cookies=cookies, user_agent="Mozilla/5.0 Given")
    )

    first = await authenticator.get_or_create_session("u1", "Mozilla/5.0 Given")
    second = await authenticator.get_or_create_session("u1")

    assert first.success and second.success
    assert second.cookies.get("FedAuth") == "new"
    authenticator.authenticate_with_portal.assert_awaited_once_with("clerk@example.test", "secret", "Mozilla/5.0 Given")


@pytest.mark.asyncio
async def test_missing_portal_url_is_reported_critical(authenticator, settings, alert_service):
    settings.PORTAL_URL = ""

    session = await authenticator.authenticate_with_portal("clerk@example.test", "secret", "Mozilla/5.0")

    assert session.message == MISSING_PORTAL_URL_MESSAGE
    assert alert_service.report.await_args.args[:2] == (Severity.CRITICAL, AlertCategory.SYSTEM)


def test_system_purpose_uses_default_agent(user_agents, settings):
    assert user_agents.get_user_agent(SYSTEM_PURPOSE) == settings.DEFAULT_USER_AGENT


def test_provided_browser_agent_is_remembered(user_agents):
    assert user_agents.get_user_agent("u1", "Mozilla/5.0 Mine") == "Mozilla/5.0 Mine"
    assert user_agents.get_user_agent("u1") == "Mozilla/5.0 Mine"


def test_non_browser_agent_falls_back_to_stable_random_choice(user_agents):
    chosen = user_agents.get_user_agent("u2", "curl/8.0")

    assert chosen in FALLBACK_USER_AGENTS
    assert user_agents.get_user_agent("u2") == chosen


@pytest.mark.asyncio
async def test_credentials_saved_under_another_key_are_rejected(authenticator, session_factory, settings):
    db = session_factory()
    foreign = CredentialCipher(Fernet.generate_key()).encrypt("secret")
    crud.save_portal_credentials(db, "u1", "clerk@example.test", foreign)
    db.close()
    authenticator.authenticate_with_portal = AsyncMock()

    session = await authenticator.get_or_create_session("u1")

    assert not session.success
    assert session.message == UNREADABLE_CREDENTIALS_MESSAGE
    authenticator.authenticate_with_portal.assert_not_awaited()
