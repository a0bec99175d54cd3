import json
import pytest
import httpx

from caselookup.services.alert_service import (
    AlertService, AlertCategory, Severity, generate_error_key,
)


class FakeClock:
    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now


def webhook_recorder():
    sent = []

    def handler(request: httpx.Request):
        sent.append(json.loads(request.content))
        return httpx.Response(200)

    return sent, httpx.MockTransport(handler)


@pytest.fixture
def webhook_settings(settings):
    settings.ALERT_WEBHOOK_URL = "https://alerts.example.test/hook"
    return settings


def test_error_key_strips_volatile_values():
    a = generate_error_key("Failed for 123456 at 2025-01-02 10:11:12 id 1b4e28ba-2fa1-11d2-883f-0016d3cca427", AlertCategory.PORTAL)
    b = generate_error_key("Failed for 987654 at 2024-12-31 23:59:59 id 6fa459ea-ee8a-3ca4-894e-db77e160355e", AlertCategory.PORTAL)
    assert a == b == "PORTAL:Failed for NUMBER at DATE TIME id UUID"


@pytest.mark.asyncio
async def test_critical_always_notifies(webhook_settings):
    sent, transport = webhook_recorder()
    service = AlertService(webhook_settings, transport=transport, clock=FakeClock())

    for _ in range(3):
        assert await service.report(Severity.CRITICAL, AlertCategory.SYSTEM, "Portal down")

    assert len(sent) == 3
    assert sent[-1]["count"] == 3
    assert sent[0]["subject"].startswith("[CaseLookup dev] CRITICAL SYS: ")


@pytest.mark.asyncio
async def test_error_notifies_first_then_at_threshold_or_interval(webhook_settings):
    sent, transport = webhook_recorder()
    clock = FakeClock()
    service = AlertService(webhook_settings, transport=transport, clock=clock)

    assert await service.report(Severity.ERROR, AlertCategory.PORTAL, "Search failed")
    for _ in range(8):
        assert not await service.report(Severity.ERROR, AlertCategory.PORTAL, "Search failed")
    # tenth occurrence crosses the threshold
    assert await service.report(Severity.ERROR, AlertCategory.PORTAL, "Search failed")
    assert len(sent) == 2

    clock.now += 301
    assert await service.report(Severity.ERROR, AlertCategory.PORTAL, "Search failed")


@pytest.mark.asyncio
async def test_warning_needs_twenty_occurrences(webhook_settings):
    sent, transport = webhook_recorder()
    service = AlertService(webhook_settings, transport=transport, clock=FakeClock())

    results = [await service.report(Severity.WARNING, AlertCategory.QUEUE, "Slow queue") for _ in range(20)]

    assert results[:19] == [False] * 19
    assert results[19] is True
    assert len(sent) == 1


@pytest.mark.asyncio
async def test_cache_entries_expire_after_fifteen_minutes(webhook_settings):
    sent, transport = webhook_recorder()
    clock = FakeClock()
    service = AlertService(webhook_settings, transport=transport, clock=clock)

    for _ in range(19):
        await service.report(Severity.WARNING, AlertCategory.QUEUE, "Slow queue")
    clock.now += 15 * 60 + 1
    assert not await service.report(Severity.WARNING, AlertCategory.QUEUE, "Slow queue")


@pytest.mark.asyncio
async def test_webhook_failure_never_raises(webhook_settings):
    def handler(request):
        raise httpx.ConnectError("unreachable")

    service = AlertService(webhook_settings, transport=httpx.MockTransport(handler), clock=FakeClock())
    assert await service.report(Severity.CRITICAL, AlertCategory.SYSTEM, "Portal down")


@pytest.mark.asyncio
async def test_scoped_alerter_reports_with_its_category(settings):
    service = AlertService(settings, clock=FakeClock())
    alerter = service.for_category(AlertCategory.AUTHENTICATION)

    assert await alerter.critical("Login broken", RuntimeError("boom"), {"user_id": "u1"})
    assert "AUTH:Login broken" in service._cache
