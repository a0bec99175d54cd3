import pytest
from types import SimpleNamespace
from unittest.mock import AsyncMock

from caselookup.services.alert_service import AlertCategory
from caselookup.services.queue_client import ReceivedMessage
from caselookup.services.record_orchestrator import RecordOutcome
from caselookup.workers.case_worker import handle_search_message


@pytest.fixture
def app(alert_service, queue_client):
    orchestrator = AsyncMock()
    orchestrator.process_case_search_record = AsyncMock(return_value=RecordOutcome.FOUND)
    state = SimpleNamespace(record_orchestrator=orchestrator, alert_service=alert_service, queue_client=queue_client)
    return SimpleNamespace(state=state)


@pytest.mark.asyncio
async def test_valid_message_is_handed_to_record_orchestrator(app):
    message = ReceivedMessage(
        receipt_handle="1-0", body={"case_number": "A1", "user_id": "u1", "user_agent": "Mozilla/5.0"}
    )

    await handle_search_message(app, message, worker_id=0)

    app.state.record_orchestrator.process_case_search_record.assert_awaited_once_with("A1", "u1", "1-0", "Mozilla/5.0")
    app.state.queue_client.acknowledge.assert_not_awaited()


@pytest.mark.asyncio
async def test_message_without_user_is_alerted_and_dropped(app, alert_service):
    message = ReceivedMessage(receipt_handle="2-0", body={"case_number": "A1"})

    await handle_search_message(app, message, worker_id=0)

    alert_service.scoped[AlertCategory.QUEUE].error.assert_awaited_once()
    app.state.queue_client.acknowledge.assert_awaited_once_with("2-0")
    app.state.record_orchestrator.process_case_search_record.assert_not_awaited()
