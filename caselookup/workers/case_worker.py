# caselookup/workers/case_worker.py
import asyncio
import logging
from fastapi import FastAPI # For type hinting app state
from caselookup.core.config import get_app_settings
from caselookup.services.alert_service import AlertCategory
from caselookup.services.queue_client import QueueError, ReceivedMessage

logger = logging.getLogger(__name__)

async def handle_search_message(app: FastAPI, message: ReceivedMessage, worker_id: int) -> None:
    orchestrator = app.state.record_orchestrator
    if not message.case_number or not message.user_id:
        await app.state.alert_service.for_category(AlertCategory.QUEUE).error(
            "Invalid search message: missing case_number or user_id", None,
            {"receipt_handle": message.receipt_handle, "body": message.body, "worker_id": worker_id},
        )
        # Unprocessable; ack so it is not redelivered
        await app.state.queue_client.acknowledge(message.receipt_handle)
        return

    outcome = await orchestrator.process_case_search_record(
        message.case_number, message.user_id, message.receipt_handle, message.user_agent
    )
    logger.info(f"Worker {worker_id}: Case {message.case_number} finished with outcome '{outcome.value}'.")

async def search_queue_worker(app: FastAPI, worker_id: int):
    worker_settings = get_app_settings()
    consumer_name = f"search-worker-{worker_id}"
    logger.info(f"Search Worker {worker_id}: Started as consumer '{consumer_name}'.")

    try:
        while not app.state.shutting_down:
            try:
                messages = await app.state.queue_client.receive_search(
                    consumer_name, worker_settings.QUEUE_RECEIVE_BATCH_SIZE
                )
                if not messages:
                    await asyncio.sleep(worker_settings.QUEUE_POLL_INTERVAL_SECONDS) # Idle
                    continue

                for message in messages:
                    try:
                        await handle_search_message(app, message, worker_id)
                    except QueueError as e_queue:
                        logger.error(f"Worker {worker_id}: Queue error on {message.receipt_handle}: {e_queue}")

            except asyncio.CancelledError:
                logger.info(f"Worker {worker_id}: Task cancelled. Shutting down.")
                break
            except QueueError as e_receive:
                logger.error(f"Worker {worker_id}: Could not receive from search queue: {e_receive}")
                await asyncio.sleep(5) # Back off before polling again
            except Exception as e_outer:
                logger.error(f"Worker {worker_id}: Outer loop error: {e_outer}", exc_info=True)
                await asyncio.sleep(5)

    except asyncio.CancelledError:
        logger.info(f"Worker {worker_id}: Main task cancelled. Exiting.")
    finally:
        logger.info(f"Search Worker {worker_id}: Stopped.")
