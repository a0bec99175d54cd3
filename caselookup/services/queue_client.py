# caselookup/services/queue_client.py
"""
Search and data-retrieval work queues on Redis Streams.

Each queue is a stream with one consumer group. Delivery is at-least-once:
an entry read by a consumer stays pending until acknowledged, and entries
left pending longer than the visibility timeout are reclaimed and handed out
again. The receipt handle given to consumers is the stream entry id.
"""
import enum
import logging
from typing import Any, Dict, Iterable, List, Optional
from pydantic import BaseModel
from redis.asyncio import Redis
from redis.exceptions import RedisError, ResponseError

from caselookup.core.config import AppSettings
from caselookup.utils.common import normalize_case_number

logger = logging.getLogger(__name__)


class QueueError(Exception):
    """Raised when a queue operation cannot be completed."""


class QueueType(str, enum.Enum):
    SEARCH = "search"
    CASE_DATA = "case_data"


class QueueMessage(BaseModel):
    case_number: str
    user_id: str
    user_agent: Optional[str] = None
    case_id: Optional[str] = None

    class Config:
        extra = 'ignore'

    def to_fields(self) -> Dict[str, str]:
        return {k: v for k, v in self.model_dump().items() if v is not None}


class ReceivedMessage(BaseModel):
    receipt_handle: str
    body: Dict[str, str]

    @property
    def case_number(self) -> Optional[str]:
        return self.body.get("case_number") or None

    @property
    def user_id(self) -> Optional[str]:
        return self.body.get("user_id") or None

    @property
    def user_agent(self) -> Optional[str]:
        return self.body.get("user_agent") or None

    @property
    def case_id(self) -> Optional[str]:
        return self.body.get("case_id") or None


async def create_redis_client(settings: AppSettings) -> Redis:
    logger.info(f"Connecting to Redis: {settings.REDIS_HOST}:{settings.REDIS_PORT}/{settings.REDIS_DB}")
    client = Redis(
        host=settings.REDIS_HOST,
        port=settings.REDIS_PORT,
        db=settings.REDIS_DB,
        password=settings.REDIS_PASSWORD,
        decode_responses=True,
        socket_keepalive=True,
        health_check_interval=30,
        socket_connect_timeout=5,
    )
    await client.ping()
    logger.info("Redis connection verified")
    return client


def _chunks(items: List[Any], size: int) -> Iterable[List[Any]]:
    for i in range(0, len(items), size):
        yield items[i:i + size]


def _iter_stream_entries(response: Any) -> Iterable[tuple]:
    # XREADGROUP replies are a list of [stream, entries] pairs (RESP2) or a dict (RESP3).
    if not response:
        return
    if isinstance(response, dict):
        for nested in response.values():
            for entries in nested:
                yield from entries
        return
    for _stream, entries in response:
        yield from entries or []


class WorkQueue:
    def __init__(
        self,
        redis: Redis,
        stream: str,
        group: str,
        visibility_timeout_seconds: int = 360,
        dedup_window_seconds: int = 300,
        batch_size: int = 10,
    ):
        self.redis = redis
        self.stream = stream
        self.group = group
        self.visibility_timeout_ms = visibility_timeout_seconds * 1000
        self.dedup_window_seconds = dedup_window_seconds
        self.batch_size = batch_size

    def _dedup_key(self, case_number: str) -> str:
        return f"{self.stream}:dedup:{normalize_case_number(case_number)}"

    async def ensure_group(self) -> None:
        try:
            await self.redis.xgroup_create(self.stream, self.group, id="0", mkstream=True)
            logger.info(f"Created consumer group '{self.group}' on stream '{self.stream}'.")
        except ResponseError as e:
            if "BUSYGROUP" not in str(e):
                raise QueueError(f"Could not create consumer group on {self.stream}: {e}") from e
        except RedisError as e:
            raise QueueError(f"Could not create consumer group on {self.stream}: {e}") from e

    async def _release_dedup_keys(self, messages: List[QueueMessage]) -> None:
        if self.dedup_window_seconds <= 0 or not messages:
            return
        try:
            await self.redis.delete(*[self._dedup_key(m.case_number) for m in messages])
        except RedisError as e:
            logger.warning(f"[{self.stream}] Could not release {len(messages)} deduplication key(s): {e}")

    async def enqueue_many(self, messages: List[QueueMessage]) -> int:
        """Adds messages in pipelined chunks. Returns how many were added (duplicates inside the window are dropped)."""
        added = 0
        for chunk in _chunks(list(messages), self.batch_size):
            accepted: List[QueueMessage] = []
            try:
                if self.dedup_window_seconds > 0:
                    pipe = self.redis.pipeline(transaction=False)
                    for message in chunk:
                        pipe.set(self._dedup_key(message.case_number), "1", nx=True, ex=self.dedup_window_seconds)
                    claimed = await pipe.execute()
                    accepted = [m for m, ok in zip(chunk, claimed) if ok]
                else:
                    accepted = chunk

                skipped = len(chunk) - len(accepted)
                if skipped:
                    logger.info(f"[{self.stream}] Skipped {skipped} duplicate message(s) inside deduplication window.")
                if not accepted:
                    continue

                pipe = self.redis.pipeline(transaction=False)
                for message in accepted:
                    pipe.xadd(self.stream, message.to_fields())
                await pipe.execute()
                added += len(accepted)
            except RedisError as e:
                # Only sends that reached the stream count towards the deduplication window.
                await self._release_dedup_keys(accepted)
                raise QueueError(f"Failed to enqueue {len(chunk)} message(s) to {self.stream}: {e}") from e
        logger.debug(f"[{self.stream}] Enqueued {added} message(s).")
        return added

    async def enqueue_one(self, message: QueueMessage) -> bool:
        return await self.enqueue_many([message]) == 1

    async def receive(self, consumer: str, max_messages: int = 1) -> List[ReceivedMessage]:
        """Reclaims entries idle past the visibility timeout first, then reads new ones."""
        received: List[ReceivedMessage] = []
        try:
            reclaimed = await self.redis.xautoclaim(
                self.stream, self.group, consumer,
                min_idle_time=self.visibility_timeout_ms, start_id="0-0", count=max_messages,
            )
            for entry_id, fields in (reclaimed[1] if reclaimed else []):
                if fields is None:
                    continue
                logger.info(f"[{self.stream}] Redelivering entry {entry_id} to {consumer} after visibility timeout.")
                received.append(ReceivedMessage(receipt_handle=entry_id, body=fields))

            remaining = max_messages - len(received)
            if remaining > 0:
                response = await self.redis.xreadgroup(self.group, consumer, {self.stream: ">"}, count=remaining)
                for entry_id, fields in _iter_stream_entries(response):
                    received.append(ReceivedMessage(receipt_handle=entry_id, body=fields or {}))
        except RedisError as e:
            raise QueueError(f"Failed to receive from {self.stream}: {e}") from e
        return received

    async def acknowledge(self, receipt_handle: str) -> None:
        try:
            pipe = self.redis.pipeline(transaction=True)
            pipe.xack(self.stream, self.group, receipt_handle)
            pipe.xdel(self.stream, receipt_handle)
            await pipe.execute()
        except RedisError as e:
            raise QueueError(f"Failed to acknowledge {receipt_handle} on {self.stream}: {e}") from e


class QueueClient:
    def __init__(self, search_queue: WorkQueue, case_data_queue: WorkQueue):
        self.search_queue = search_queue
        self.case_data_queue = case_data_queue

    @classmethod
    def from_settings(cls, redis: Redis, settings: AppSettings) -> "QueueClient":
        common_args = dict(
            group=settings.QUEUE_CONSUMER_GROUP,
            visibility_timeout_seconds=settings.QUEUE_VISIBILITY_TIMEOUT_SECONDS,
            dedup_window_seconds=settings.QUEUE_DEDUPLICATION_WINDOW_SECONDS,
            batch_size=settings.SEARCH_QUEUE_BATCH_SIZE,
        )
        return cls(
            WorkQueue(redis, settings.SEARCH_QUEUE_STREAM, **common_args),
            WorkQueue(redis, settings.CASE_DATA_QUEUE_STREAM, **common_args),
        )

    async def ensure_groups(self) -> None:
        await self.search_queue.ensure_group()
        await self.case_data_queue.ensure_group()

    def _queue(self, queue_type: QueueType) -> WorkQueue:
        return self.search_queue if queue_type == QueueType.SEARCH else self.case_data_queue

    async def queue_cases_for_search(self, case_numbers: List[str], user_id: str, user_agent: Optional[str] = None) -> int:
        unique_case_numbers = list(dict.fromkeys(normalize_case_number(c) for c in case_numbers))
        if not unique_case_numbers:
            return 0
        messages = [QueueMessage(case_number=c, user_id=user_id, user_agent=user_agent) for c in unique_case_numbers]
        added = await self.search_queue.enqueue_many(messages)
        logger.info(f"[{user_id}] Queued {added} of {len(unique_case_numbers)} case(s) for search.")
        return added

    async def queue_case_for_data_retrieval(
        self, case_number: str, case_id: str, user_id: str, user_agent: Optional[str] = None
    ) -> bool:
        message = QueueMessage(
            case_number=normalize_case_number(case_number), user_id=user_id, user_agent=user_agent, case_id=case_id
        )
        added = await self.case_data_queue.enqueue_one(message)
        logger.info(f"[{case_number}] Queued for data retrieval (case id {case_id}, added={added}).")
        return added

    async def receive_search(self, consumer: str, max_messages: int = 1) -> List[ReceivedMessage]:
        return await self.search_queue.receive(consumer, max_messages)

    async def acknowledge(self, receipt_handle: str, queue_type: QueueType = QueueType.SEARCH) -> None:
        await self._queue(queue_type).acknowledge(receipt_handle)
