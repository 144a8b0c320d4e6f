"""Per-device state kept in Redis.

Keys:
    STAT:<dev_id>:<unix-seconds>  status snapshot (JSON), expires after the retention window
    SCHED:<dev_id>                 schedule (JSON array), no expiry
"""

from __future__ import annotations

import logging
from typing import Sequence

from pydantic import TypeAdapter, ValidationError
from redis.asyncio import BlockingConnectionPool, Redis
from redis.exceptions import RedisError

from .config import STATUS_RETENTION_SECONDS, Settings
from .errors import ScheduleNotFound, StoreError
from .schemas import ScheduleEntry, StatusRecord

logger = logging.getLogger(__name__)

STATUS_PREFIX = "STAT"
SCHEDULE_PREFIX = "SCHED"

_schedule_adapter = TypeAdapter(list[ScheduleEntry])


def status_key(dev_id: str, received_at: int) -> str:
    return f"{STATUS_PREFIX}:{dev_id}:{received_at}"


def schedule_key(dev_id: str) -> str:
    return f"{SCHEDULE_PREFIX}:{dev_id}"


def create_redis(settings: Settings) -> Redis:
    """Build a client over a bounded pool; borrowers wait when it is exhausted."""

    pool = BlockingConnectionPool.from_url(
        settings.redis_url,
        max_connections=settings.redis_max_connections,
        timeout=settings.redis_pool_timeout,
        health_check_interval=settings.redis_health_check_interval,
    )
    return Redis(connection_pool=pool)


class DeviceStateStore:
    def __init__(self, redis: Redis, status_ttl: int = STATUS_RETENTION_SECONDS):
        self._redis = redis
        self._status_ttl = status_ttl

    async def put_status(self, dev_id: str, received_at: int, record: StatusRecord) -> str:
        """Write a status snapshot and its expiry in one transaction. Returns the key."""

        key = status_key(dev_id, received_at)
        payload = record.model_dump_json(by_alias=True)
        logger.info("Status key: %s", key)
        logger.debug("Status JSON: %s", payload)

        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                await pipe.set(key, payload).expire(key, self._status_ttl).execute()
        except RedisError as exc:
            raise StoreError(f"Unable to persist status record {key}: {exc}") from exc
        return key

    async def get_status(self, dev_id: str, received_at: int) -> StatusRecord | None:
        key = status_key(dev_id, received_at)
        raw = await self._get(key)
        if raw is None:
            return None
        try:
            return StatusRecord.model_validate_json(raw)
        except ValidationError as exc:
            raise StoreError(f"Unable to parse status record {key}: {exc}") from exc

    async def get_schedule(self, dev_id: str) -> list[ScheduleEntry]:
        """Return the stored schedule; raises ScheduleNotFound for unconfigured devices."""

        key = schedule_key(dev_id)
        logger.info("Sched key: %s", key)
        raw = await self._get(key)
        if raw is None:
            raise ScheduleNotFound(f"No schedule stored under {key}")

        logger.debug("Sched JSON: %s", raw)
        try:
            return _schedule_adapter.validate_json(raw)
        except ValidationError as exc:
            raise StoreError(f"Unable to parse schedule {key}: {exc}") from exc

    async def put_schedule(self, dev_id: str, entries: Sequence[ScheduleEntry]) -> str:
        key = schedule_key(dev_id)
        payload = _schedule_adapter.dump_json(list(entries))
        try:
            await self._redis.set(key, payload)
        except RedisError as exc:
            raise StoreError(f"Unable to write schedule {key}: {exc}") from exc
        return key

    async def close(self) -> None:
        await self._redis.aclose(close_connection_pool=True)

    async def _get(self, key: str) -> bytes | None:
        try:
            return await self._redis.get(key)
        except RedisError as exc:
            raise StoreError(f"Unable to query {key}: {exc}") from exc
