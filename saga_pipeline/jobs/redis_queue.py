"""Durable job queue on Redis.

Key layout under ``bull:<queue-name>``:

    id          counter for job ids
    job:<id>    hash with the job record
    wait        list of waiting ids (LPUSH on enqueue, taken from the tail)
    active      sorted set, score = claim time (ms)
    completed   sorted set, score = finish time (ms)
    failed      sorted set, score = finish time (ms)
    delayed     sorted set, score = due time (ms)

State changes run inside WATCH/MULTI transactions, so two workers can never
claim the same job and a job is never in two state sets at once.
"""

import functools
import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from redis.asyncio import Redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError
from redis.exceptions import WatchError

from saga_pipeline.errors import InvalidTransition, NotFound, QueueUnavailable
from saga_pipeline.jobs.models import JobState, QueueJob, SagaJobData
from saga_pipeline.jobs.queue import JobQueue
from saga_pipeline.sagas.models import utcnow

logger = logging.getLogger(__name__)

_SORTED_SET_STATES = (JobState.ACTIVE, JobState.COMPLETED, JobState.FAILED, JobState.DELAYED)


def _ms(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


def _broker_errors(fn):
    """Translate connection-level Redis errors into QueueUnavailable."""

    @functools.wraps(fn)
    async def wrapper(self, *args, **kwargs):
        try:
            return await fn(self, *args, **kwargs)
        except (RedisConnectionError, RedisTimeoutError) as exc:
            raise QueueUnavailable(f"Redis unavailable during {fn.__name__}: {exc}") from exc

    return wrapper


def job_from_hash(raw: Dict[str, str]) -> QueueJob:
    return QueueJob(
        id=raw["id"],
        data=SagaJobData(saga_id=raw["saga_id"], source_id=raw["source_id"]),
        state=JobState(raw["state"]),
        attempts_made=int(raw.get("attempts_made") or 0),
        failed_reason=raw.get("failed_reason") or None,
        created_at=raw["created_at"],
        processed_at=raw.get("processed_at") or None,
        finished_at=raw.get("finished_at") or None,
        process_at=raw.get("process_at") or None,
    )


class RedisJobQueue(JobQueue):
    """BullMQ-style queue. The client should be built with decode_responses=True."""

    def __init__(self, client: Redis, name: str = "saga-generation", prefix: str = "bull"):
        self._redis = client
        self._base = f"{prefix}:{name}"

    def _key(self, suffix: str) -> str:
        return f"{self._base}:{suffix}"

    def _job_key(self, job_id: str) -> str:
        return self._key(f"job:{job_id}")

    def _state_key(self, state: JobState) -> str:
        return self._key("wait" if state == JobState.WAITING else state.value)

    @_broker_errors
    async def enqueue(self, saga_id: str, source_id: str, delay_seconds: float = 0) -> str:
        job_id = str(await self._redis.incr(self._key("id")))
        now = utcnow()
        record = {
            "id": job_id,
            "saga_id": saga_id,
            "source_id": source_id,
            "state": JobState.WAITING.value,
            "attempts_made": 0,
            "created_at": now.isoformat(),
        }
        async with self._redis.pipeline(transaction=True) as pipe:
            if delay_seconds > 0:
                process_at = now + timedelta(seconds=delay_seconds)
                record["state"] = JobState.DELAYED.value
                record["process_at"] = process_at.isoformat()
                pipe.hset(self._job_key(job_id), mapping=record)
                pipe.zadd(self._state_key(JobState.DELAYED), {job_id: _ms(process_at)})
            else:
                pipe.hset(self._job_key(job_id), mapping=record)
                pipe.lpush(self._state_key(JobState.WAITING), job_id)
            await pipe.execute()
        logger.info("Enqueued job %s for saga %s (%s)", job_id, saga_id, record["state"])
        return job_id

    async def _promote_delayed(self) -> None:
        delayed_key = self._state_key(JobState.DELAYED)
        due = await self._redis.zrangebyscore(delayed_key, 0, _ms(utcnow()))
        for job_id in due:
            async with self._redis.pipeline(transaction=True) as pipe:
                try:
                    await pipe.watch(delayed_key)
                    if await pipe.zscore(delayed_key, job_id) is None:
                        continue
                    pipe.multi()
                    pipe.zrem(delayed_key, job_id)
                    pipe.lpush(self._state_key(JobState.WAITING), job_id)
                    pipe.hset(self._job_key(job_id), "state", JobState.WAITING.value)
                    await pipe.execute()
                except WatchError:
                    # another worker promoted it first
                    continue

    @_broker_errors
    async def claim_next(self) -> Optional[QueueJob]:
        await self._promote_delayed()
        wait_key = self._state_key(JobState.WAITING)
        async with self._redis.pipeline(transaction=True) as pipe:
            while True:
                try:
                    await pipe.watch(wait_key)
                    job_id = await pipe.lindex(wait_key, -1)
                    if job_id is None:
                        return None
                    now = utcnow()
                    pipe.multi()
                    pipe.rpop(wait_key)
                    pipe.zadd(self._state_key(JobState.ACTIVE), {job_id: _ms(now)})
                    pipe.hset(
                        self._job_key(job_id),
                        mapping={"state": JobState.ACTIVE.value, "processed_at": now.isoformat()},
                    )
                    pipe.hincrby(self._job_key(job_id), "attempts_made", 1)
                    await pipe.execute()
                    break
                except WatchError:
                    continue
        job = await self.get(job_id)
        if job is None:
            # the hash vanished between claim and read
            logger.warning("Claimed job %s has no record, skipping", job_id)
            await self._redis.zrem(self._state_key(JobState.ACTIVE), job_id)
            return None
        return job

    async def _finish(self, job_id: str, target: JobState, reason: Optional[str] = None) -> bool:
        job_key = self._job_key(job_id)
        async with self._redis.pipeline(transaction=True) as pipe:
            while True:
                try:
                    await pipe.watch(job_key)
                    raw_state = await pipe.hget(job_key, "state")
                    if raw_state is None:
                        raise NotFound("Job", job_id)
                    state = JobState(raw_state)
                    if state.is_terminal:
                        return False
                    if target == JobState.COMPLETED and state != JobState.ACTIVE:
                        raise InvalidTransition(f"Job {job_id} is {state.value}, not active")
                    now = utcnow()
                    fields = {"state": target.value, "finished_at": now.isoformat()}
                    if reason is not None:
                        fields["failed_reason"] = reason
                    pipe.multi()
                    pipe.lrem(self._state_key(JobState.WAITING), 0, job_id)
                    pipe.zrem(self._state_key(JobState.ACTIVE), job_id)
                    pipe.zrem(self._state_key(JobState.DELAYED), job_id)
                    pipe.zadd(self._state_key(target), {job_id: _ms(now)})
                    pipe.hset(job_key, mapping=fields)
                    await pipe.execute()
                    return True
                except WatchError:
                    continue

    @_broker_errors
    async def mark_completed(self, job_id: str) -> bool:
        return await self._finish(job_id, JobState.COMPLETED)

    @_broker_errors
    async def mark_failed(self, job_id: str, reason: str) -> bool:
        return await self._finish(job_id, JobState.FAILED, reason)

    @_broker_errors
    async def get(self, job_id: str) -> Optional[QueueJob]:
        raw = await self._redis.hgetall(self._job_key(job_id))
        return job_from_hash(raw) if raw else None

    @_broker_errors
    async def list_by_state(self, state: JobState) -> List[QueueJob]:
        state = JobState(state)
        if state == JobState.WAITING:
            ids = list(reversed(await self._redis.lrange(self._state_key(state), 0, -1)))
        else:
            ids = await self._redis.zrange(self._state_key(state), 0, -1)
        if not ids:
            return []
        async with self._redis.pipeline(transaction=False) as pipe:
            for job_id in ids:
                pipe.hgetall(self._job_key(job_id))
            raws = await pipe.execute()
        return [job_from_hash(raw) for raw in raws if raw]

    @_broker_errors
    async def counts(self) -> Dict[JobState, int]:
        async with self._redis.pipeline(transaction=False) as pipe:
            pipe.llen(self._state_key(JobState.WAITING))
            for state in _SORTED_SET_STATES:
                pipe.zcard(self._state_key(state))
            results = await pipe.execute()
        counts = {JobState.WAITING: results[0]}
        counts.update(zip(_SORTED_SET_STATES, results[1:]))
        return counts

    @_broker_errors
    async def remove(self, job_id: str) -> QueueJob:
        job_key = self._job_key(job_id)
        while True:
            job = await self.get(job_id)
            if job is None:
                raise NotFound("Job", job_id)
            if job.state == JobState.ACTIVE:
                # never drop an active job without a terminal record
                await self._finish(job_id, JobState.FAILED, "Removed while active")
                continue
            async with self._redis.pipeline(transaction=True) as pipe:
                try:
                    await pipe.watch(job_key)
                    if await pipe.hget(job_key, "state") != job.state.value:
                        continue
                    pipe.multi()
                    pipe.delete(job_key)
                    pipe.lrem(self._state_key(JobState.WAITING), 0, job_id)
                    for state in _SORTED_SET_STATES:
                        pipe.zrem(self._state_key(state), job_id)
                    await pipe.execute()
                except WatchError:
                    continue
            logger.info("Removed job %s (%s)", job_id, job.state.value)
            return job

    async def ping(self) -> bool:
        try:
            return bool(await self._redis.ping())
        except (RedisConnectionError, RedisTimeoutError):
            return False

    async def close(self) -> None:
        await self._redis.aclose()
