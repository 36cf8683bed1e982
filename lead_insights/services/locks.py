"""
Per-lead mutual exclusion backed by redis-py's Lock.

At most one recomputation per lead runs at a time, across every worker
process. Locks carry a TTL (tenant recompute budget + margin) so a crashed
worker cannot hold a lead forever.
"""
import logging
from contextlib import contextmanager

from redis.exceptions import LockError, RedisError

from lead_insights.config import LOCK_PREFIX, LOCK_WAIT_SECONDS, LOCK_TTL_MARGIN_SECONDS
from lead_insights.errors import LockUnavailableError

logger = logging.getLogger('services.locks')


class LeadLockRegistry:
    """
    Usage:
        locks = LeadLockRegistry(redis_client)
        with locks.hold(lead_id, budget_seconds):
            ...  # exclusive for this lead
    """

    def __init__(self, redis_client, wait_seconds=LOCK_WAIT_SECONDS, ttl_margin_seconds=LOCK_TTL_MARGIN_SECONDS):
        self.redis = redis_client
        self.wait_seconds = wait_seconds
        self.ttl_margin_seconds = ttl_margin_seconds

    def key(self, lead_id):
        return f'{LOCK_PREFIX}:{lead_id}'

    @contextmanager
    def hold(self, lead_id, budget_seconds):
        """Raises LockUnavailableError when the lock is held elsewhere or Redis is unreachable."""
        try:
            lock = self.redis.lock(
                self.key(lead_id),
                timeout=budget_seconds + self.ttl_margin_seconds,
                blocking_timeout=self.wait_seconds,
            )
            acquired = lock.acquire()
        except RedisError as e:
            logger.warning("Redis error acquiring lock for lead %s: %s", lead_id, e,
                           extra={'lead_id': lead_id})
            raise LockUnavailableError(lead_id, self.wait_seconds) from e
        if not acquired:
            raise LockUnavailableError(lead_id, self.wait_seconds)
        try:
            yield lock
        finally:
            try:
                lock.release()
            except LockError:
                logger.warning("Lock for lead %s expired before release", lead_id,
                               extra={'lead_id': lead_id})
            except RedisError as e:
                # TTL still bounds how long the lead stays locked
                logger.warning("Redis error releasing lock for lead %s: %s", lead_id, e,
                               extra={'lead_id': lead_id})
