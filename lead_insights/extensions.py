"""
Shared client instances — Redis and the RQ scoring queue.

redis.from_url() does not connect until first use, so importing this module is
always safe (even when Redis is down during tests).
"""
import logging

import redis

from lead_insights.config import REDIS_URL, SCORING_QUEUE

logger = logging.getLogger('lead_insights.extensions')

# ── Redis ─────────────────────────────────────────────────────────────────────
redis_client = redis.from_url(REDIS_URL, decode_responses=True)

# ── RQ (lazy, so imports never touch Redis) ─────────────────────────────────
# RQ stores pickled job payloads, so it needs its own non-decoding connection.
_queue = None


def get_queue():
    """Return the RQ queue used for score triggers and retries."""
    global _queue
    if _queue is None:
        from rq import Queue
        _queue = Queue(SCORING_QUEUE, connection=redis.from_url(REDIS_URL))
        logger.info("RQ queue '%s' initialized", SCORING_QUEUE)
    return _queue
