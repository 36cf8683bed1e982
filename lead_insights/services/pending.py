"""
Tracks accepted-but-unprocessed triggers per lead in a Redis set.

A non-empty set means a newer score is on its way, so reads flag the
current score as stale.
"""
import logging

import redis

logger = logging.getLogger('services.pending')

PENDING_TTL_SECONDS = 24 * 3600


class PendingTracker:

    def __init__(self, redis_client):
        self.redis = redis_client

    @staticmethod
    def key(lead_id):
        return f'score:pending:{lead_id}'

    def mark(self, lead_id, activity_id):
        try:
            self.redis.sadd(self.key(lead_id), activity_id)
            self.redis.expire(self.key(lead_id), PENDING_TTL_SECONDS)
        except redis.RedisError as e:
            logger.warning("Could not mark trigger %s pending: %s", activity_id, e,
                           extra={'lead_id': lead_id, 'activity_id': activity_id})

    def clear(self, lead_id, activity_id):
        try:
            self.redis.srem(self.key(lead_id), activity_id)
        except redis.RedisError as e:
            logger.warning("Could not clear pending trigger %s: %s", activity_id, e,
                           extra={'lead_id': lead_id, 'activity_id': activity_id})

    def is_pending(self, lead_id):
        try:
            return bool(self.redis.scard(self.key(lead_id)))
        except redis.RedisError as e:
            logger.warning("Pending lookup failed for lead %s: %s", lead_id, e)
            return False
