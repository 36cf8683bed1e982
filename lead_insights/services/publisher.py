"""
lead.scored event publishing.

Every committed score is appended to the Redis list `events:lead.scored`
(consumers BLPOP it). When LEAD_SCORED_WEBHOOK_URL is set the event is also
POSTed there through a circuit breaker; undelivered webhook bodies go to a
retry list and are redelivered on the next successful publish.

Delivery is at-least-once. Consumers deduplicate on scoreId.
"""
import json
import logging

import requests

from lead_insights.config import LEAD_SCORED_STREAM, LEAD_SCORED_RETRY_LIST

logger = logging.getLogger('services.publisher')

EVENT_TYPE = 'lead.scored'


def build_lead_scored_event(record):
    """Event payload for a persisted LeadScore dict."""
    return {
        'event': EVENT_TYPE,
        'leadId': record['leadId'],
        'organizationId': record['organizationId'],
        'score': record['score'],
        'confidence': record['confidence'],
        'scoreId': record['scoreId'],
        'createdAt': record['createdAt'],
    }


class LeadScoredPublisher:

    def __init__(self, redis_client, webhook_url=None, breaker=None, redeliver_batch=20):
        self.redis = redis_client
        self.webhook_url = webhook_url
        self.breaker = breaker
        self.redeliver_batch = redeliver_batch

    def publish(self, event):
        """
        Append the event to the stream, then try the webhook.

        A Redis failure propagates so the caller can reschedule. A webhook
        failure does not: the body is parked on the retry list.
        """
        body = json.dumps(event, sort_keys=True)
        self.redis.rpush(LEAD_SCORED_STREAM, body)
        logger.info("Published %s for lead %s (score %s)", EVENT_TYPE, event['leadId'], event['score'],
                    extra={'lead_id': event['leadId'], 'score_id': event['scoreId']})

        if not self.webhook_url:
            return True
        if self._deliver(body):
            self.redeliver_pending()
            return True
        self.redis.rpush(LEAD_SCORED_RETRY_LIST, body)
        return False

    def _post(self, body):
        response = requests.post(
            self.webhook_url, data=body, headers={'Content-Type': 'application/json'}, timeout=5,
        )
        response.raise_for_status()
        return response

    def _deliver(self, body):
        try:
            if self.breaker is not None:
                self.breaker.call(self._post, body)
            else:
                self._post(body)
            return True
        except Exception as e:
            logger.warning("Webhook delivery of %s failed: %s", EVENT_TYPE, e)
            return False

    def redeliver_pending(self):
        """Retry parked webhook bodies; stops at the first failure. Returns count delivered."""
        if not self.webhook_url:
            return 0
        delivered = 0
        for _ in range(self.redeliver_batch):
            body = self.redis.lpop(LEAD_SCORED_RETRY_LIST)
            if body is None:
                break
            if not self._deliver(body):
                self.redis.lpush(LEAD_SCORED_RETRY_LIST, body)
                break
            delivered += 1
        if delivered:
            logger.info("Redelivered %d parked %s event(s)", delivered, EVENT_TYPE)
        return delivered
