"""
Circuit breaker with Redis-backed state, shared by every worker process.

States:
  - CLOSED    → calls pass through
  - OPEN      → failure_threshold consecutive failures; calls short-circuit
  - HALF_OPEN → reset_timeout elapsed since the breaker opened; one trial call
                passes (claimed with SET NX), the rest short-circuit until it
                succeeds (CLOSED) or fails (OPEN again)

Wraps the outbound collaborators (lead.scored webhook, Slack). Counters are
kept in a Redis hash and surfaced by /api/health.
"""
import logging
import time

import redis

logger = logging.getLogger('services.circuit_breaker')

CLOSED = 'closed'
OPEN = 'open'
HALF_OPEN = 'half_open'


class CircuitOpenError(Exception):
    """Raised instead of calling through an open breaker."""
    def __init__(self, name, retry_after=None):
        self.name = name
        self.retry_after = retry_after
        super().__init__(f"Circuit breaker '{name}' is open")


class CircuitBreaker:
    """
    Usage:
        cb = CircuitBreaker('lead_scored_webhook', redis_client, failure_threshold=5, reset_timeout=60)
        cb.call(requests.post, url, json=body, timeout=5)
    """

    PREFIX = 'breaker'

    def __init__(self, name, redis_client, failure_threshold=3, reset_timeout=300):
        self.name = name
        self.redis = redis_client
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout

    def _key(self, suffix):
        return f'{self.PREFIX}:{self.name}:{suffix}'

    # ── State ─────────────────────────────────────────────────────────

    def _opened_at(self):
        value = self.redis.get(self._key('opened_at'))
        return float(value) if value else None

    @property
    def state(self):
        try:
            current = self.redis.get(self._key('state')) or CLOSED
            if current == OPEN:
                opened_at = self._opened_at()
                if opened_at and time.time() - opened_at > self.reset_timeout:
                    self.redis.set(self._key('state'), HALF_OPEN)
                    return HALF_OPEN
            return current
        except redis.RedisError:
            # Redis down: let calls through rather than blocking delivery
            return CLOSED

    @property
    def failure_count(self):
        try:
            return int(self.redis.get(self._key('failures')) or 0)
        except redis.RedisError:
            return 0

    def get_health(self):
        try:
            stats = self.redis.hgetall(self._key('stats')) or {}
        except redis.RedisError:
            stats = {}
        return {
            'name': self.name,
            'state': self.state,
            'failure_count': self.failure_count,
            'failure_threshold': self.failure_threshold,
            'reset_timeout': self.reset_timeout,
            'total_success': int(stats.get('success', 0)),
            'total_failure': int(stats.get('failure', 0)),
            'last_error': stats.get('last_error', ''),
        }

    # ── Calls ─────────────────────────────────────────────────────────

    def _claim_trial(self):
        try:
            return bool(self.redis.set(self._key('trial'), '1', nx=True, ex=max(1, int(self.reset_timeout))))
        except redis.RedisError:
            return True

    def call(self, func, *args, **kwargs):
        state = self.state
        if state == HALF_OPEN and not self._claim_trial():
            raise CircuitOpenError(self.name)
        if state == OPEN:
            retry_after = None
            try:
                opened_at = self._opened_at()
                if opened_at:
                    retry_after = max(0.0, self.reset_timeout - (time.time() - opened_at))
            except redis.RedisError:
                pass
            raise CircuitOpenError(self.name, retry_after=retry_after)

        try:
            result = func(*args, **kwargs)
        except Exception as e:
            self._on_failure(e, reopen=state == HALF_OPEN)
            raise
        self._on_success()
        return result

    def _on_success(self):
        try:
            pipe = self.redis.pipeline()
            pipe.set(self._key('state'), CLOSED)
            pipe.set(self._key('failures'), 0)
            pipe.hincrby(self._key('stats'), 'success', 1)
            pipe.delete(self._key('trial'))
            pipe.execute()
        except redis.RedisError:
            logger.debug("Breaker '%s' could not record success", self.name)

    def _on_failure(self, error, reopen=False):
        try:
            failures = self.redis.incr(self._key('failures'))
            pipe = self.redis.pipeline()
            pipe.hincrby(self._key('stats'), 'failure', 1)
            pipe.hset(self._key('stats'), 'last_error', str(error)[:200])
            opened = reopen or failures >= self.failure_threshold
            if opened:
                pipe.set(self._key('state'), OPEN)
                pipe.set(self._key('opened_at'), str(time.time()))
            pipe.delete(self._key('trial'))
            pipe.execute()
        except redis.RedisError:
            logger.debug("Breaker '%s' could not record failure", self.name)
            return
        if opened:
            logger.warning("Circuit '%s' opened after %d failures: %s", self.name, failures, error)
        else:
            logger.info("Circuit '%s' failure %d/%d: %s", self.name, failures, self.failure_threshold, error)

    def reset(self):
        try:
            pipe = self.redis.pipeline()
            pipe.set(self._key('state'), CLOSED)
            pipe.set(self._key('failures'), 0)
            pipe.delete(self._key('opened_at'))
            pipe.delete(self._key('trial'))
            pipe.execute()
            logger.info("Circuit '%s' reset to closed", self.name)
        except redis.RedisError as e:
            logger.error("Failed to reset circuit '%s': %s", self.name, e)


# ── Registry ──────────────────────────────────────────────────────────────

_registry = {}

BREAKER_DEFAULTS = {
    'lead_scored_webhook': {'failure_threshold': 5, 'reset_timeout': 60},
    'slack': {'failure_threshold': 3, 'reset_timeout': 300},
}


def get_breaker(name, redis_client=None, **kwargs):
    """Named singleton; created on first use with BREAKER_DEFAULTS."""
    if name not in _registry:
        if redis_client is None:
            from lead_insights.extensions import redis_client
        options = {**BREAKER_DEFAULTS.get(name, {}), **kwargs}
        _registry[name] = CircuitBreaker(name, redis_client, **options)
    return _registry[name]


def get_all_breakers():
    return dict(_registry)


def init_breakers(redis_client):
    breakers = {name: CircuitBreaker(name, redis_client, **options) for name, options in BREAKER_DEFAULTS.items()}
    _registry.update(breakers)
    return breakers
