"""
Recalculation service — turns an activity trigger into a persisted score.

Flow for one trigger (lead_id, organization_id, activity_id):
  1. Validate: the lead exists and belongs to the organization, the activity
     exists for that lead.
  2. Idempotency: if a LeadScore already exists for the activity, return it.
  3. Acquire the per-lead lock (bounded wait), re-check idempotency.
  4. Load the activity window, run the engine, check the overall budget.
  5. Append the LeadScore and update the lead's cached score atomically.
  6. Release the lock, then publish lead.scored and stamp published_at.
     A duplicate trigger for a score that was never published (crash
     between commit and publish) publishes it.

Retryable failures (lock wait, overall timeout, persistence) are requeued with
exponential backoff up to MAX_RECOMPUTE_RETRIES, then dead-lettered. Missing
leads/activities are dropped after logging. A tenant mismatch is dead-lettered
and re-raised, never retried.

Triggers reach process_trigger() as RQ jobs on the scoring queue.
"""
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional

from lead_insights.config import (
    MAX_RECOMPUTE_RETRIES, RETRY_BACKOFF_BASE_SECONDS, RETRY_BACKOFF_MAX_SECONDS,
    SCORING_JOB_TIMEOUT, LEAD_SCORED_WEBHOOK_URL,
)
from lead_insights.errors import (
    ScoringError, ValidationError, NotFoundError, TenantMismatchError, RecomputeTimeoutError,
)
from lead_insights.scoring.engine import ScoringEngine

logger = logging.getLogger('scoring.recalculation')


@dataclass(frozen=True)
class TriggerRequest:
    lead_id: str
    organization_id: str
    activity_id: str

    def log_extra(self, **kwargs) -> Dict:
        return {
            'lead_id': self.lead_id,
            'organization_id': self.organization_id,
            'activity_id': self.activity_id,
            **kwargs,
        }


def parse_trigger(payload, activity_id: Optional[str] = None) -> TriggerRequest:
    """
    Build a TriggerRequest from a JSON body ({leadId, organizationId, activityId}).

    activity_id (from the URL) wins when the body omits it; if both are given
    they must agree.
    """
    if not isinstance(payload, dict):
        raise ValidationError('Trigger payload must be a JSON object')

    body_activity = payload.get('activityId')
    if activity_id and body_activity and body_activity != activity_id:
        raise ValidationError('activityId in body does not match the URL')

    values = {
        'leadId': payload.get('leadId'),
        'organizationId': payload.get('organizationId'),
        'activityId': activity_id or body_activity,
    }
    missing = [name for name, value in values.items() if not isinstance(value, str) or not value.strip()]
    if missing:
        raise ValidationError(f"Missing or invalid field(s): {', '.join(missing)}")

    return TriggerRequest(
        lead_id=values['leadId'].strip(),
        organization_id=values['organizationId'].strip(),
        activity_id=values['activityId'].strip(),
    )


def backoff_seconds(attempt: int) -> float:
    """Delay before retry number attempt+1: base × 2^attempt, capped."""
    return min(RETRY_BACKOFF_MAX_SECONDS, RETRY_BACKOFF_BASE_SECONDS * (2 ** attempt))


def _utcnow():
    return datetime.now(timezone.utc)


class RecalculationService:
    """
    Usage:
        service = RecalculationService(store, locks, publisher=publisher, pending=pending)
        record = service.process(TriggerRequest(lead_id, org_id, activity_id))

    Collaborators are injected; `requeue(request, attempt, delay_seconds)` and
    `on_dead_letter(record)` default to no-ops so the service can run inline.
    """

    def __init__(self, store, locks, engine: Optional[ScoringEngine] = None, publisher=None, pending=None,
                 requeue: Optional[Callable] = None, on_dead_letter: Optional[Callable] = None,
                 republish: Optional[Callable] = None, clock: Callable[[], datetime] = _utcnow,
                 max_retries: int = MAX_RECOMPUTE_RETRIES):
        self.store = store
        self.locks = locks
        self.engine = engine or ScoringEngine()
        self.publisher = publisher
        self.pending = pending
        self.requeue = requeue
        self.on_dead_letter = on_dead_letter
        self.republish = republish
        self.clock = clock
        self.max_retries = max_retries

    # ── Entry point ───────────────────────────────────────────────────

    def process(self, request: TriggerRequest, attempt: int = 0) -> Optional[Dict]:
        """
        Score the lead for one trigger. Returns the LeadScore record, or None
        when the trigger was dropped, rescheduled, or dead-lettered.
        """
        extra = request.log_extra(attempt=attempt)
        try:
            record, created = self._process(request)
        except TenantMismatchError as e:
            logger.error("Rejected trigger: %s", e, extra=extra)
            self._dead_letter(request, str(e), attempt + 1)
            raise
        except (NotFoundError, ValidationError) as e:
            logger.warning("Dropping trigger for activity %s: %s", request.activity_id, e, extra=extra)
            self._clear_pending(request)
            return None
        except ScoringError as e:
            if not e.retryable:
                logger.error("Trigger failed permanently: %s", e, extra=extra)
                self._dead_letter(request, str(e), attempt + 1)
                return None
            self._retry_or_dead_letter(request, attempt, e)
            return None

        self._clear_pending(request)
        if not created:
            logger.info("Activity %s already scored (score %s), returning existing record",
                        request.activity_id, record['scoreId'], extra=extra)
        if created or record.get('publishedAt') is None:
            self.publish(record)
        return record

    def _process(self, request: TriggerRequest):
        settings = self.store.load_settings(request.organization_id)
        lead = self.store.load_lead(request.organization_id, request.lead_id)

        existing = self.store.find_score_for_activity(request.organization_id, request.lead_id, request.activity_id)
        if existing is not None:
            return existing, False

        if not self.store.activity_exists(request.organization_id, request.lead_id, request.activity_id):
            raise NotFoundError('activity', request.activity_id)

        budget_ms = settings.recompute_timeout_ms
        with self.locks.hold(request.lead_id, budget_ms / 1000.0):
            # Another worker may have scored this activity while we waited
            existing = self.store.find_score_for_activity(
                request.organization_id, request.lead_id, request.activity_id,
            )
            if existing is not None:
                return existing, False

            started = time.monotonic()
            now = self.clock()
            window = self.store.load_window(
                request.organization_id, request.lead_id, now, settings.activity_window_days,
            )
            computation = self.engine.compute(lead, window, settings)

            elapsed_ms = (time.monotonic() - started) * 1000.0
            if elapsed_ms > budget_ms:
                raise RecomputeTimeoutError(request.lead_id, budget_ms)

            record, created = self.store.append_score(
                request.organization_id, request.lead_id, request.activity_id, computation, now=now,
            )

        if created:
            logger.info("Lead %s scored %.2f (confidence %.3f, tier %s) in %.0f ms",
                        request.lead_id, record['score'], record['confidence'], record['tier'], elapsed_ms,
                        extra=request.log_extra(score_id=record['scoreId']))
        return record, created

    # ── Publishing ────────────────────────────────────────────────────

    def publish(self, record: Dict, attempt: int = 0) -> bool:
        """Emit lead.scored for a committed record. Failure reschedules, never rolls back."""
        if self.publisher is None:
            return False
        from lead_insights.services.publisher import build_lead_scored_event
        try:
            self.publisher.publish(build_lead_scored_event(record))
        except Exception as e:
            logger.error("Publishing lead.scored for score %s failed: %s", record['scoreId'], e,
                         extra={'lead_id': record['leadId'], 'score_id': record['scoreId']})
            if self.republish is not None and attempt < self.max_retries:
                try:
                    self.republish(record, attempt + 1, backoff_seconds(attempt))
                except Exception:
                    logger.error("Could not reschedule lead.scored for score %s", record['scoreId'],
                                 exc_info=True, extra={'score_id': record['scoreId']})
            return False
        try:
            self.store.mark_published(record['organizationId'], record['scoreId'])
        except ScoringError as e:
            # Unmarked scores are published again by the next duplicate trigger
            logger.warning("Could not mark score %s published: %s", record['scoreId'], e,
                           extra={'score_id': record['scoreId']})
        return True

    # ── Failure handling ──────────────────────────────────────────────

    def _retry_or_dead_letter(self, request: TriggerRequest, attempt: int, error: ScoringError):
        extra = request.log_extra(attempt=attempt)
        if attempt < self.max_retries and self.requeue is not None:
            delay = backoff_seconds(attempt)
            logger.warning("Retryable failure (%s); retry %d/%d in %.0fs",
                           error, attempt + 1, self.max_retries, delay, extra=extra)
            self.requeue(request, attempt + 1, delay)
            return
        logger.error("Giving up after %d attempt(s): %s", attempt + 1, error, extra=extra)
        self._dead_letter(request, str(error), attempt + 1)

    def _dead_letter(self, request: TriggerRequest, reason: str, attempts: int):
        self._clear_pending(request)
        try:
            record = self.store.record_dead_letter(
                request.organization_id, request.lead_id, request.activity_id, reason, attempts,
            )
        except ScoringError as e:
            logger.error("Could not record dead letter: %s", e, extra=request.log_extra())
            return None
        if self.on_dead_letter is not None:
            self.on_dead_letter(record)
        return record

    def _clear_pending(self, request: TriggerRequest):
        if self.pending is not None:
            self.pending.clear(request.lead_id, request.activity_id)


# ── Wiring for the web process and RQ workers ───────────────────────────────

def build_service() -> RecalculationService:
    """Service wired to the shared Redis client, the database, and RQ."""
    from lead_insights.extensions import redis_client
    from lead_insights.services.circuit_breaker import get_breaker
    from lead_insights.services.locks import LeadLockRegistry
    from lead_insights.services.notifications import notify_dead_letter
    from lead_insights.services.pending import PendingTracker
    from lead_insights.services.publisher import LeadScoredPublisher
    from lead_insights.services.store import ScoreStore

    return RecalculationService(
        store=ScoreStore(),
        locks=LeadLockRegistry(redis_client),
        publisher=LeadScoredPublisher(
            redis_client,
            webhook_url=LEAD_SCORED_WEBHOOK_URL,
            breaker=get_breaker('lead_scored_webhook'),
        ),
        pending=PendingTracker(redis_client),
        requeue=enqueue_retry,
        on_dead_letter=notify_dead_letter,
        republish=enqueue_republish,
    )


def submit_trigger(request: TriggerRequest):
    """Mark the trigger pending and enqueue it. Returns the RQ job."""
    from lead_insights.extensions import get_queue, redis_client
    from lead_insights.services.pending import PendingTracker

    pending = PendingTracker(redis_client)
    pending.mark(request.lead_id, request.activity_id)
    try:
        job = get_queue().enqueue(
            process_trigger, request.lead_id, request.organization_id, request.activity_id,
            job_timeout=SCORING_JOB_TIMEOUT,
            description=f'score lead {request.lead_id} for activity {request.activity_id}',
        )
    except Exception:
        pending.clear(request.lead_id, request.activity_id)
        raise
    logger.info("Enqueued score trigger (job %s)", job.id, extra=request.log_extra())
    return job


def enqueue_retry(request: TriggerRequest, attempt: int, delay_seconds: float):
    from lead_insights.extensions import get_queue
    get_queue().enqueue_in(
        timedelta(seconds=delay_seconds),
        process_trigger, request.lead_id, request.organization_id, request.activity_id,
        attempt=attempt,
        job_timeout=SCORING_JOB_TIMEOUT,
    )


def enqueue_republish(record: Dict, attempt: int, delay_seconds: float):
    from lead_insights.extensions import get_queue
    get_queue().enqueue_in(
        timedelta(seconds=delay_seconds),
        republish_score, record['organizationId'], record['scoreId'],
        attempt=attempt,
        job_timeout=SCORING_JOB_TIMEOUT,
    )


# ── RQ jobs ──────────────────────────────────────────────────────────────────

def process_trigger(lead_id: str, organization_id: str, activity_id: str, attempt: int = 0):
    """RQ job: score one trigger."""
    request = TriggerRequest(lead_id=lead_id, organization_id=organization_id, activity_id=activity_id)
    return build_service().process(request, attempt=attempt)


def republish_score(organization_id: str, score_id: str, attempt: int = 0):
    """RQ job: re-emit lead.scored for an already committed score."""
    service = build_service()
    record = service.store.get_score(organization_id, score_id)
    if record is None:
        logger.warning("Score %s no longer exists; nothing to republish", score_id,
                       extra={'organization_id': organization_id, 'score_id': score_id})
        return False
    if record.get('publishedAt') is not None:
        return True
    return service.publish(record, attempt=attempt)
