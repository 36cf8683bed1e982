"""Tests for lead_insights.scoring.recalculation — trigger → persisted score."""
import threading
import time
from datetime import timedelta
from unittest.mock import MagicMock, patch

import pytest
import redis
from sqlalchemy.exc import OperationalError

from lead_insights.errors import PersistenceError, TenantMismatchError, ValidationError
from lead_insights.models.dead_letter import DeadLetter
from lead_insights.models.lead import Lead
from lead_insights.models.lead_score import LeadScore
from lead_insights.models.scoring_config import TenantScoringConfig
from lead_insights.scoring import recalculation
from lead_insights.scoring.base import LeadSnapshot
from lead_insights.scoring.engine import ScoringEngine
from lead_insights.scoring.recalculation import (
    RecalculationService, TriggerRequest, backoff_seconds, parse_trigger,
)
from lead_insights.services.locks import LeadLockRegistry
from lead_insights.services.pending import PendingTracker
from lead_insights.services.store import ScoreStore

from conftest import NOW, ORG, OTHER_ORG


@pytest.fixture
def collaborators(fake_redis):
    return {
        'store': ScoreStore(),
        'locks': LeadLockRegistry(fake_redis, wait_seconds=0.05),
        'publisher': MagicMock(),
        'pending': PendingTracker(fake_redis),
        'requeue': MagicMock(),
        'on_dead_letter': MagicMock(),
        'republish': MagicMock(),
        'clock': lambda: NOW,
    }


@pytest.fixture
def make_service(collaborators):
    def _make(**overrides):
        return RecalculationService(**{**collaborators, **overrides})
    return _make


@pytest.fixture
def lead_with_activity(make_lead, make_activity):
    lead = make_lead(industry='Software', company_size=250, job_title='VP Sales', timeframe='this month')
    activity = make_activity(lead, type='meeting', days_ago=1)
    make_activity(lead, type='call', days_ago=3, payload={'sentiment': 'positive'})
    return lead, activity


def lead_snapshot(lead):
    return LeadSnapshot(id=lead.id, organization_id=lead.organization_id)


# ---------------------------------------------------------------------------
# Payload parsing & backoff
# ---------------------------------------------------------------------------

class TestParseTrigger:

    def test_valid(self):
        req = parse_trigger({'leadId': ' lead-1 ', 'organizationId': 'org-1', 'activityId': 'act-1'})
        assert req == TriggerRequest('lead-1', 'org-1', 'act-1')

    def test_url_activity_used_when_body_omits_it(self):
        req = parse_trigger({'leadId': 'lead-1', 'organizationId': 'org-1'}, activity_id='act-9')
        assert req.activity_id == 'act-9'

    def test_body_and_url_must_agree(self):
        with pytest.raises(ValidationError):
            parse_trigger({'leadId': 'l', 'organizationId': 'o', 'activityId': 'a'}, activity_id='b')

    @pytest.mark.parametrize('payload', [
        None,
        'lead-1',
        {},
        {'leadId': 'lead-1', 'organizationId': '   ', 'activityId': 'act-1'},
        {'leadId': 42, 'organizationId': 'org-1', 'activityId': 'act-1'},
    ])
    def test_invalid(self, payload):
        with pytest.raises(ValidationError):
            parse_trigger(payload)


class TestBackoff:

    def test_exponential_then_capped(self):
        assert [backoff_seconds(a) for a in range(5)] == [2, 4, 8, 16, 32]
        assert backoff_seconds(20) == 300


# ---------------------------------------------------------------------------
# Happy path & idempotency
# ---------------------------------------------------------------------------

class TestProcess:

    def test_scores_publishes_and_clears_pending(self, make_service, collaborators, lead_with_activity,
                                                 fake_redis, db_session):
        lead, activity = lead_with_activity
        collaborators['pending'].mark(lead.id, activity.id)
        service = make_service()

        record = service.process(TriggerRequest(lead.id, ORG, activity.id))

        assert record['activityId'] == activity.id
        assert 0 <= record['score'] <= 100
        assert record['explanation']
        event = collaborators['publisher'].publish.call_args[0][0]
        assert event['event'] == 'lead.scored'
        assert event['scoreId'] == record['scoreId']
        assert collaborators['pending'].is_pending(lead.id) is False
        assert fake_redis.lock_events == [('acquire', f'lead-lock:{lead.id}'), ('release', f'lead-lock:{lead.id}')]

        db_session.expire_all()
        assert db_session.get(Lead, lead.id).latest_score_id == record['scoreId']

    def test_duplicate_trigger_returns_existing(self, make_service, collaborators, lead_with_activity, db_session):
        lead, activity = lead_with_activity
        service = make_service()
        request = TriggerRequest(lead.id, ORG, activity.id)

        first = service.process(request)
        second = service.process(request)

        assert second['scoreId'] == first['scoreId']
        assert db_session.query(LeadScore).count() == 1
        assert collaborators['publisher'].publish.call_count == 1

    def test_each_activity_appends_history(self, make_service, make_activity, lead_with_activity, db_session):
        lead, activity = lead_with_activity
        later = make_activity(lead, type='message', days_ago=0.5)
        service = make_service()

        service.process(TriggerRequest(lead.id, ORG, activity.id))
        service.process(TriggerRequest(lead.id, ORG, later.id))

        rows = db_session.query(LeadScore).order_by(LeadScore.sequence).all()
        assert [(r.activity_id, r.sequence) for r in rows] == [(activity.id, 1), (later.id, 2)]

    def test_tenant_weights_apply(self, make_service, lead_with_activity, db_session):
        lead, activity = lead_with_activity
        db_session.add(TenantScoringConfig(
            organization_id=ORG,
            factor_weights={'demographic': 0, 'behavioral': 0, 'temporal': 0, 'conversational': 0},
        ))
        db_session.commit()

        record = make_service().process(TriggerRequest(lead.id, ORG, activity.id))
        assert record['score'] == 50.0
        assert record['confidence'] == 0.0
        assert record['insufficientData'] is True


# ---------------------------------------------------------------------------
# Dropped & rejected triggers
# ---------------------------------------------------------------------------

class TestDroppedTriggers:

    def test_unknown_lead_dropped(self, make_service, collaborators, db_session):
        collaborators['pending'].mark('ghost', 'act-1')
        assert make_service().process(TriggerRequest('ghost', ORG, 'act-1')) is None
        assert collaborators['pending'].is_pending('ghost') is False
        assert db_session.query(DeadLetter).count() == 0
        collaborators['requeue'].assert_not_called()

    def test_unknown_activity_dropped(self, make_service, collaborators, make_lead, db_session):
        lead = make_lead()
        assert make_service().process(TriggerRequest(lead.id, ORG, 'ghost')) is None
        assert db_session.query(LeadScore).count() == 0
        collaborators['requeue'].assert_not_called()

    def test_tenant_mismatch_raises_and_dead_letters(self, make_service, collaborators, lead_with_activity,
                                                     db_session):
        lead, activity = lead_with_activity
        with pytest.raises(TenantMismatchError):
            make_service().process(TriggerRequest(lead.id, OTHER_ORG, activity.id))

        dead = db_session.query(DeadLetter).one()
        assert dead.organization_id == OTHER_ORG
        assert dead.attempts == 1
        collaborators['on_dead_letter'].assert_called_once()
        collaborators['requeue'].assert_not_called()
        assert db_session.query(LeadScore).count() == 0


# ---------------------------------------------------------------------------
# Retryable failures
# ---------------------------------------------------------------------------

class TestRetries:

    def test_lock_unavailable_requeues(self, make_service, collaborators, lead_with_activity, fake_redis,
                                       db_session):
        lead, activity = lead_with_activity
        request = TriggerRequest(lead.id, ORG, activity.id)
        assert fake_redis.lock(f'lead-lock:{lead.id}').acquire()

        assert make_service().process(request, attempt=1) is None

        collaborators['requeue'].assert_called_once_with(request, 2, 4)
        assert db_session.query(LeadScore).count() == 0
        assert db_session.query(DeadLetter).count() == 0

    def test_dead_letters_after_max_retries(self, make_service, collaborators, lead_with_activity, fake_redis,
                                            db_session):
        lead, activity = lead_with_activity
        request = TriggerRequest(lead.id, ORG, activity.id)
        collaborators['pending'].mark(lead.id, activity.id)
        fake_redis.lock(f'lead-lock:{lead.id}').acquire()

        assert make_service().process(request, attempt=5) is None

        collaborators['requeue'].assert_not_called()
        dead = db_session.query(DeadLetter).one()
        assert dead.attempts == 6
        assert 'not acquired' in dead.reason
        notified = collaborators['on_dead_letter'].call_args[0][0]
        assert notified['leadId'] == lead.id
        # Dead letter keeps the score flagged stale; the pending marker goes away
        assert collaborators['pending'].is_pending(lead.id) is False
        assert collaborators['store'].has_open_dead_letter(ORG, lead.id) is True

    def test_recompute_timeout_discards_result(self, make_service, collaborators, lead_with_activity, db_session,
                                               settings, snapshot_window):
        lead, activity = lead_with_activity
        db_session.add(TenantScoringConfig(organization_id=ORG, scorer_timeout_ms=5, recompute_timeout_ms=10))
        db_session.commit()

        computation = ScoringEngine().compute(lead_snapshot(lead), snapshot_window(('call', 'inbound', 1)), settings)
        slow_engine = MagicMock()
        slow_engine.compute.side_effect = lambda *args: time.sleep(0.05) or computation

        assert make_service(engine=slow_engine).process(TriggerRequest(lead.id, ORG, activity.id)) is None

        assert db_session.query(LeadScore).count() == 0
        collaborators['requeue'].assert_called_once()
        collaborators['publisher'].publish.assert_not_called()

    def test_persistence_error_requeues(self, make_service, collaborators, lead_with_activity):
        lead, activity = lead_with_activity
        store = collaborators['store']
        with patch.object(store, 'append_score', side_effect=PersistenceError('disk full')):
            assert make_service().process(TriggerRequest(lead.id, ORG, activity.id)) is None
        collaborators['requeue'].assert_called_once()
        assert collaborators['requeue'].call_args[0][1] == 1

    def test_without_requeue_dead_letters_immediately(self, make_service, lead_with_activity, fake_redis,
                                                      db_session):
        lead, activity = lead_with_activity
        fake_redis.lock(f'lead-lock:{lead.id}').acquire()
        make_service(requeue=None).process(TriggerRequest(lead.id, ORG, activity.id))
        assert db_session.query(DeadLetter).count() == 1

    def test_database_read_error_requeues(self, make_service, collaborators, lead_with_activity, db_session):
        lead, activity = lead_with_activity
        request = TriggerRequest(lead.id, ORG, activity.id)
        collaborators['pending'].mark(lead.id, activity.id)
        error = OperationalError('SELECT', {}, Exception('database is locked'))

        with patch.object(db_session, 'get', side_effect=error):
            assert make_service().process(request) is None

        collaborators['requeue'].assert_called_once_with(request, 1, 2)
        assert collaborators['pending'].is_pending(lead.id) is True
        assert db_session.query(DeadLetter).count() == 0

    def test_database_read_error_dead_letters_after_max_retries(self, make_service, collaborators,
                                                                lead_with_activity, db_session):
        lead, activity = lead_with_activity
        request = TriggerRequest(lead.id, ORG, activity.id)
        collaborators['pending'].mark(lead.id, activity.id)
        error = OperationalError('SELECT', {}, Exception('database is locked'))

        with patch.object(db_session, 'get', side_effect=error):
            assert make_service().process(request, attempt=5) is None

        collaborators['requeue'].assert_not_called()
        dead = db_session.query(DeadLetter).one()
        assert 'database is locked' in dead.reason
        assert collaborators['pending'].is_pending(lead.id) is False

    def test_redis_error_on_lock_requeues(self, make_service, collaborators, lead_with_activity, fake_redis,
                                          db_session):
        lead, activity = lead_with_activity
        request = TriggerRequest(lead.id, ORG, activity.id)

        def refuse(*args, **kwargs):
            raise redis.ConnectionError('connection refused')

        fake_redis.lock = refuse
        assert make_service().process(request) is None

        collaborators['requeue'].assert_called_once_with(request, 1, 2)
        assert db_session.query(LeadScore).count() == 0


# ---------------------------------------------------------------------------
# Publishing
# ---------------------------------------------------------------------------

class TestPublishFailure:

    def test_score_kept_and_republish_scheduled(self, make_service, collaborators, lead_with_activity,
                                                db_session):
        lead, activity = lead_with_activity
        collaborators['publisher'].publish.side_effect = redis.ConnectionError('down')

        record = make_service().process(TriggerRequest(lead.id, ORG, activity.id))

        assert record is not None
        assert db_session.query(LeadScore).count() == 1
        collaborators['republish'].assert_called_once_with(record, 1, 2)

    def test_republish_scheduling_failure_is_logged(self, make_service, collaborators, lead_with_activity):
        lead, activity = lead_with_activity
        collaborators['publisher'].publish.side_effect = redis.ConnectionError('down')
        collaborators['republish'].side_effect = redis.ConnectionError('still down')

        assert make_service().process(TriggerRequest(lead.id, ORG, activity.id)) is not None

    def test_failed_publish_leaves_score_unmarked(self, make_service, collaborators, lead_with_activity):
        lead, activity = lead_with_activity
        collaborators['publisher'].publish.side_effect = redis.ConnectionError('down')

        record = make_service().process(TriggerRequest(lead.id, ORG, activity.id))

        assert collaborators['store'].get_score(ORG, record['scoreId'])['publishedAt'] is None

    def test_mark_published_failure_is_logged(self, make_service, collaborators, lead_with_activity, caplog):
        lead, activity = lead_with_activity
        store = collaborators['store']
        with patch.object(store, 'mark_published', side_effect=PersistenceError('db gone')), \
                caplog.at_level('WARNING', logger='scoring.recalculation'):
            record = make_service().process(TriggerRequest(lead.id, ORG, activity.id))

        assert record is not None
        collaborators['publisher'].publish.assert_called_once()
        assert 'Could not mark score' in caplog.text


class TestPublishRecovery:

    @pytest.fixture
    def committed_unpublished(self, collaborators, lead_with_activity, settings, snapshot_window):
        """A score committed by a worker that died before publishing."""
        lead, activity = lead_with_activity
        computation = ScoringEngine().compute(lead_snapshot(lead), snapshot_window(('call', 'inbound', 1)), settings)
        record, created = collaborators['store'].append_score(ORG, lead.id, activity.id, computation, now=NOW)
        assert created is True
        return lead, activity, record

    def test_successful_publish_marks_score(self, make_service, collaborators, lead_with_activity):
        lead, activity = lead_with_activity
        record = make_service().process(TriggerRequest(lead.id, ORG, activity.id))
        assert collaborators['store'].get_score(ORG, record['scoreId'])['publishedAt'] is not None

    def test_duplicate_trigger_publishes_unpublished_score(self, make_service, collaborators,
                                                           committed_unpublished, db_session):
        lead, activity, committed = committed_unpublished
        service = make_service()

        record = service.process(TriggerRequest(lead.id, ORG, activity.id))

        assert record['scoreId'] == committed['scoreId']
        assert db_session.query(LeadScore).count() == 1
        event = collaborators['publisher'].publish.call_args[0][0]
        assert event['scoreId'] == committed['scoreId']
        assert collaborators['store'].get_score(ORG, committed['scoreId'])['publishedAt'] is not None

        # Now marked: further duplicates stay quiet
        service.process(TriggerRequest(lead.id, ORG, activity.id))
        assert collaborators['publisher'].publish.call_count == 1

    def test_duplicate_after_failed_publish_retries_it(self, make_service, collaborators, lead_with_activity):
        lead, activity = lead_with_activity
        request = TriggerRequest(lead.id, ORG, activity.id)
        publisher = collaborators['publisher']
        publisher.publish.side_effect = redis.ConnectionError('down')
        service = make_service()
        record = service.process(request)

        publisher.publish.side_effect = None
        service.process(request)

        assert publisher.publish.call_count == 2
        assert collaborators['store'].get_score(ORG, record['scoreId'])['publishedAt'] is not None


# ---------------------------------------------------------------------------
# Concurrency
# ---------------------------------------------------------------------------

class InstrumentedEngine(ScoringEngine):
    """Tracks how many computations run at once and in what order."""

    def __init__(self, delay=0.1):
        super().__init__()
        self.delay = delay
        self.active = 0
        self.max_active = 0
        self.started = threading.Event()
        self._guard = threading.Lock()

    def compute(self, lead, window, settings):
        with self._guard:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        self.started.set()
        try:
            time.sleep(self.delay)
            return super().compute(lead, window, settings)
        finally:
            with self._guard:
                self.active -= 1


class TestConcurrentTriggers:

    @pytest.fixture
    def threaded_service(self, file_session_factory, fake_redis):
        engine = InstrumentedEngine()
        service = RecalculationService(
            store=ScoreStore(session_factory=file_session_factory),
            locks=LeadLockRegistry(fake_redis, wait_seconds=5),
            engine=engine,
            publisher=MagicMock(),
            clock=lambda: NOW,
        )
        return service, engine

    def _seed(self, file_session_factory, make_lead, make_activity, activities=2):
        session = file_session_factory()
        try:
            lead = make_lead(session=session)
            acts = [make_activity(lead, session=session, days_ago=2 - i) for i in range(activities)]
            return lead.id, [a.id for a in acts]
        finally:
            session.close()

    def test_same_lead_runs_one_at_a_time(self, threaded_service, file_session_factory, make_lead, make_activity):
        service, engine = threaded_service
        lead_id, (first_act, second_act) = self._seed(file_session_factory, make_lead, make_activity)
        results = {}

        def run(activity_id):
            results[activity_id] = service.process(TriggerRequest(lead_id, ORG, activity_id))

        first = threading.Thread(target=run, args=(first_act,))
        first.start()
        assert engine.started.wait(2)
        second = threading.Thread(target=run, args=(second_act,))
        second.start()
        first.join(5)
        second.join(5)

        assert engine.max_active == 1
        history = ScoreStore(session_factory=file_session_factory).get_history(ORG, lead_id)
        assert [h['activityId'] for h in reversed(history)] == [first_act, second_act]
        assert [h['scoreId'] for h in history][0] == results[second_act]['scoreId']
        assert service.publisher.publish.call_count == 2

    def test_duplicate_concurrent_triggers_score_once(self, threaded_service, file_session_factory,
                                                      make_lead, make_activity):
        service, engine = threaded_service
        lead_id, (activity_id,) = self._seed(file_session_factory, make_lead, make_activity, activities=1)
        results = []

        def run():
            results.append(service.process(TriggerRequest(lead_id, ORG, activity_id)))

        threads = [threading.Thread(target=run) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(5)

        assert len({r['scoreId'] for r in results}) == 1
        assert len(ScoreStore(session_factory=file_session_factory).get_history(ORG, lead_id)) == 1
        # The loser may publish too if it read the score before the winner marked it
        events = [c[0][0] for c in service.publisher.publish.call_args_list]
        assert events
        assert {e['scoreId'] for e in events} == {results[0]['scoreId']}


# ---------------------------------------------------------------------------
# Queue wiring
# ---------------------------------------------------------------------------

class TestQueueWiring:

    def test_submit_trigger_marks_pending_and_enqueues(self, mock_redis):
        queue = MagicMock()
        queue.enqueue.return_value = MagicMock(id='job-1')
        request = TriggerRequest('lead-1', ORG, 'act-1')

        with patch('lead_insights.extensions.get_queue', return_value=queue):
            job = recalculation.submit_trigger(request)

        assert job.id == 'job-1'
        args, kwargs = queue.enqueue.call_args
        assert args == (recalculation.process_trigger, 'lead-1', ORG, 'act-1')
        assert kwargs['job_timeout'] > 0
        assert PendingTracker(mock_redis).is_pending('lead-1') is True

    def test_submit_trigger_enqueue_failure_clears_pending(self, mock_redis):
        queue = MagicMock()
        queue.enqueue.side_effect = redis.ConnectionError('connection refused')

        with patch('lead_insights.extensions.get_queue', return_value=queue):
            with pytest.raises(redis.ConnectionError):
                recalculation.submit_trigger(TriggerRequest('lead-1', ORG, 'act-1'))

        assert PendingTracker(mock_redis).is_pending('lead-1') is False

    def test_enqueue_retry_delays(self):
        queue = MagicMock()
        with patch('lead_insights.extensions.get_queue', return_value=queue):
            recalculation.enqueue_retry(TriggerRequest('lead-1', ORG, 'act-1'), attempt=3, delay_seconds=16)

        args, kwargs = queue.enqueue_in.call_args
        assert args[0] == timedelta(seconds=16)
        assert args[1:] == (recalculation.process_trigger, 'lead-1', ORG, 'act-1')
        assert kwargs['attempt'] == 3

    def test_enqueue_republish(self):
        queue = MagicMock()
        with patch('lead_insights.extensions.get_queue', return_value=queue):
            recalculation.enqueue_republish({'organizationId': ORG, 'scoreId': 's-1'}, attempt=1, delay_seconds=2)
        args, kwargs = queue.enqueue_in.call_args
        assert args[1:] == (recalculation.republish_score, ORG, 's-1')
        assert kwargs['attempt'] == 1

    def test_process_trigger_job(self):
        service = MagicMock()
        with patch('lead_insights.scoring.recalculation.build_service', return_value=service):
            recalculation.process_trigger('lead-1', ORG, 'act-1', attempt=2)
        service.process.assert_called_once_with(TriggerRequest('lead-1', ORG, 'act-1'), attempt=2)

    def test_republish_missing_score(self):
        service = MagicMock()
        service.store.get_score.return_value = None
        with patch('lead_insights.scoring.recalculation.build_service', return_value=service):
            assert recalculation.republish_score(ORG, 'gone') is False
        service.publish.assert_not_called()

    def test_republish_skips_published_score(self):
        service = MagicMock()
        service.store.get_score.return_value = {'scoreId': 's-1', 'publishedAt': '2026-03-01T12:00:00+00:00'}
        with patch('lead_insights.scoring.recalculation.build_service', return_value=service):
            assert recalculation.republish_score(ORG, 's-1') is True
        service.publish.assert_not_called()

    def test_republish_unpublished_score(self):
        service = MagicMock()
        record = {'scoreId': 's-1', 'publishedAt': None}
        service.store.get_score.return_value = record
        with patch('lead_insights.scoring.recalculation.build_service', return_value=service):
            recalculation.republish_score(ORG, 's-1', attempt=2)
        service.publish.assert_called_once_with(record, attempt=2)

    def test_build_service_wiring(self, mock_redis):
        from lead_insights.services.circuit_breaker import _registry
        from lead_insights.services.publisher import LeadScoredPublisher
        try:
            service = recalculation.build_service()
            assert isinstance(service.store, ScoreStore)
            assert isinstance(service.publisher, LeadScoredPublisher)
            assert service.locks.redis is mock_redis
            assert service.requeue is recalculation.enqueue_retry
            assert service.republish is recalculation.enqueue_republish
        finally:
            _registry.clear()
