"""
ScoreStore — all database access for the scoring engine.

The engine gets a ScoreStore injected instead of reaching for a module-level
session, so tests can hand it any session factory. Every query filters on
organization_id. The only lookup by bare primary key is the lead itself, and
its tenant is checked before anything is returned.

Methods return plain dicts / snapshots, never ORM instances, so callers can
use results after the session is closed. Driver errors on any read or write
are raised as PersistenceError, which the recalculation service retries.
"""
import logging
import uuid
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from lead_insights.database import as_utc
from lead_insights.errors import NotFoundError, PersistenceError, TenantMismatchError
from lead_insights.models.activity import Activity
from lead_insights.models.dead_letter import DeadLetter
from lead_insights.models.lead import Lead
from lead_insights.models.lead_score import LeadScore
from lead_insights.models.scoring_config import TenantScoringConfig
from lead_insights.scoring.base import ActivitySnapshot, ActivityWindow, LeadSnapshot
from lead_insights.scoring.settings import ScoringSettings, build_settings

logger = logging.getLogger('services.store')

MAX_HISTORY_LIMIT = 100


class ScoreStore:

    def __init__(self, session_factory=None):
        self._session_factory = session_factory

    def _session(self):
        if self._session_factory is not None:
            return self._session_factory()
        # Looked up per call so tests can patch lead_insights.database.get_session
        from lead_insights import database
        return database.get_session()

    @contextmanager
    def _reading(self, action: str):
        session = self._session()
        try:
            yield session
        except SQLAlchemyError as e:
            session.rollback()
            raise PersistenceError(f"Failed to {action}: {e}") from e
        finally:
            session.close()

    # ── Leads & activities ────────────────────────────────────────────────

    @staticmethod
    def _owned_lead(session, organization_id: str, lead_id: str) -> Lead:
        lead = session.get(Lead, lead_id)
        if lead is None:
            raise NotFoundError('lead', lead_id)
        if lead.organization_id != organization_id:
            raise TenantMismatchError(lead_id, organization_id)
        return lead

    def load_lead(self, organization_id: str, lead_id: str) -> LeadSnapshot:
        """Snapshot of a lead. NotFoundError / TenantMismatchError otherwise."""
        with self._reading(f"load lead {lead_id}") as session:
            lead = self._owned_lead(session, organization_id, lead_id)
            return LeadSnapshot(
                id=lead.id,
                organization_id=lead.organization_id,
                company=lead.company,
                company_size=lead.company_size,
                industry=lead.industry,
                job_title=lead.job_title,
                email=lead.email,
                budget=lead.budget,
                equity=lead.equity,
                timeframe=lead.timeframe,
            )

    def activity_exists(self, organization_id: str, lead_id: str, activity_id: str) -> bool:
        with self._reading(f"look up activity {activity_id}") as session:
            return session.query(Activity.id).filter_by(
                id=activity_id, lead_id=lead_id, organization_id=organization_id,
            ).first() is not None

    def load_window(self, organization_id: str, lead_id: str, now: datetime, days: int) -> ActivityWindow:
        """Activities from the last `days` days, oldest first."""
        since = now - timedelta(days=days)
        with self._reading(f"load activities for lead {lead_id}") as session:
            rows = (
                session.query(Activity)
                .filter(
                    Activity.organization_id == organization_id,
                    Activity.lead_id == lead_id,
                    Activity.occurred_at >= since,
                )
                .order_by(Activity.occurred_at.asc(), Activity.recorded_at.asc())
                .all()
            )
            activities = [
                ActivitySnapshot(
                    id=row.id,
                    type=row.type,
                    direction=row.direction or 'outbound',
                    occurred_at=as_utc(row.occurred_at),
                    payload=dict(row.payload or {}),
                )
                for row in rows
            ]
            return ActivityWindow(activities=activities, now=now)

    # ── Score history ─────────────────────────────────────────────────────

    def find_score_for_activity(self, organization_id: str, lead_id: str, activity_id: str) -> Optional[Dict]:
        with self._reading(f"look up score for activity {activity_id}") as session:
            row = session.query(LeadScore).filter_by(
                organization_id=organization_id, lead_id=lead_id, activity_id=activity_id,
            ).first()
            return row.to_dict() if row else None

    def append_score(self, organization_id: str, lead_id: str, activity_id: str,
                     computation, now: Optional[datetime] = None) -> Tuple[Dict, bool]:
        """
        Append one LeadScore and refresh the lead's cached score in one transaction.

        Returns (record, created). created is False when a record for this
        activity already existed (duplicate delivery), in which case nothing
        is written. created_at is bumped past the previous record's so history
        stays strictly increasing even if clocks disagree.
        """
        session = self._session()
        try:
            lead = self._owned_lead(session, organization_id, lead_id)

            existing = session.query(LeadScore).filter_by(lead_id=lead_id, activity_id=activity_id).first()
            if existing is not None:
                return existing.to_dict(), False

            latest = (
                session.query(LeadScore)
                .filter_by(lead_id=lead_id)
                .order_by(LeadScore.sequence.desc())
                .first()
            )
            created_at = now or datetime.now(timezone.utc)
            sequence = 1
            if latest is not None:
                sequence = latest.sequence + 1
                created_at = max(created_at, as_utc(latest.created_at) + timedelta(microseconds=1))

            row = LeadScore(
                id=str(uuid.uuid4()),
                lead_id=lead_id,
                organization_id=organization_id,
                activity_id=activity_id,
                sequence=sequence,
                score=computation.score,
                confidence=computation.confidence,
                tier=computation.tier,
                insufficient_data=computation.insufficient_data,
                model_version=computation.model_version,
                factor_breakdown=computation.factor_breakdown(),
                explanation=list(computation.explanation),
                recommendations=list(computation.recommendations),
                risk_factors=list(computation.risk_factors),
                created_at=created_at,
            )
            session.add(row)

            lead.current_score = row.score
            lead.score_confidence = row.confidence
            lead.latest_score_id = row.id
            lead.updated_at = created_at

            record = row.to_dict()
            session.commit()
            return record, True

        except IntegrityError:
            # Lost a race on (lead_id, activity_id): the other writer's row wins
            session.rollback()
            existing = session.query(LeadScore).filter_by(lead_id=lead_id, activity_id=activity_id).first()
            if existing is not None:
                return existing.to_dict(), False
            raise PersistenceError(f"Integrity error appending score for lead {lead_id}")
        except SQLAlchemyError as e:
            session.rollback()
            raise PersistenceError(f"Failed to append score for lead {lead_id}: {e}") from e
        finally:
            session.close()

    def mark_published(self, organization_id: str, score_id: str) -> None:
        """Record that lead.scored went out for this score."""
        session = self._session()
        try:
            row = session.query(LeadScore).filter_by(id=score_id, organization_id=organization_id).first()
            if row is None:
                raise NotFoundError('score', score_id)
            row.published_at = datetime.now(timezone.utc)
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            raise PersistenceError(f"Failed to mark score {score_id} published: {e}") from e
        finally:
            session.close()

    def get_latest(self, organization_id: str, lead_id: str) -> Optional[Dict]:
        """Latest committed score via the lead's cached pointer (two PK reads)."""
        with self._reading(f"load latest score for lead {lead_id}") as session:
            lead = self._owned_lead(session, organization_id, lead_id)
            if not lead.latest_score_id:
                return None
            row = session.get(LeadScore, lead.latest_score_id)
            return row.to_dict() if row else None

    def get_score(self, organization_id: str, score_id: str) -> Optional[Dict]:
        with self._reading(f"load score {score_id}") as session:
            row = session.query(LeadScore).filter_by(id=score_id, organization_id=organization_id).first()
            return row.to_dict() if row else None

    def get_history(self, organization_id: str, lead_id: str, limit: int = 20,
                    before: Optional[datetime] = None) -> List[Dict]:
        """Newest-first page of history, optionally strictly older than `before`."""
        limit = max(1, min(int(limit), MAX_HISTORY_LIMIT))
        with self._reading(f"load score history for lead {lead_id}") as session:
            self._owned_lead(session, organization_id, lead_id)
            query = session.query(LeadScore).filter(
                LeadScore.organization_id == organization_id,
                LeadScore.lead_id == lead_id,
            )
            if before is not None:
                query = query.filter(LeadScore.created_at < before)
            rows = query.order_by(LeadScore.sequence.desc()).limit(limit).all()
            return [row.to_dict() for row in rows]

    # ── Tenant config ─────────────────────────────────────────────────────

    def load_settings(self, organization_id: str) -> ScoringSettings:
        with self._reading(f"load scoring config for org {organization_id}") as session:
            row = session.get(TenantScoringConfig, organization_id)
            return build_settings(row)

    def save_settings(self, organization_id: str, values: Dict, updated_by: Optional[str] = None) -> ScoringSettings:
        """Upsert validated overrides (snake_case column values) for a tenant."""
        session = self._session()
        try:
            row = session.get(TenantScoringConfig, organization_id)
            if row is None:
                row = TenantScoringConfig(organization_id=organization_id)
                session.add(row)
            for column, value in values.items():
                if column == 'factor_weights':
                    value = {**(row.factor_weights or {}), **value}
                setattr(row, column, value)
            row.updated_by = updated_by
            settings = build_settings(row)
            session.commit()
            logger.info("Scoring config updated for org %s by %s", organization_id, updated_by or 'unknown',
                        extra={'organization_id': organization_id})
            return settings
        except SQLAlchemyError as e:
            session.rollback()
            raise PersistenceError(f"Failed to save scoring config for org {organization_id}: {e}") from e
        finally:
            session.close()

    # ── Dead letters ──────────────────────────────────────────────────────

    def record_dead_letter(self, organization_id: str, lead_id: str, activity_id: str,
                           reason: str, attempts: int) -> Dict:
        session = self._session()
        try:
            row = DeadLetter(
                organization_id=organization_id,
                lead_id=lead_id,
                activity_id=activity_id,
                reason=reason[:1000],
                attempts=attempts,
                created_at=datetime.now(timezone.utc),
            )
            session.add(row)
            session.flush()
            record = row.to_dict()
            session.commit()
            return record
        except SQLAlchemyError as e:
            session.rollback()
            raise PersistenceError(f"Failed to record dead letter for lead {lead_id}: {e}") from e
        finally:
            session.close()

    def get_dead_letter(self, organization_id: str, dead_letter_id: int) -> Dict:
        with self._reading(f"load dead letter {dead_letter_id}") as session:
            row = session.query(DeadLetter).filter_by(id=dead_letter_id, organization_id=organization_id).first()
            if row is None:
                raise NotFoundError('dead letter', dead_letter_id)
            return row.to_dict()

    def list_dead_letters(self, organization_id: str, include_resolved: bool = False, limit: int = 50) -> List[Dict]:
        with self._reading(f"list dead letters for org {organization_id}") as session:
            query = session.query(DeadLetter).filter(DeadLetter.organization_id == organization_id)
            if not include_resolved:
                query = query.filter(DeadLetter.resolved_at.is_(None))
            rows = query.order_by(DeadLetter.id.desc()).limit(max(1, min(limit, MAX_HISTORY_LIMIT))).all()
            return [row.to_dict() for row in rows]

    def resolve_dead_letter(self, organization_id: str, dead_letter_id: int) -> Dict:
        session = self._session()
        try:
            row = session.query(DeadLetter).filter_by(id=dead_letter_id, organization_id=organization_id).first()
            if row is None:
                raise NotFoundError('dead letter', dead_letter_id)
            row.resolved_at = datetime.now(timezone.utc)
            record = row.to_dict()
            session.commit()
            return record
        except SQLAlchemyError as e:
            session.rollback()
            raise PersistenceError(f"Failed to resolve dead letter {dead_letter_id}: {e}") from e
        finally:
            session.close()

    def has_open_dead_letter(self, organization_id: str, lead_id: str) -> bool:
        with self._reading(f"look up dead letters for lead {lead_id}") as session:
            return session.query(DeadLetter.id).filter(
                DeadLetter.organization_id == organization_id,
                DeadLetter.lead_id == lead_id,
                DeadLetter.resolved_at.is_(None),
            ).first() is not None
