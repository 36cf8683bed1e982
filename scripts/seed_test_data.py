#!/usr/bin/env python3
"""
Seed demo leads + activities and score them, for checking the API locally.

Creates one organization with leads covering key scenarios:
  1. Hot lead: strong profile, recent inbound meetings and calls, urgent timeframe
  2. Profile-only lead: ideal fit, no activity yet
  3. Cooling lead: engaged two months ago, quiet since
  4. Unhappy lead: negative sentiment on recent calls

Each lead is scored synchronously through the same RecalculationService the
RQ worker uses, once per activity, so history is populated.

Usage:
    python scripts/seed_test_data.py          # seed all scenarios
    python scripts/seed_test_data.py --clear  # wipe seeded data first

Requires: Redis running, DATABASE_URL set (or defaults to sqlite:///local.db).
"""
import sys
import os
import uuid
import argparse
from datetime import datetime, timezone, timedelta

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from lead_insights import create_app
from lead_insights.database import get_session, engine, Base
from lead_insights.models.activity import Activity
from lead_insights.models.dead_letter import DeadLetter
from lead_insights.models.lead import Lead
from lead_insights.models.lead_score import LeadScore
from lead_insights.scoring.recalculation import TriggerRequest, build_service


SEED_ORG = 'seed-org'

# Prefix for seeded IDs so we can clear them
SEED_PREFIX = 'seed-'


def make_id():
    return SEED_PREFIX + str(uuid.uuid4())


LEADS = [
    {
        'name': 'Dana Whitfield', 'email': 'dana@northwind-analytics.com', 'company': 'Northwind Analytics',
        'company_size': 400, 'industry': 'Software', 'job_title': 'VP of Operations',
        'budget': 60000, 'timeframe': 'within 30 days',
        'activities': [
            ('page_view', 'inbound', 9, {}),
            ('message', 'inbound', 6, {'sentiment': 'positive', 'intent': 'evaluate', 'buying_signals': ['pricing']}),
            ('call', 'outbound', 4, {'duration_seconds': 1500, 'sentiment': 0.6, 'buying_signals': ['demo']}),
            ('meeting', 'inbound', 2, {'outcome': 'demo booked'}),
        ],
    },
    {
        'name': 'Ravi Patel', 'email': 'ravi@brightline.io', 'company': 'Brightline',
        'company_size': 1200, 'industry': 'SaaS', 'job_title': 'CTO & Co-Founder',
        'budget': 150000, 'timeframe': None,
        'activities': [
            ('note', 'outbound', 1, {}),
        ],
    },
    {
        'name': 'Maria Gonzales', 'email': 'maria.g@gmail.com', 'company': None,
        'company_size': None, 'industry': 'Real Estate', 'job_title': 'Broker',
        'budget': 20000, 'timeframe': '3-6 months',
        'activities': [
            ('meeting', 'inbound', 60, {}),
            ('call', 'inbound', 55, {'sentiment': 'positive'}),
            ('message', 'outbound', 20, {}),
        ],
    },
    {
        'name': 'Tom Becker', 'email': 'tom@harbor-logistics.com', 'company': 'Harbor Logistics',
        'company_size': 80, 'industry': 'Logistics', 'job_title': 'Operations Manager',
        'budget': 5000, 'timeframe': 'just browsing',
        'activities': [
            ('call', 'outbound', 10, {'sentiment': 'negative'}),
            ('message', 'inbound', 5, {'sentiment': 'very negative'}),
        ],
    },
]


def seed_leads(session):
    """Insert leads and their activities. Returns [(lead_id, name, [activity_id, ...])]."""
    now = datetime.now(timezone.utc)
    seeded = []
    for entry in LEADS:
        lead = Lead(
            id=make_id(),
            organization_id=SEED_ORG,
            name=entry['name'],
            email=entry['email'],
            company=entry['company'],
            company_size=entry['company_size'],
            industry=entry['industry'],
            job_title=entry['job_title'],
            budget=entry['budget'],
            timeframe=entry['timeframe'],
        )
        session.add(lead)
        session.flush()

        activity_ids = []
        for activity_type, direction, days_ago, payload in entry['activities']:
            activity = Activity(
                id=make_id(),
                lead_id=lead.id,
                organization_id=SEED_ORG,
                type=activity_type,
                direction=direction,
                occurred_at=now - timedelta(days=days_ago),
                payload=payload,
            )
            session.add(activity)
            activity_ids.append(activity.id)
        seeded.append((lead.id, entry['name'], activity_ids))
    return seeded


def score_seeded(seeded):
    service = build_service()
    for lead_id, name, activity_ids in seeded:
        record = None
        for activity_id in activity_ids:
            record = service.process(TriggerRequest(lead_id, SEED_ORG, activity_id))
        if record:
            print(f"  {name:<16} {record['score']:6.2f}  {record['tier']:<5} confidence={record['confidence']:.2f}")
            for line in record['explanation'][:3]:
                print(f"      - {line}")


def clear_seeded_data(session):
    """Remove all seeded leads, activities, scores and dead letters."""
    deleted_scores = session.query(LeadScore).filter(LeadScore.organization_id == SEED_ORG).delete(synchronize_session=False)
    session.query(DeadLetter).filter(DeadLetter.organization_id == SEED_ORG).delete(synchronize_session=False)
    session.query(Activity).filter(Activity.organization_id == SEED_ORG).delete(synchronize_session=False)
    deleted_leads = session.query(Lead).filter(Lead.organization_id == SEED_ORG).delete(synchronize_session=False)
    session.commit()
    print(f'Cleared {deleted_leads} leads, {deleted_scores} scores.')


def main():
    parser = argparse.ArgumentParser(description='Seed demo leads and score them')
    parser.add_argument('--clear', action='store_true', help='Clear seeded data before (or instead of) seeding')
    parser.add_argument('--clear-only', action='store_true', help='Only clear, do not re-seed')
    args = parser.parse_args()

    app = create_app()
    with app.app_context():
        # Ensure tables exist (for SQLite local dev)
        Base.metadata.create_all(engine)

        session = get_session()
        try:
            if args.clear or args.clear_only:
                clear_seeded_data(session)
                if args.clear_only:
                    return

            print('Seeding leads...')
            seeded = seed_leads(session)
            session.commit()
        except Exception as e:
            session.rollback()
            print(f'Error: {e}')
            raise
        finally:
            session.close()

        print('Scoring...')
        score_seeded(seeded)
        print(f'\nDone! Try: curl -H "X-Organization-Id: {SEED_ORG}" http://localhost:8080/leads/{seeded[0][0]}/score')


if __name__ == '__main__':
    main()
