"""
Centralized configuration — env vars, queue names, retry and lock tunables.

Per-tenant scoring options live in the database (TenantScoringConfig) with
defaults from scoring/scoring_config.yaml; only process-level settings are here.
"""
import os


# ── Logging ──────────────────────────────────────────────────────────────────
LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
LOG_FORMAT = os.getenv('LOG_FORMAT', 'text')

# ── Redis ─────────────────────────────────────────────────────────────────────
REDIS_URL = os.getenv('REDIS_URL', 'redis://localhost:6379/0')

# ── PostgreSQL ────────────────────────────────────────────────────────────────
DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite:///local.db')

# ── RQ queues ─────────────────────────────────────────────────────────────────
SCORING_QUEUE = os.getenv('SCORING_QUEUE', 'scoring')
SCORING_JOB_TIMEOUT = int(os.getenv('SCORING_JOB_TIMEOUT', 60))

# ── Recalculation retries ────────────────────────────────────────────────────
MAX_RECOMPUTE_RETRIES = int(os.getenv('MAX_RECOMPUTE_RETRIES', 5))
RETRY_BACKOFF_BASE_SECONDS = float(os.getenv('RETRY_BACKOFF_BASE_SECONDS', 2))
RETRY_BACKOFF_MAX_SECONDS = float(os.getenv('RETRY_BACKOFF_MAX_SECONDS', 300))

# ── Per-lead locks ───────────────────────────────────────────────────────────
LOCK_PREFIX = 'lead-lock'
LOCK_WAIT_SECONDS = float(os.getenv('LOCK_WAIT_SECONDS', 10))
# Added on top of the tenant's recompute budget so a crashed worker's lock expires
LOCK_TTL_MARGIN_SECONDS = float(os.getenv('LOCK_TTL_MARGIN_SECONDS', 5))

# ── Outbound events ──────────────────────────────────────────────────────────
LEAD_SCORED_STREAM = 'events:lead.scored'
LEAD_SCORED_RETRY_LIST = 'events:lead.scored:retry'
LEAD_SCORED_WEBHOOK_URL = os.getenv('LEAD_SCORED_WEBHOOK_URL')

# ── Slack notifications (operators) ──────────────────────────────────────────
SLACK_WEBHOOK_URL = os.getenv('SLACK_WEBHOOK_URL')

# ── Scoring config file override ─────────────────────────────────────────────
SCORING_CONFIG_PATH = os.getenv('SCORING_CONFIG_PATH')

# ── Roles allowed to change tenant scoring config ────────────────────────────
CONFIG_ADMIN_ROLES = {'admin', 'owner'}
