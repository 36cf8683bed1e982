"""
Admin routes — tenant scoring config and the dead-letter queue.
"""
import logging

from flask import Blueprint, g, jsonify, request

from lead_insights.errors import ValidationError
from lead_insights.identity import require_identity
from lead_insights.routes.errors import error_response
from lead_insights.scoring import recalculation
from lead_insights.scoring.base import get_registry_info
from lead_insights.scoring.engine import SCORER_REGISTRY
from lead_insights.scoring.settings import validate_overrides
from lead_insights.services.store import ScoreStore

logger = logging.getLogger('routes.admin')

bp = Blueprint('admin', __name__)


# ── Scoring config ───────────────────────────────────────────────────────────

@bp.route('/api/scoring-config')
@require_identity()
def get_scoring_config():
    """Effective options for the caller's tenant (defaults merged with overrides)."""
    try:
        settings = ScoreStore().load_settings(g.identity.organization_id)
        body = settings.to_dict()
        body['scorers'] = get_registry_info(SCORER_REGISTRY)
        return jsonify(body)
    except Exception as e:
        return error_response(e)


@bp.route('/api/scoring-config', methods=['PUT'])
@require_identity(admin=True)
def update_scoring_config():
    """Partial update; omitted options keep their current value. Applies to the next recomputation."""
    try:
        values = validate_overrides(request.get_json(silent=True))
        store = ScoreStore()
        org = g.identity.organization_id

        current = store.load_settings(org)
        scorer_ms = values.get('scorer_timeout_ms', current.scorer_timeout_ms)
        recompute_ms = values.get('recompute_timeout_ms', current.recompute_timeout_ms)
        if scorer_ms >= recompute_ms:
            raise ValidationError('scorerTimeoutMs must be lower than recomputeTimeoutMs')

        settings = store.save_settings(org, values, updated_by=g.identity.user_id)
        return jsonify(settings.to_dict())
    except Exception as e:
        return error_response(e)


# ── Dead letters ─────────────────────────────────────────────────────────────

@bp.route('/api/dead-letters')
@require_identity(admin=True)
def list_dead_letters():
    try:
        include_resolved = request.args.get('include_resolved', '').lower() in ('1', 'true', 'yes')
        limit = request.args.get('limit', 50, type=int)
        items = ScoreStore().list_dead_letters(
            g.identity.organization_id, include_resolved=include_resolved, limit=limit,
        )
        return jsonify({'items': items})
    except Exception as e:
        return error_response(e)


@bp.route('/api/dead-letters/<int:dead_letter_id>/replay', methods=['POST'])
@require_identity(admin=True)
def replay_dead_letter(dead_letter_id):
    """Enqueue the dead letter's trigger again with a fresh retry budget, then resolve it.

    The dead letter stays open if the enqueue fails. Replaying twice is harmless:
    the activity id keeps the recomputation idempotent.
    """
    try:
        org = g.identity.organization_id
        store = ScoreStore()
        dead_letter = store.get_dead_letter(org, dead_letter_id)
        trigger = recalculation.TriggerRequest(
            lead_id=dead_letter['leadId'], organization_id=org, activity_id=dead_letter['activityId'],
        )
        job = recalculation.submit_trigger(trigger)
        record = store.resolve_dead_letter(org, dead_letter_id)
        logger.info("Dead letter %s replayed by %s", dead_letter_id, g.identity.user_id or 'unknown',
                    extra=trigger.log_extra())
        return jsonify({'status': 'queued', 'jobId': job.id, 'deadLetter': record}), 202
    except Exception as e:
        return error_response(e)
