"""
Score read routes — latest score and paginated history for a lead.
"""
from datetime import datetime

from flask import Blueprint, g, jsonify, request

from lead_insights import extensions
from lead_insights.database import as_utc
from lead_insights.errors import ValidationError
from lead_insights.identity import require_identity
from lead_insights.routes.errors import error_response
from lead_insights.services.pending import PendingTracker
from lead_insights.services.store import ScoreStore, MAX_HISTORY_LIMIT

bp = Blueprint('scores', __name__)

DEFAULT_HISTORY_LIMIT = 20

LATEST_FIELDS = (
    'score', 'confidence', 'explanation', 'recommendations', 'riskFactors',
    'tier', 'modelVersion', 'createdAt', 'scoreId', 'insufficientData',
)


def _is_stale(store, organization_id, lead_id):
    """A newer score is pending, or a trigger for this lead was dead-lettered."""
    if PendingTracker(extensions.redis_client).is_pending(lead_id):
        return True
    return store.has_open_dead_letter(organization_id, lead_id)


def _parse_before(raw):
    if not raw:
        return None
    try:
        return as_utc(datetime.fromisoformat(raw.replace('Z', '+00:00')))
    except ValueError:
        raise ValidationError(f"Invalid 'before' cursor: {raw}")


@bp.route('/leads/<lead_id>/score')
@require_identity()
def get_score(lead_id):
    """Latest committed score, flagged stale while a recomputation is outstanding."""
    try:
        org = g.identity.organization_id
        store = ScoreStore()
        record = store.get_latest(org, lead_id)
        stale = _is_stale(store, org, lead_id)
        if record is None:
            return jsonify({'error': 'Lead has not been scored yet', 'pending': stale}), 404

        body = {key: record[key] for key in LATEST_FIELDS}
        body['stale'] = stale
        return jsonify(body)
    except Exception as e:
        return error_response(e)


@bp.route('/leads/<lead_id>/score/history')
@require_identity()
def get_score_history(lead_id):
    """Newest-first history. `before` is the createdAt of the last item of the previous page."""
    try:
        limit = request.args.get('limit', DEFAULT_HISTORY_LIMIT, type=int)
        if limit is None or limit <= 0:
            raise ValidationError('limit must be a positive integer')
        limit = min(limit, MAX_HISTORY_LIMIT)
        before = _parse_before(request.args.get('before'))

        items = ScoreStore().get_history(g.identity.organization_id, lead_id, limit=limit, before=before)
        next_cursor = items[-1]['createdAt'] if len(items) == limit else None
        return jsonify({'items': items, 'nextCursor': next_cursor})
    except Exception as e:
        return error_response(e)
