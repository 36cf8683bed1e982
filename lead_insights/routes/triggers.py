"""
Trigger routes — activity ingestion tells us a lead needs rescoring.
"""
import logging

from flask import Blueprint, jsonify, request

from lead_insights.errors import NotFoundError, TenantMismatchError
from lead_insights.routes.errors import error_response
from lead_insights.scoring import recalculation
from lead_insights.services.store import ScoreStore

logger = logging.getLogger('routes.triggers')

bp = Blueprint('triggers', __name__)


@bp.route('/internal/activities/<activity_id>/score-trigger', methods=['POST'])
def score_trigger(activity_id):
    """
    Accept a score trigger.

    202 queued · 200 already scored (existing record returned) · 400 invalid
    payload · 404 unknown lead or activity · 403 lead belongs to another tenant.
    """
    try:
        trigger = recalculation.parse_trigger(request.get_json(silent=True), activity_id=activity_id)

        caller_org = (request.headers.get('X-Organization-Id') or '').strip()
        if caller_org and caller_org != trigger.organization_id:
            raise TenantMismatchError(trigger.lead_id, caller_org)

        store = ScoreStore()
        store.load_lead(trigger.organization_id, trigger.lead_id)

        existing = store.find_score_for_activity(trigger.organization_id, trigger.lead_id, trigger.activity_id)
        if existing is not None:
            return jsonify({'status': 'already_scored', 'score': existing}), 200

        if not store.activity_exists(trigger.organization_id, trigger.lead_id, trigger.activity_id):
            raise NotFoundError('activity', trigger.activity_id)

        job = recalculation.submit_trigger(trigger)
        return jsonify({
            'status': 'queued',
            'jobId': job.id,
            'leadId': trigger.lead_id,
            'activityId': trigger.activity_id,
        }), 202

    except TenantMismatchError as e:
        logger.warning("Trigger rejected: %s", e, extra={'activity_id': activity_id})
        return error_response(e)
    except Exception as e:
        return error_response(e)
