"""
Notifications — Slack alerts for operators.

Only dead-lettered score triggers are reported. A notification failure is
logged and never affects scoring.
"""
import logging

import requests

from lead_insights.config import SLACK_WEBHOOK_URL
from lead_insights.services.circuit_breaker import get_breaker

logger = logging.getLogger('services.notifications')


def _post(url, payload):
    response = requests.post(url, json=payload, timeout=10)
    response.raise_for_status()
    return response


def notify_dead_letter(dead_letter):
    """Post a dead-lettered trigger to Slack."""
    if not SLACK_WEBHOOK_URL:
        return

    blocks = [
        {
            "type": "header",
            "text": {"type": "plain_text", "text": "Lead score recomputation dead-lettered"},
        },
        {
            "type": "section",
            "fields": [
                {"type": "mrkdwn", "text": f"*Organization:* {dead_letter.get('organizationId')}"},
                {"type": "mrkdwn", "text": f"*Lead:* {dead_letter.get('leadId')}"},
                {"type": "mrkdwn", "text": f"*Activity:* {dead_letter.get('activityId')}"},
                {"type": "mrkdwn", "text": f"*Attempts:* {dead_letter.get('attempts')}"},
            ],
        },
        {
            "type": "section",
            "text": {"type": "mrkdwn", "text": f"```{dead_letter.get('reason', '')[:500]}```"},
        },
    ]

    try:
        get_breaker('slack').call(_post, SLACK_WEBHOOK_URL, {"blocks": blocks})
        logger.info("Dead letter %s notification sent", dead_letter.get('id'))
    except Exception:
        logger.error("Failed to send dead letter notification", exc_info=True)
