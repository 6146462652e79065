"""
Notifications — offer delivery webhook + Slack alerts for dispatch events.

The engine only records that an offer was sent; ``handle_event`` is the runner
listener that builds the outbound payload and queues the HTTP call on RQ, so a
slow gateway never holds up the API. Run a worker with:

    rq worker notifications --url $REDIS_URL

Notification failure never blocks a run.
"""
import logging
import requests

from waterfall.config import NOTIFY_QUEUE, OFFER_WEBHOOK_URL, SLACK_WEBHOOK_URL
from waterfall.engine.log import OFFER_SENT, RUN_EXHAUSTED, RUN_SUCCEEDED
from waterfall.engine.models import format_cents

logger = logging.getLogger('services.notifications')


# ── Lazy RQ queue (avoids import-time Redis connection) ───────────────────────

_queue = None

def _get_queue():
    global _queue
    if _queue is None:
        from waterfall.extensions import queue_redis
        from rq import Queue
        _queue = Queue(NOTIFY_QUEUE, connection=queue_redis)
    return _queue


def handle_event(entry, state):
    """Runner listener — queue the outbound call for offers and finished runs."""
    try:
        if entry.kind == OFFER_SENT and OFFER_WEBHOOK_URL:
            _get_queue().enqueue(send_offer, offer_payload(entry, state), job_timeout=60)
        elif entry.kind in (RUN_SUCCEEDED, RUN_EXHAUSTED) and SLACK_WEBHOOK_URL:
            _get_queue().enqueue(notify_run_finished, state.run_id, outcome_blocks(entry, state), job_timeout=60)
    except Exception:
        logger.error("Failed to queue %s notification for %s/%s",
                     entry.kind, state.lane_id, state.load_id, exc_info=True)


# ── Payloads (built in-process, under the run's state) ────────────────────────

def offer_payload(entry, state):
    """JSON body for the carrier-facing delivery gateway."""
    stage = state.stages[entry.stage_index]
    waterfall_entry = stage.entry_for(entry.carrier_id)
    carrier = waterfall_entry.carrier if waterfall_entry else None
    return {
        'event': 'offer_sent',
        'run_id': state.run_id,
        'lane_id': state.lane_id,
        'load_id': state.load_id,
        'stage_index': entry.stage_index,
        'stage_name': stage.name,
        'response_window': stage.response_window,
        'carrier_id': entry.carrier_id,
        'carrier_name': entry.carrier_name,
        'contact_email': carrier.contact_email if carrier else '',
        'contact_name': carrier.contact_name if carrier else '',
        'rate_cents': carrier.rate_cents if carrier else None,
        'sent_at': entry.timestamp.isoformat(),
    }


def outcome_blocks(entry, state):
    """Slack blocks for a run that succeeded or ran out of carriers."""
    succeeded = entry.kind == RUN_SUCCEEDED
    title = f"Load {state.load_id} assigned" if succeeded else f"Waterfall exhausted — load {state.load_id}"
    fields = [
        {"type": "mrkdwn", "text": f"*Lane:* {state.lane_id}"},
        {"type": "mrkdwn", "text": f"*Stage:* {state.current_stage_index + 1} of {len(state.stages)}"},
    ]
    if succeeded:
        stage = state.stages[state.current_stage_index]
        winner = stage.entry_for(state.accepted_carrier_id)
        if winner:
            fields.append({"type": "mrkdwn", "text": f"*Carrier:* {winner.carrier.name or winner.carrier_id}"})
            fields.append({"type": "mrkdwn", "text": f"*Rate:* {format_cents(winner.carrier.rate_cents)}"})

    return [
        {"type": "header", "text": {"type": "plain_text", "text": title}},
        {"type": "section", "fields": fields},
        {"type": "context", "elements": [{"type": "mrkdwn", "text": entry.detail}]},
    ]


# ── Jobs (run by the RQ worker) ───────────────────────────────────────────────

def send_offer(payload):
    """POST a load offer to the delivery gateway."""
    context = {k: payload.get(k) for k in ('lane_id', 'load_id', 'run_id', 'stage_index', 'carrier_id')}
    try:
        resp = requests.post(OFFER_WEBHOOK_URL, json=payload, timeout=10)
        resp.raise_for_status()
        logger.info("Offer for %s/%s sent to carrier %s",
                    payload['lane_id'], payload['load_id'], payload['carrier_id'], extra=context)

    except Exception:
        logger.error("Failed to deliver offer to carrier %s for load %s",
                     payload.get('carrier_id'), payload.get('load_id'), exc_info=True, extra=context)


def notify_run_finished(run_id, blocks):
    """Post run outcome to Slack."""
    try:
        requests.post(SLACK_WEBHOOK_URL, json={"blocks": blocks}, timeout=10)
        logger.info("Run %s outcome notification sent", run_id[:8], extra={'run_id': run_id})

    except Exception:
        logger.error("Failed to send outcome notification for run %s", run_id[:8], exc_info=True,
                     extra={'run_id': run_id})
