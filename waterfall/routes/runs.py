"""
Run routes — waterfall preview, run control, carrier responses, tick endpoint.

Every handler goes through the Dispatcher stored on ``app.extensions``.
Engine errors map to HTTP codes in one place (see ``_handle_engine_errors``).
"""
import logging
from datetime import date, datetime, timezone
from functools import wraps

from flask import Blueprint, current_app, jsonify, request

from waterfall.dispatcher import RunNotFound
from waterfall.engine.errors import ConfigError, ConflictError, InvalidStateError
from waterfall.engine.models import RESPONSE_OUTCOMES
from waterfall.services.db import load_archived_runs

logger = logging.getLogger('routes.runs')

bp = Blueprint('runs', __name__)


def _dispatcher():
    return current_app.extensions['dispatcher']


def _parse_date(value):
    if not value:
        return None
    return date.fromisoformat(value)


def _parse_now(data):
    value = (data or {}).get('now')
    if not value:
        return None
    now = datetime.fromisoformat(value.replace('Z', '+00:00'))
    # naive timestamps are taken as UTC
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now


def _handle_engine_errors(view):
    """Translate engine exceptions into JSON error responses."""
    @wraps(view)
    def wrapper(*args, **kwargs):
        try:
            return view(*args, **kwargs)
        except ConfigError as e:
            return jsonify({'error': 'Invalid waterfall configuration', 'errors': e.errors}), 400
        except ConflictError as e:
            return jsonify({
                'error': 'A dispatch is already running for this lane/load',
                'lane_id': e.lane_id,
                'load_id': e.load_id,
            }), 409
        except InvalidStateError as e:
            logger.error("Invalid state transition on %s: %s", request.path, e)
            return jsonify({'error': str(e), 'status': e.status}), 409
        except RunNotFound as e:
            return jsonify({'error': str(e)}), 404
        except ValueError as e:
            return jsonify({'error': str(e)}), 400
    return wrapper


# ── Waterfall configuration ──────────────────────────────────────────────────

@bp.route('/api/waterfalls/preview', methods=['POST'])
@_handle_engine_errors
def preview_waterfall():
    """Resolve a lane's waterfall into stages without starting a run."""
    data = request.get_json(silent=True) or {}
    config, stages = _dispatcher().preview(data.get('lane') or data, _parse_date(data.get('pickup_date')))
    return jsonify({
        'lane_id': config.lane_id,
        'auto_tier_enabled': config.auto_tier_enabled,
        'stages': [stage.to_dict() for stage in stages],
    })


# ── Run API ──────────────────────────────────────────────────────────────────

@bp.route('/api/runs', methods=['POST'])
@_handle_engine_errors
def create_run():
    """Start a waterfall for a load on a lane."""
    data = request.get_json(silent=True) or {}
    load_id = data.get('load_id')
    if not load_id:
        return jsonify({'error': 'load_id is required'}), 400
    lane = data.get('lane')
    if not lane:
        return jsonify({'error': 'lane is required'}), 400

    state = _dispatcher().launch(lane, str(load_id), pickup_date=_parse_date(data.get('pickup_date')),
                                 now=_parse_now(data))
    return jsonify(_dispatcher().status(state.lane_id, state.load_id)), 201


@bp.route('/api/runs')
def list_runs():
    """Runs held in memory (active + finished this process)."""
    return jsonify(_dispatcher().runs())


@bp.route('/api/runs/archive')
def list_archived_runs():
    """Finished runs from the Postgres archive."""
    limit = request.args.get('limit', 50, type=int)
    return jsonify(load_archived_runs(lane_id=request.args.get('lane_id'), limit=limit))


@bp.route('/api/runs/<lane_id>/<load_id>')
@_handle_engine_errors
def get_run(lane_id, load_id):
    return jsonify(_dispatcher().status(lane_id, load_id))


@bp.route('/api/runs/<lane_id>/<load_id>/log')
@_handle_engine_errors
def get_run_log(lane_id, load_id):
    """Execution log entries after ``since`` (sequence number)."""
    since = request.args.get('since', 0, type=int)
    return jsonify(_dispatcher().log(lane_id, load_id, since=since))


@bp.route('/api/runs/<lane_id>/<load_id>/responses', methods=['POST'])
@_handle_engine_errors
def record_response(lane_id, load_id):
    """A carrier accepted or declined (email/SMS/portal webhook)."""
    data = request.get_json(silent=True) or {}
    carrier_id = data.get('carrier_id')
    outcome = (data.get('outcome') or '').lower()
    if not carrier_id:
        return jsonify({'error': 'carrier_id is required'}), 400
    if outcome not in RESPONSE_OUTCOMES:
        return jsonify({'error': f'outcome must be one of {list(RESPONSE_OUTCOMES)}'}), 400

    state = _dispatcher().respond(lane_id, load_id, str(carrier_id), outcome,
                                  detail=data.get('detail', ''), now=_parse_now(data))
    return jsonify(_dispatcher().status(state.lane_id, state.load_id))


@bp.route('/api/runs/<lane_id>/<load_id>/pause', methods=['POST'])
@_handle_engine_errors
def pause_run(lane_id, load_id):
    _dispatcher().pause(lane_id, load_id, now=_parse_now(request.get_json(silent=True)))
    return jsonify(_dispatcher().status(lane_id, load_id))


@bp.route('/api/runs/<lane_id>/<load_id>/resume', methods=['POST'])
@_handle_engine_errors
def resume_run(lane_id, load_id):
    _dispatcher().resume(lane_id, load_id, now=_parse_now(request.get_json(silent=True)))
    return jsonify(_dispatcher().status(lane_id, load_id))


@bp.route('/api/runs/<lane_id>/<load_id>/cancel', methods=['POST'])
@_handle_engine_errors
def cancel_run(lane_id, load_id):
    data = request.get_json(silent=True) or {}
    _dispatcher().cancel(lane_id, load_id, reason=data.get('reason', ''), now=_parse_now(data))
    return jsonify(_dispatcher().status(lane_id, load_id))


@bp.route('/api/runs/tick', methods=['POST'])
@_handle_engine_errors
def tick_runs():
    """Called by the external ticker — expire windows and escalate."""
    states = _dispatcher().tick_all(now=_parse_now(request.get_json(silent=True)))
    return jsonify({
        'advanced': len(states),
        'runs': [{'lane_id': s.lane_id, 'load_id': s.load_id, 'status': s.status,
                  'current_stage_index': s.current_stage_index} for s in states],
    })


@bp.route('/api/summary')
def execution_summary():
    return jsonify(_dispatcher().summary())


@bp.route('/health')
def health():
    return jsonify({'status': 'ok', 'active_runs': len(_dispatcher().registry.active())})
