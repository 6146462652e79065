"""
Postgres persistence helpers — called from the dispatcher.

All writes are wrapped in try/except so dispatching never blocks on DB errors.
"""
import logging
from typing import Dict, List, Optional

from waterfall.database import get_session
from waterfall.models.db_run import DbWaterfallRun

logger = logging.getLogger('services.db')


def persist_run(state, log_entries) -> bool:
    """
    INSERT or UPDATE the archive record for a run.

    Called once a run reaches a terminal status, with the full execution log.
    """
    session = get_session()
    try:
        db_run = session.get(DbWaterfallRun, state.run_id)
        if db_run is None:
            db_run = DbWaterfallRun(id=state.run_id, lane_id=state.lane_id, load_id=state.load_id)
            session.add(db_run)
        db_run.status = state.status
        db_run.current_stage_index = state.current_stage_index
        db_run.stage_count = len(state.stages)
        db_run.accepted_carrier_id = state.accepted_carrier_id
        db_run.outcomes = dict(state.outcomes)
        db_run.stages = [stage.to_dict() for stage in state.stages]
        db_run.log = [entry.to_dict() for entry in log_entries]
        db_run.started_at = state.started_at
        db_run.finished_at = state.finished_at
        session.commit()
        return True
    except Exception:
        session.rollback()
        logger.error("Failed to persist run %s", state.run_id, exc_info=True)
        return False
    finally:
        session.close()


def load_archived_runs(lane_id: Optional[str] = None, limit: int = 50) -> List[Dict]:
    """Most recent archived runs, newest first, as JSON-friendly dicts."""
    session = get_session()
    try:
        query = session.query(DbWaterfallRun)
        if lane_id:
            query = query.filter(DbWaterfallRun.lane_id == lane_id)
        rows = query.order_by(DbWaterfallRun.finished_at.desc()).limit(limit).all()
        return [
            {
                'run_id': row.id,
                'lane_id': row.lane_id,
                'load_id': row.load_id,
                'status': row.status,
                'current_stage_index': row.current_stage_index,
                'stage_count': row.stage_count,
                'accepted_carrier_id': row.accepted_carrier_id,
                'outcomes': row.outcomes or {},
                'log': row.log or [],
                'started_at': row.started_at.isoformat() if row.started_at else None,
                'finished_at': row.finished_at.isoformat() if row.finished_at else None,
            }
            for row in rows
        ]
    except Exception:
        logger.error("Failed to load archived runs", exc_info=True)
        return []
    finally:
        session.close()
