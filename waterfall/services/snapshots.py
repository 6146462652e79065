"""
Redis snapshot store for live waterfall runs.

Keys:
    waterfall_run:{lane_id}:{load_id}  → JSON blob of runner.snapshot()
    waterfall_runs:active              → set of "{lane_id}:{load_id}" keys

Snapshots let a restarted process pick its runs back up. Redis errors are
logged and never block the engine: a missed snapshot only costs durability.
"""
import json
import logging
from typing import Dict, List, Optional

from waterfall.config import RUN_SNAPSHOT_TTL
from waterfall.engine.models import TERMINAL_STATUSES

logger = logging.getLogger('services.snapshots')

ACTIVE_SET = 'waterfall_runs:active'


def _key(lane_id: str, load_id: str) -> str:
    return f'waterfall_run:{lane_id}:{load_id}'


class SnapshotStore:

    def __init__(self, redis_client, ttl: int = RUN_SNAPSHOT_TTL):
        self.redis = redis_client
        self.ttl = ttl

    def save(self, snapshot: Dict) -> bool:
        state = snapshot['state']
        member = f"{state['lane_id']}:{state['load_id']}"
        try:
            self.redis.setex(_key(state['lane_id'], state['load_id']), self.ttl, json.dumps(snapshot))
            if state['status'] in TERMINAL_STATUSES:
                self.redis.srem(ACTIVE_SET, member)
            else:
                self.redis.sadd(ACTIVE_SET, member)
            return True
        except Exception:
            logger.error("Failed to snapshot run %s", member, exc_info=True)
            return False

    def load(self, lane_id: str, load_id: str) -> Optional[Dict]:
        try:
            data = self.redis.get(_key(lane_id, load_id))
        except Exception:
            logger.error("Failed to load snapshot %s:%s", lane_id, load_id, exc_info=True)
            return None
        return json.loads(data) if data else None

    def load_all(self) -> List[Dict]:
        """Every snapshot still listed as active. Stale members are pruned."""
        try:
            members = self.redis.smembers(ACTIVE_SET) or set()
        except Exception:
            logger.error("Failed to list active run snapshots", exc_info=True)
            return []

        snapshots = []
        for member in sorted(members):
            lane_id, _, load_id = member.partition(':')
            snap = self.load(lane_id, load_id)
            if snap is None:
                try:
                    self.redis.srem(ACTIVE_SET, member)
                except Exception:
                    logger.warning("Could not prune stale snapshot member %s", member)
                continue
            snapshots.append(snap)
        return snapshots

    def delete(self, lane_id: str, load_id: str):
        try:
            self.redis.delete(_key(lane_id, load_id))
            self.redis.srem(ACTIVE_SET, f'{lane_id}:{load_id}')
        except Exception:
            logger.error("Failed to delete snapshot %s:%s", lane_id, load_id, exc_info=True)
