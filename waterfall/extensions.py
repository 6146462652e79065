"""
Shared client instances — Redis.

redis.from_url() does not connect until the first command, so importing this
module is always safe (even when Redis is not running during tests).
"""
import redis

from waterfall.config import REDIS_URL


# ── Redis ─────────────────────────────────────────────────────────────────────
# Snapshots are JSON text; RQ stores pickled job payloads and needs raw bytes.
redis_client = redis.from_url(REDIS_URL, decode_responses=True)
queue_redis = redis.from_url(REDIS_URL)
