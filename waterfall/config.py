"""
Centralized configuration — all env vars and constants.
"""
import os


# ── Logging ──────────────────────────────────────────────────────────────────
LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
LOG_FORMAT = os.getenv('LOG_FORMAT', 'text')

# ── Redis (run snapshots) ─────────────────────────────────────────────────────
REDIS_URL = os.getenv('REDIS_URL', 'redis://localhost:6379/0')
RUN_SNAPSHOT_TTL = int(os.getenv('RUN_SNAPSHOT_TTL', 86400 * 7))  # 7 days

# ── PostgreSQL (run archive) ──────────────────────────────────────────────────
DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite:///local.db')

# ── Offer delivery ────────────────────────────────────────────────────────────
# Host-side gateway that turns offer events into carrier emails/SMS.
OFFER_WEBHOOK_URL = os.getenv('OFFER_WEBHOOK_URL')

# ── Slack notifications ──────────────────────────────────────────────────────
SLACK_WEBHOOK_URL = os.getenv('SLACK_WEBHOOK_URL')

# ── RQ (outbound notification jobs) ──────────────────────────────────────────
NOTIFY_QUEUE = os.getenv('NOTIFY_QUEUE', 'notifications')

# ── Waterfall defaults ────────────────────────────────────────────────────────
DEFAULT_RESPONSE_WINDOW = int(os.getenv('DEFAULT_RESPONSE_WINDOW', 30))  # minutes

# ── Ticker ────────────────────────────────────────────────────────────────────
API_BASE_URL = os.getenv('API_BASE_URL', 'http://localhost:8080')
TICK_INTERVAL_SECONDS = int(os.getenv('TICK_INTERVAL_SECONDS', 30))

# ── Run status values ─────────────────────────────────────────────────────────
RUN_STATUSES = [
    'not_started',
    'running',
    'paused',
    'succeeded',
    'exhausted',
    'cancelled',
]

# ── Lane status → dashboard message ──────────────────────────────────────────
LANE_STATUS_MESSAGES = {
    'Triggered': 'Waterfall is actively processing loads and sending offers to carriers',
    'Completed': 'All pending loads have been successfully processed and assigned',
    'Paused': 'Waterfall execution has been paused - no new offers are being sent',
    'Not Triggered': 'Waterfall is idle - waiting for matching loads to arrive',
}
