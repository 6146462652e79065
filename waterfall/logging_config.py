"""
Structured logging configuration.

Called once from create_app() and from scripts. Supports text (human-readable)
and JSON formats via LOG_FORMAT env var. LOG_LEVEL defaults to INFO.

Engine loggers attach the run they are working on through ``extra=``
(lane_id, load_id, run_id, stage_index). JSON output carries those as
top-level keys so a log aggregator can follow one load across processes;
text output prefixes the short run id.
"""
import json
import logging
import os
import sys
from datetime import datetime, timezone

RUN_FIELDS = ('lane_id', 'load_id', 'run_id', 'stage_index', 'carrier_id')


class JSONFormatter(logging.Formatter):
    """Single-line JSON log formatter for production log aggregators."""

    def format(self, record):
        entry = {
            'timestamp': datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
        }
        for name in RUN_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                entry[name] = value
        if record.exc_info and record.exc_info[0] is not None:
            entry['exception'] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class RunContextFilter(logging.Filter):
    """Sets ``record.run`` to "[run 1a2b3c4d] " for records tied to a run, else ''."""

    def filter(self, record):
        run_id = getattr(record, 'run_id', None)
        record.run = f"[run {run_id[:8]}] " if run_id else ''
        return True


# Third-party loggers that are noisy at INFO
_NOISY_LOGGERS = [
    'urllib3',
    'werkzeug',
    'sqlalchemy.engine',
    'rq.worker',
]


def configure_logging(app=None):
    """
    Set up root logger with format/level from env vars.

    Environment variables:
        LOG_LEVEL  — Python log level name (default: INFO)
        LOG_FORMAT — "text" (default) or "json"
    """
    level_name = os.getenv('LOG_LEVEL', 'INFO').upper()
    level = getattr(logging, level_name, logging.INFO)
    if not isinstance(level, int):
        level = logging.INFO

    log_format = os.getenv('LOG_FORMAT', 'text').lower()

    root = logging.getLogger()
    root.setLevel(level)

    # Re-init must not stack handlers
    root.handlers.clear()

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.addFilter(RunContextFilter())

    if log_format == 'json':
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            '[%(asctime)s] %(levelname)s %(name)s — %(run)s%(message)s',
            datefmt='%Y-%m-%d %H:%M:%S',
        ))

    root.addHandler(handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
