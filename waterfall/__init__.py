"""
Flask application factory.

Creates the app, wires the waterfall Dispatcher into ``app.extensions`` and
registers the blueprints.
"""
from flask import Flask


def create_app(dispatcher=None):
    """Create and configure the Flask application."""
    from waterfall.logging_config import configure_logging

    app = Flask(__name__)

    configure_logging(app)

    if dispatcher is None:
        from waterfall.dispatcher import Dispatcher
        from waterfall.extensions import redis_client
        from waterfall.services.db import persist_run
        from waterfall.services.notifications import handle_event
        from waterfall.services.snapshots import SnapshotStore

        dispatcher = Dispatcher(
            store=SnapshotStore(redis_client),
            archive=persist_run,
            listeners=[handle_event],
        )
        dispatcher.restore()

    app.extensions['dispatcher'] = dispatcher

    # Register blueprints
    from waterfall.routes.runs import bp as runs_bp

    app.register_blueprint(runs_bp)

    # Import models so Base.metadata knows about them (required for SQLAlchemy).
    # Schema is managed by Alembic — no init_db() call.
    import importlib
    importlib.import_module('waterfall.models.db_run')

    return app
