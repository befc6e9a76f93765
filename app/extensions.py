# extensions.py
"""
Shared Flask extensions, bound to the app inside create_app().
Also tracks the result of the most recent database probe for /health/database.
"""

import logging
import threading
import time

from flask_migrate import Migrate
from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

db = SQLAlchemy()
migrate = Migrate()

logger = logging.getLogger(__name__)

_probe_lock = threading.Lock()
_probe_stats = {
    'healthy': True,
    'failed_checks': 0,
    'last_check': 0,
}


def get_connection_stats():
    """Snapshot of the database probe counters."""
    with _probe_lock:
        return dict(_probe_stats)


def _record_probe(healthy):
    with _probe_lock:
        _probe_stats['healthy'] = healthy
        _probe_stats['last_check'] = time.time()
        if not healthy:
            _probe_stats['failed_checks'] += 1


def check_database_health():
    """
    Run SELECT 1 on a dedicated connection. Needs an application context.

    Returns:
        tuple: (healthy, message)
    """
    try:
        with db.engine.connect() as connection:
            connection.execute(text("SELECT 1")).scalar()
    except SQLAlchemyError as e:
        logger.error(f"Database probe failed: {e}")
        _record_probe(False)
        return False, f"Database connection failed: {str(e)}"

    _record_probe(True)
    return True, "Database connection is healthy"


def init_extensions(app):
    """
    Bind extensions to the application.

    Args:
        app: Flask application instance
    """
    db.init_app(app)
    migrate.init_app(app, db)
    app.logger.info("Extensions initialized successfully")
