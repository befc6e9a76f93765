# __init__.py
"""
RSVP check-in service.
create_app() builds the Flask application: RSVP registration, QR check-in
verification and control of the camera scanner attached to this host.
"""

import os
import logging
from datetime import datetime
from logging.handlers import RotatingFileHandler

from flask import Flask, jsonify
from dotenv import load_dotenv
from werkzeug.exceptions import HTTPException

from app.config import config_by_name
from app.extensions import init_extensions, db

LOG_FORMAT = '%(asctime)s %(levelname)s %(name)s %(threadName)s : %(message)s'

# Named loggers used across controllers and services
SERVICE_LOGGERS = (
    'check_in', 'check_in_service', 'scan_loop', 'rsvp', 'rsvp_service',
    'rsvp_store', 'qr_code_service', 'token_service', 'payload',
)


def setup_logging(app):
    """
    Attach console and rotating file handlers to the app and service loggers.

    Args:
        app: Flask application instance
    """
    formatter = logging.Formatter(LOG_FORMAT)
    level = logging.DEBUG if app.debug else logging.INFO

    console = logging.StreamHandler()
    console.setFormatter(formatter)
    console.setLevel(level)
    handlers = [console]

    if app.config.get('ENABLE_FILE_LOGGING'):
        log_dir = app.config['LOG_FOLDER']
        os.makedirs(log_dir, exist_ok=True)
        rotating = RotatingFileHandler(os.path.join(log_dir, 'rsvp.log'),
                                       maxBytes=10 * 1024 * 1024, backupCount=5)
        rotating.setFormatter(formatter)
        rotating.setLevel(logging.INFO)
        handlers.append(rotating)

    # create_app() may run more than once per process (tests, CLI); never stack handlers
    for name in (app.logger.name,) + SERVICE_LOGGERS:
        target = logging.getLogger(name)
        target.setLevel(level)
        target.handlers = list(handlers)

    logging.getLogger('sqlalchemy.engine').setLevel(logging.WARNING)


def register_blueprints(app):
    from .controllers.rsvp import rsvp_bp
    from .controllers.check_in import check_in_bp

    app.register_blueprint(rsvp_bp, url_prefix='/rsvp')
    app.register_blueprint(check_in_bp, url_prefix='/check-in')
    app.logger.debug("Blueprints registered: rsvp, check_in")


def register_error_handlers(app):
    """JSON bodies for every error, matching the success/message shape of the API."""

    @app.errorhandler(HTTPException)
    def handle_http_error(e):
        return jsonify({'success': False, 'error': e.name, 'message': e.description}), e.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(e):
        app.logger.error(f"Unhandled exception: {str(e)}", exc_info=True)
        return jsonify({
            'success': False,
            'error': 'internal_error',
            'message': str(e) if app.debug else 'Internal server error'
        }), 500


def register_health_checks(app):

    @app.route('/health')
    def health_check():
        return jsonify({
            'status': 'ok',
            'version': app.config['VERSION'],
            'timestamp': datetime.now().isoformat()
        })

    @app.route('/health/database')
    def database_health_check():
        from app.extensions import check_database_health, get_connection_stats
        from app.models import Rsvp

        healthy, message = check_database_health()
        stats = get_connection_stats()
        if healthy:
            stats['rsvp_count'] = db.session.query(Rsvp).count()

        return jsonify({
            'status': 'healthy' if healthy else 'unhealthy',
            'message': message,
            'stats': stats,
            'timestamp': datetime.now().isoformat()
        }), 200 if healthy else 503


def register_shell_context(app):

    @app.shell_context_processor
    def make_shell_context():
        from app.models import Rsvp, RsvpStatus
        return {'db': db, 'Rsvp': Rsvp, 'RsvpStatus': RsvpStatus}


def create_app(config_name=None):
    """
    Build a configured application.

    Args:
        config_name (str): 'development', 'production' or 'testing';
            defaults to FLASK_ENV

    Returns:
        Flask: The application
    """
    load_dotenv()

    config_name = config_name or os.environ.get('FLASK_ENV', 'development')
    config_class = config_by_name[config_name]
    config_class.validate()

    app = Flask(__name__)
    app.config.from_object(config_class)

    setup_logging(app)
    app.logger.info(f"Creating application with config: {config_name}")

    init_extensions(app)
    with app.app_context():
        from app import models  # noqa: F401
        db.create_all()

    register_blueprints(app)
    register_error_handlers(app)
    register_health_checks(app)
    register_shell_context(app)

    from .cli import register_cli_commands
    register_cli_commands(app)

    return app
