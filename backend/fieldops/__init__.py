from flask import Flask
from werkzeug.exceptions import HTTPException
from flask_jwt_extended import JWTManager
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool
from sqlalchemy.orm import sessionmaker, scoped_session
from dotenv import load_dotenv
from typing import Optional, Dict, Any
import os

from .config import dispatch as dispatch_defaults
from .errors import DispatchError

load_dotenv()

db_engine = None
SessionLocal = None
jwt = JWTManager()


def create_app(config: Optional[Dict[str, Any]] = None):
    global db_engine, SessionLocal
    app = Flask(__name__)

    app.config['JWT_SECRET_KEY'] = os.getenv('JWT_SECRET_KEY', 'dev-secret')
    app.config['DATABASE_URL'] = os.getenv('DATABASE_URL', 'sqlite:///fieldops.db')
    app.config['GEOFENCE_RADIUS_M'] = float(os.getenv('GEOFENCE_RADIUS_M', dispatch_defaults.GEOFENCE_RADIUS_M))
    app.config['TRANSITION_RETRY_LIMIT'] = int(os.getenv('TRANSITION_RETRY_LIMIT', dispatch_defaults.TRANSITION_RETRY_LIMIT))
    app.config['ASSIGNMENT_RETRY_LIMIT'] = int(os.getenv('ASSIGNMENT_RETRY_LIMIT', dispatch_defaults.ASSIGNMENT_RETRY_LIMIT))
    app.config['OUTBOX_MAX_ATTEMPTS'] = int(os.getenv('OUTBOX_MAX_ATTEMPTS', dispatch_defaults.OUTBOX_MAX_ATTEMPTS))
    app.config['AUTO_ASSIGN_DEFAULT'] = dispatch_defaults.env_flag(os.getenv('AUTO_ASSIGN_DEFAULT'), dispatch_defaults.AUTO_ASSIGN_DEFAULT)
    app.config['REALTIME_CHANNEL'] = None

    if config:
        # allow tests or callers to override default config values
        app.config.update(config)

    # Database
    db_url = app.config['DATABASE_URL']
    if db_url.endswith(':memory:'):
        # Ensure a single shared in-memory SQLite database across all sessions
        db_engine = create_engine(
            db_url,
            echo=False,
            future=True,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        db_engine = create_engine(db_url, echo=False, future=True)
    SessionLocal = scoped_session(sessionmaker(bind=db_engine, expire_on_commit=False, autoflush=False))

    jwt.init_app(app)

    from .services.realtime import InMemoryChannel
    app.extensions['realtime'] = app.config['REALTIME_CHANNEL'] or InMemoryChannel()

    from .routes.tickets import tickets_bp
    from .routes.admin import admin_bp
    from .routes.technicians import tech_bp
    from .routes.notifications import notif_bp
    app.register_blueprint(tickets_bp, url_prefix='/tickets')
    app.register_blueprint(admin_bp, url_prefix='/admin')
    app.register_blueprint(tech_bp, url_prefix='/technicians')
    app.register_blueprint(notif_bp, url_prefix='/notifications')

    from .cli import register_cli
    register_cli(app)

    @app.route('/healthz')
    def health():
        return {'status': 'ok'}

    @app.errorhandler(DispatchError)
    def handle_dispatch_error(e):  # type: ignore
        return e.to_payload(), e.status_code

    # Unified error handler producing standardized JSON shape
    @app.errorhandler(Exception)
    def handle_errors(e):  # type: ignore
        if isinstance(e, HTTPException):
            payload = {
                'error': {
                    'status': e.code,
                    'title': e.name,
                    'detail': e.description,
                }
            }
            return payload, e.code
        # Unhandled exception
        app.logger.exception('Unhandled exception')
        return {
            'error': {
                'status': 500,
                'title': 'Internal Server Error',
                'detail': 'Unexpected error'
            }
        }, 500

    return app


def get_db():
    return SessionLocal()
