from flask import Flask
from werkzeug.exceptions import HTTPException
from flask_jwt_extended import JWTManager
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool, NullPool
from sqlalchemy.orm import sessionmaker, scoped_session
from dotenv import load_dotenv
from datetime import timedelta
from typing import Optional, Dict, Any
import os

load_dotenv()

db_engine = None
SessionLocal = None
jwt = JWTManager()


def create_app(config: Optional[Dict[str, Any]] = None):
    global db_engine, SessionLocal
    app = Flask(__name__)

    app.config['JWT_SECRET_KEY'] = os.getenv('JWT_SECRET_KEY', 'dev-secret')
    app.config['DATABASE_URL'] = os.getenv('DATABASE_URL', 'sqlite:///dev.db')
    app.config['JWT_ACCESS_TOKEN_EXPIRES'] = timedelta(seconds=int(os.getenv('JWT_ACCESS_TOKEN_EXPIRES', '900')))
    app.config['JWT_REFRESH_TOKEN_EXPIRES'] = timedelta(seconds=int(os.getenv('JWT_REFRESH_TOKEN_EXPIRES', '604800')))
    app.config['TENANT_SCHEMA_PREFIX'] = os.getenv('TENANT_SCHEMA_PREFIX', 'tenant_')
    app.config['TENANT_SQLITE_DIR'] = os.getenv('TENANT_SQLITE_DIR')
    app.config['TENANT_MIGRATIONS_DIR'] = os.getenv('TENANT_MIGRATIONS_DIR')

    if config:
        # allow tests or callers to override default config values
        app.config.update(config)

    # Database
    from .services.schemas import SchemaManager, install_sqlite_attach_hook
    db_url = app.config['DATABASE_URL']
    if db_url.endswith(':memory:'):
        # Single shared connection so ATTACHed tenant schemas stay visible to every session
        db_engine = create_engine(
            db_url,
            echo=False,
            future=True,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    elif db_url.startswith('sqlite'):
        # Fresh connection per checkout; the connect hook re-attaches every tenant file
        db_engine = create_engine(db_url, echo=False, future=True, poolclass=NullPool)
    else:
        db_engine = create_engine(db_url, echo=False, future=True, pool_pre_ping=True)
    SessionLocal = scoped_session(sessionmaker(bind=db_engine, expire_on_commit=False, autoflush=False))

    schemas = SchemaManager.from_app_config(app.config, db_engine)
    if db_engine.dialect.name == 'sqlite' and schemas.sqlite_dir:
        install_sqlite_attach_hook(db_engine, schemas)
    app.extensions['tenant_schemas'] = schemas

    jwt.init_app(app)

    from .routes.auth import auth_bp
    from .routes.admin import admin_bp
    app.register_blueprint(auth_bp, url_prefix='/auth')
    app.register_blueprint(admin_bp, url_prefix='/admin')

    @app.route('/healthz')
    def health():
        return {'status': 'ok'}

    @app.teardown_appcontext
    def remove_session(exc):  # type: ignore
        SessionLocal.remove()

    from .errors import TenantGateError

    @app.errorhandler(TenantGateError)
    def handle_domain_errors(e):  # type: ignore
        if e.status >= 500:
            app.logger.error('%s: %s', type(e).__name__, e)
        return {
            'error': {
                'status': e.status,
                'title': e.title,
                'detail': e.detail,
            }
        }, e.status

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
