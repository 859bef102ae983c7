"""Flask application factory and common utilities."""

import os
import time
import logging
import secrets
import uuid
from datetime import timedelta

from flask import Flask, request, g
from flask_migrate import Migrate
from flask_sqlalchemy import SQLAlchemy
from flask_compress import Compress
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from dotenv import load_dotenv

from config import Config
from gestor.extensions.cache import init_cache

load_dotenv()

app = Flask(__name__)

logger = logging.getLogger(__name__)

database_url = os.getenv('DATABASE_URL')
db_user = os.getenv('DB_USER')
db_password = os.getenv('DB_PASSWORD')
db_host = os.getenv('DB_HOST')
db_name = os.getenv('DB_NAME')

missing_db_vars = [
    name for name, value in (
        ('DB_USER', db_user),
        ('DB_PASSWORD', db_password),
        ('DB_HOST', db_host),
        ('DB_NAME', db_name),
    )
    if value is None
]

if database_url:
    app.config['SQLALCHEMY_DATABASE_URI'] = database_url
elif missing_db_vars:
    logger.warning(
        "Variáveis de banco ausentes (%s); usando SQLite local em modo de fallback.",
        ", ".join(missing_db_vars),
    )
    os.makedirs(app.instance_path, exist_ok=True)
    fallback_db = os.path.join(app.instance_path, 'gestor.db')
    app.config['SQLALCHEMY_DATABASE_URI'] = f"sqlite:///{fallback_db}"
else:
    if db_password == "":
        logger.warning("DB_PASSWORD está vazio; conectando ao MySQL sem senha (apenas recomendado para desenvolvimento local).")
    app.config['SQLALCHEMY_DATABASE_URI'] = f"mysql+pymysql://{db_user}:{db_password}@{db_host}/{db_name}"

secret_key = os.getenv("SECRET_KEY")
if not secret_key:
    secret_key = secrets.token_urlsafe(32)
    logger.warning("SECRET_KEY não definida; gerando valor temporário apenas para ambiente local.")
app.config['SECRET_KEY'] = secret_key
app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
app.config['PERMANENT_SESSION_LIFETIME'] = timedelta(days=30)
app.config['API_TOKEN_TTL_SECONDS'] = Config.API_TOKEN_TTL_SECONDS
app.config['N8N_WEBHOOK_URL'] = Config.N8N_WEBHOOK_URL
app.config['WEBHOOK_TIMEOUT_SECONDS'] = Config.WEBHOOK_TIMEOUT_SECONDS
app.config['RECURRENCE_PREVIEW_COUNT'] = Config.RECURRENCE_PREVIEW_COUNT
app.config['RECURRENCE_PREVIEW_MAX'] = Config.RECURRENCE_PREVIEW_MAX
app.config['DASHBOARD_CACHE_TIMEOUT'] = Config.DASHBOARD_CACHE_TIMEOUT
app.config['SCHEDULER_ENABLED'] = Config.SCHEDULER_ENABLED
app.config['LOGIN_RATE_LIMIT'] = Config.LOGIN_RATE_LIMIT

if not app.config['SQLALCHEMY_DATABASE_URI'].startswith("sqlite"):
    app.config.setdefault('SQLALCHEMY_ENGINE_OPTIONS', {})
    app.config['SQLALCHEMY_ENGINE_OPTIONS'].setdefault('pool_pre_ping', True)
    app.config['SQLALCHEMY_ENGINE_OPTIONS'].setdefault('pool_recycle', 1800)

Config.validate()

db = SQLAlchemy(app)
migrate = Migrate(app, db)

init_cache(app)

rate_limit_storage = os.getenv('RATELIMIT_STORAGE_URI')
if not rate_limit_storage:
    redis_url = os.getenv('REDIS_URL')
    rate_limit_storage = redis_url if redis_url else "memory://"

limiter = Limiter(
    app=app,
    key_func=get_remote_address,
    storage_uri=rate_limit_storage,
    strategy="fixed-window",
    headers_enabled=True,
)

# Compressão HTTP das respostas JSON
compress = Compress(app)
app.config['COMPRESS_MIMETYPES'] = ['application/json']
app.config['COMPRESS_MIN_SIZE'] = 500


with app.app_context():
    # Import models inside the application context so SQLAlchemy metadata
    # knows about every table before ``create_all`` runs.
    from gestor.models import tables as _models  # noqa: F401

    db.create_all()

from gestor.controllers import routes  # noqa: E402

routes.register_blueprints(app)

# Setup structured logging with rotation (after app context is ready)
from gestor.utils.logging_config import setup_logging, log_request_info  # noqa: E402

with app.app_context():
    setup_logging(app, engine=db.engine)


@app.before_request
def _log_request_start():
    """Record request start time and correlation id."""
    g.request_start_time = time.perf_counter()
    g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12]


@app.after_request
def _log_request_end(response):
    """Log request completion with timing information."""
    started = getattr(g, 'request_start_time', None)
    duration_ms = (time.perf_counter() - started) * 1000 if started is not None else 0.0
    request_id = getattr(g, "request_id", None)
    if request_id:
        response.headers.setdefault("X-Request-ID", request_id)
    log_request_info(request, response, duration_ms, request_id=request_id)
    return response


if app.config['SCHEDULER_ENABLED']:
    from gestor.scheduler import init_scheduler  # noqa: E402

    init_scheduler(app)
