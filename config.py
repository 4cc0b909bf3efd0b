"""
Configuration for the startup backend
Loads settings from environment variables and describes the deployment topologies
"""

import os
from dataclasses import dataclass
from datetime import timedelta

from dotenv import load_dotenv

load_dotenv()

# Local frontend dev servers, always allowed alongside FRONTEND_URL
DEV_ORIGINS = (
    'http://localhost:5173',
    'http://localhost:3000',
)


def env_flag(name, default=False):
    """Read a boolean setting; 1/true/yes/on enable it, anything else disables it."""
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


class Config:
    """Application configuration"""

    # Flask
    SECRET_KEY = os.environ.get('SESSION_SECRET') or os.environ.get('SECRET_KEY')
    if not SECRET_KEY:
        raise RuntimeError("SESSION_SECRET environment variable must be set")

    APP_ENV = os.environ.get('APP_ENV', 'development')
    DEBUG = os.environ.get('FLASK_ENV') == 'development' or os.environ.get('FLASK_DEBUG') == '1'
    DEPLOYMENT_MODE = os.environ.get('DEPLOYMENT_MODE', 'classic')
    PORT = int(os.environ.get('PORT', '5000'))

    # Database
    MONGO_URI = os.environ.get('MONGO_URI') or 'mongodb://localhost:27017/startup'
    MONGO_DB_NAME = os.environ.get('MONGO_DB_NAME') or 'startup'
    MONGO_SERVER_SELECTION_TIMEOUT_MS = int(os.environ.get('MONGO_SERVER_SELECTION_TIMEOUT_MS', '10000'))
    MONGO_CONNECT_TIMEOUT_MS = int(os.environ.get('MONGO_CONNECT_TIMEOUT_MS', '10000'))
    MONGO_SOCKET_TIMEOUT_MS = int(os.environ.get('MONGO_SOCKET_TIMEOUT_MS', '20000'))
    MONGO_RETRY_FAILED_CONNECT = env_flag('MONGO_RETRY_FAILED_CONNECT', default=True)

    # CORS
    FRONTEND_URL = os.environ.get('FRONTEND_URL') or os.environ.get('CLIENT_URL')
    CORS_ORIGINS = os.environ.get('CORS_ORIGINS', '')

    # Sessions
    SESSION_COOKIE_NAME = os.environ.get('SESSION_COOKIE_NAME', 'startup.sid')
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COLLECTION = os.environ.get('SESSION_COLLECTION', 'sessions')
    SESSION_STORE_TTL = timedelta(days=int(os.environ.get('SESSION_STORE_TTL_DAYS', '14')))
    SESSION_COOKIE_MAX_AGE = timedelta(hours=int(os.environ.get('SESSION_COOKIE_MAX_AGE_HOURS', '24')))

    # Request bodies (JSON, form and multipart share one cap)
    MAX_CONTENT_LENGTH = int(os.environ.get('MAX_CONTENT_LENGTH', str(20 * 1024 * 1024)))
    MAX_FORM_MEMORY_SIZE = MAX_CONTENT_LENGTH

    # File upload
    UPLOAD_FOLDER = os.path.abspath(os.environ.get('UPLOAD_FOLDER', 'uploads'))
    ALLOWED_UPLOAD_EXTENSIONS = frozenset(
        ext.strip().lower()
        for ext in os.environ.get(
            'ALLOWED_UPLOAD_EXTENSIONS',
            'pdf,png,jpg,jpeg,gif,webp,csv,txt,doc,docx,xlsx',
        ).split(',')
        if ext.strip()
    )

    # Rate limiting
    RATELIMIT_STORAGE_URI = os.environ.get('RATELIMIT_STORAGE_URI', 'memory://')

    # Monitoring / logging
    SENTRY_DSN = os.environ.get('SENTRY_DSN')
    SENTRY_TRACES_SAMPLE_RATE = float(os.environ.get('SENTRY_TRACES_SAMPLE_RATE', '0.1'))
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')
    LOG_DIR = os.environ.get('LOG_DIR', 'logs')


@dataclass(frozen=True)
class CookiePolicy:
    """Attributes of the session cookie for one deployment."""

    name: str
    secure: bool
    samesite: str
    max_age: timedelta
    httponly: bool = True


@dataclass(frozen=True)
class DeploymentMode:
    """
    How the app is hosted.

    ``cookie_secure`` is ``'environment'`` (secure only in production) or
    ``'always'``; ``cookie_samesite`` is ``'environment'`` (None in production,
    Lax elsewhere) or ``'none'``. ``session_source`` is ``'shared'`` to reuse the
    app's connection manager for sessions, or ``'connection_string'`` to give the
    session store its own.
    """

    name: str
    trust_proxy: bool = True
    lazy_connect: bool = False
    cookie_secure: str = 'environment'
    cookie_samesite: str = 'environment'
    session_source: str = 'shared'
    file_logging: bool = True

    def cookie_policy(self, app_env, name='startup.sid', max_age=timedelta(days=1)):
        production = app_env == 'production'
        secure = True if self.cookie_secure == 'always' else production
        if self.cookie_samesite == 'none' or production:
            samesite = 'None'
        else:
            samesite = 'Lax'
        return CookiePolicy(name=name, secure=secure, samesite=samesite, max_age=max_age)


CLASSIC = DeploymentMode('classic')

# Frontend and backend live on different origins on the serverless host
SERVERLESS = DeploymentMode(
    'serverless',
    lazy_connect=True,
    cookie_secure='always',
    cookie_samesite='none',
    session_source='connection_string',
    file_logging=False,
)

DEPLOYMENT_MODES = {mode.name: mode for mode in (CLASSIC, SERVERLESS)}


def resolve_deployment(value):
    """Return the DeploymentMode for a mode object or its name."""
    if isinstance(value, DeploymentMode):
        return value
    try:
        return DEPLOYMENT_MODES[(value or CLASSIC.name).strip().lower()]
    except KeyError:
        raise ValueError(
            f"Unknown deployment mode {value!r}; expected one of {sorted(DEPLOYMENT_MODES)}"
        ) from None


@dataclass(frozen=True)
class OriginPolicy:
    """Allow-list of browser origins permitted to call the API with credentials."""

    allowed: tuple

    @classmethod
    def from_config(cls, config):
        candidates = [config.get('FRONTEND_URL'), *DEV_ORIGINS]
        candidates.extend((config.get('CORS_ORIGINS') or '').split(','))
        origins = []
        for origin in candidates:
            origin = (origin or '').strip().rstrip('/')
            if origin and origin not in origins:
                origins.append(origin)
        return cls(tuple(origins))

    def allows(self, origin):
        # Non-browser clients (curl, mobile apps) send no Origin header
        if not origin:
            return True
        return origin in self.allowed
