import environ
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent

env = environ.Env()
environ.Env.read_env(BASE_DIR / '.env')

SECRET_KEY = env('DJANGO_SECRET_KEY', default='django-insecure-change-this-in-production')
DEBUG = env.bool('DEBUG', default=True)
BASE_URL = env('BASE_URL', default='http://localhost:8001')

ALLOWED_HOSTS = ['*']

INSTALLED_APPS = [
    'django.contrib.admin',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',
    'django.contrib.staticfiles',
    'corsheaders',
    'rest_framework',
    'app_builder',
]

MIDDLEWARE = [
    'corsheaders.middleware.CorsMiddleware',
    'django.middleware.security.SecurityMiddleware',
    'whitenoise.middleware.WhiteNoiseMiddleware',
    'django.contrib.sessions.middleware.SessionMiddleware',
    'django.middleware.common.CommonMiddleware',
    'django.middleware.csrf.CsrfViewMiddleware',
    'django.contrib.auth.middleware.AuthenticationMiddleware',
    'django.contrib.messages.middleware.MessageMiddleware',
    'django.middleware.clickjacking.XFrameOptionsMiddleware',
]

ROOT_URLCONF = 'builder_site.urls'

TEMPLATES = [
    {
        'BACKEND': 'django.template.backends.django.DjangoTemplates',
        'DIRS': [],
        'APP_DIRS': True,
        'OPTIONS': {
            'context_processors': [
                'django.template.context_processors.debug',
                'django.template.context_processors.request',
                'django.contrib.auth.context_processors.auth',
                'django.contrib.messages.context_processors.messages',
            ],
        },
    },
]

WSGI_APPLICATION = 'builder_site.wsgi.application'

# Database
DATABASES = {
    'default': env.db('DATABASE_URL', default='sqlite:///db.sqlite3')
}

# Internationalization
LANGUAGE_CODE = 'en-us'
TIME_ZONE = 'UTC'
USE_I18N = True
USE_TZ = True

# Static files
STATIC_URL = '/static/'
STATIC_ROOT = BASE_DIR / 'staticfiles'

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

# REST Framework
# Sandbox endpoints are called by the builder frontend without user accounts
REST_FRAMEWORK = {
    'DEFAULT_PERMISSION_CLASSES': ['rest_framework.permissions.AllowAny'],
    'DEFAULT_AUTHENTICATION_CLASSES': [],
    'UNAUTHENTICATED_USER': None,
}

# CORS settings
CORS_ALLOWED_ORIGINS = [
    'http://localhost:3000',
    'http://localhost:3001',
    'http://localhost:5173',
]

FRONTEND_URL = env('FRONTEND_URL', default='http://localhost:3000')

if FRONTEND_URL and FRONTEND_URL not in CORS_ALLOWED_ORIGINS:
    CORS_ALLOWED_ORIGINS.append(FRONTEND_URL)

CORS_ALLOW_METHODS = [
    'DELETE',
    'GET',
    'OPTIONS',
    'POST',
]

# =============================================================================
# App Builder Configuration
# =============================================================================
# Key handed to the generation agent inside the session subprocess
ANTHROPIC_API_KEY = env('ANTHROPIC_API_KEY', default='')

# Where local sandboxes live; each sandbox gets <SANDBOX_ROOT>/<sandbox_id>/
SANDBOX_ROOT = Path(env('SANDBOX_ROOT', default=str(BASE_DIR / 'sandboxes')))
SANDBOX_PROJECT_DIRNAME = env('SANDBOX_PROJECT_DIRNAME', default='website-project')

# Build-repair loop
APP_BUILDER_MAX_HEAL_ATTEMPTS = env.int('APP_BUILDER_MAX_HEAL_ATTEMPTS', default=3)
APP_BUILDER_BUILD_COMMAND = env('APP_BUILDER_BUILD_COMMAND', default='npm run build')
APP_BUILDER_BUILD_TIMEOUT_SECONDS = env.int('APP_BUILDER_BUILD_TIMEOUT_SECONDS', default=180)

# Generation agent limits (turn caps are enforced by the agent itself)
APP_BUILDER_GENERATION_TIMEOUT_SECONDS = env.int('APP_BUILDER_GENERATION_TIMEOUT_SECONDS', default=600)
APP_BUILDER_FIX_TIMEOUT_SECONDS = env.int('APP_BUILDER_FIX_TIMEOUT_SECONDS', default=300)
APP_BUILDER_GENERATION_MAX_TURNS = env.int('APP_BUILDER_GENERATION_MAX_TURNS', default=20)
APP_BUILDER_MODIFICATION_MAX_TURNS = env.int('APP_BUILDER_MODIFICATION_MAX_TURNS', default=12)
APP_BUILDER_FIX_MAX_TURNS = env.int('APP_BUILDER_FIX_MAX_TURNS', default=8)

# Dependency install and dev server
APP_BUILDER_INSTALL_TIMEOUT_SECONDS = env.int('APP_BUILDER_INSTALL_TIMEOUT_SECONDS', default=300)
APP_BUILDER_DEV_SERVER_PORT = env.int('APP_BUILDER_DEV_SERVER_PORT', default=3000)
APP_BUILDER_SERVER_START_WAIT_SECONDS = env.float('APP_BUILDER_SERVER_START_WAIT_SECONDS', default=8.0)

# Stream forwarding
# Worst case of one session when every step hits its own ceiling: generation,
# install, every build attempt, every fix, the project check, and the server
# start. The session timeout must sit above it so slow steps fail as steps.
SESSION_STEP_CEILING_SECONDS = (
    APP_BUILDER_GENERATION_TIMEOUT_SECONDS
    + APP_BUILDER_INSTALL_TIMEOUT_SECONDS
    + APP_BUILDER_MAX_HEAL_ATTEMPTS * APP_BUILDER_BUILD_TIMEOUT_SECONDS
    + max(APP_BUILDER_MAX_HEAL_ATTEMPTS - 1, 0) * APP_BUILDER_FIX_TIMEOUT_SECONDS
    + 30
    + APP_BUILDER_SERVER_START_WAIT_SECONDS
    + 5
)
SESSION_TIMEOUT_SECONDS = env.int(
    'SESSION_TIMEOUT_SECONDS',
    default=int(SESSION_STEP_CEILING_SECONDS) + 120,
)
STREAM_FLUSH_PARTIAL_LINES = env.bool('STREAM_FLUSH_PARTIAL_LINES', default=True)
STREAM_FORWARD_TOOL_RESULTS = env.bool('STREAM_FORWARD_TOOL_RESULTS', default=False)

# Sentry Error Tracking
SENTRY_DSN = env('SENTRY_DSN', default='')
SENTRY_ENVIRONMENT = env('SENTRY_ENVIRONMENT', default='production' if not DEBUG else 'development')

# Logging Configuration
# Console output goes to stderr, which the stream forwarder filters out of
# session subprocesses unless a line looks like a failure.
LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'verbose': {
            'format': '{levelname} {asctime} {module} {process:d} {thread:d} {message}',
            'style': '{',
        },
        'simple': {
            'format': '{levelname} {asctime} {name} {message}',
            'style': '{',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'simple',
        },
    },
    'root': {
        'handlers': ['console'],
        'level': env('LOG_LEVEL', default='INFO'),
    },
    'loggers': {
        'django': {
            'handlers': ['console'],
            'level': 'INFO',
            'propagate': False,
        },
    },
}

# Configure Sentry for error tracking
if SENTRY_DSN:
    import logging
    import sentry_sdk
    from sentry_sdk.integrations.django import DjangoIntegration
    from sentry_sdk.integrations.logging import LoggingIntegration

    sentry_sdk.init(
        dsn=SENTRY_DSN,
        environment=SENTRY_ENVIRONMENT,
        integrations=[
            DjangoIntegration(transaction_style='url'),
            LoggingIntegration(
                level=logging.INFO,        # Capture info and above as breadcrumbs
                event_level=logging.ERROR  # Send errors and above as events
            ),
        ],
        traces_sample_rate=0.1,
        attach_stacktrace=True,
    )

# =============================================================================
# Celery Configuration
# =============================================================================
CELERY_BROKER_URL = env('CELERY_BROKER_URL', default='redis://localhost:6379/0')
CELERY_RESULT_BACKEND = env('CELERY_RESULT_BACKEND', default='redis://localhost:6379/0')

CELERY_ACCEPT_CONTENT = ['json']
CELERY_TASK_SERIALIZER = 'json'
CELERY_RESULT_SERIALIZER = 'json'
CELERY_TIMEZONE = 'UTC'

CELERY_TASK_TRACK_STARTED = True
CELERY_TASK_TIME_LIMIT = 10 * 60  # 10 minutes max per task
CELERY_TASK_SOFT_TIME_LIMIT = 8 * 60
CELERY_TASK_ACKS_LATE = True
CELERY_TASK_ALWAYS_EAGER = env.bool('CELERY_TASK_ALWAYS_EAGER', default=False)
