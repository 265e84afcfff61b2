"""
Django settings for the job-search mailbox monitor.

Everything deployment-specific is read from the environment so the same module
serves local development, CI (sqlite) and production (postgres + redis).
"""
import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent


def _env_bool(name, default=False):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


SECRET_KEY = os.environ.get('DJANGO_SECRET_KEY', 'dev-insecure-secret-key-change-me')
DEBUG = _env_bool('DJANGO_DEBUG', False)
ALLOWED_HOSTS = [h.strip() for h in os.environ.get('DJANGO_ALLOWED_HOSTS', 'localhost,127.0.0.1').split(',') if h.strip()]

INSTALLED_APPS = [
    'django.contrib.admin',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',
    'django.contrib.staticfiles',
    'rest_framework',
    'jobmail',
]

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'django.contrib.sessions.middleware.SessionMiddleware',
    'django.middleware.common.CommonMiddleware',
    'django.middleware.csrf.CsrfViewMiddleware',
    'django.contrib.auth.middleware.AuthenticationMiddleware',
    'django.contrib.messages.middleware.MessageMiddleware',
    'django.middleware.clickjacking.XFrameOptionsMiddleware',
]

ROOT_URLCONF = 'backend.urls'

TEMPLATES = [
    {
        'BACKEND': 'django.template.backends.django.DjangoTemplates',
        'DIRS': [],
        'APP_DIRS': True,
        'OPTIONS': {
            'context_processors': [
                'django.template.context_processors.request',
                'django.contrib.auth.context_processors.auth',
                'django.contrib.messages.context_processors.messages',
            ],
        },
    },
]

WSGI_APPLICATION = 'backend.wsgi.application'

# Database: sqlite by default, postgres when DATABASE_ENGINE=postgresql
DATABASE_ENGINE = os.environ.get('DATABASE_ENGINE', 'sqlite3')
if DATABASE_ENGINE == 'sqlite3':
    DATABASES = {
        'default': {
            'ENGINE': 'django.db.backends.sqlite3',
            'NAME': os.environ.get('DATABASE_NAME', str(BASE_DIR / 'db.sqlite3')),
        }
    }
else:
    DATABASES = {
        'default': {
            'ENGINE': f'django.db.backends.{DATABASE_ENGINE}',
            'NAME': os.environ.get('DATABASE_NAME', 'jobmail'),
            'USER': os.environ.get('DATABASE_USER', ''),
            'PASSWORD': os.environ.get('DATABASE_PASSWORD', ''),
            'HOST': os.environ.get('DATABASE_HOST', 'localhost'),
            'PORT': os.environ.get('DATABASE_PORT', '5432'),
            'ATOMIC_REQUESTS': False,
        }
    }

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

LANGUAGE_CODE = 'en-us'
TIME_ZONE = 'UTC'
USE_I18N = True
USE_TZ = True

STATIC_URL = 'static/'

REST_FRAMEWORK = {
    'DEFAULT_AUTHENTICATION_CLASSES': [
        'rest_framework.authentication.SessionAuthentication',
        'rest_framework.authentication.BasicAuthentication',
    ],
    'DEFAULT_PERMISSION_CLASSES': [
        'rest_framework.permissions.IsAuthenticated',
    ],
    'EXCEPTION_HANDLER': 'jobmail.exceptions.custom_exception_handler',
}

# Celery
CELERY_BROKER_URL = os.environ.get('CELERY_BROKER_URL', 'redis://localhost:6379/0')
CELERY_RESULT_BACKEND = os.environ.get('CELERY_RESULT_BACKEND', CELERY_BROKER_URL)
CELERY_TASK_ALWAYS_EAGER = _env_bool('CELERY_TASK_ALWAYS_EAGER', False)
CELERY_TIMEZONE = TIME_ZONE

# Mailbox monitor (defaults live in jobmail.conf)
JOBMAIL = {
    'MAILBOX_CLIENT': os.environ.get('JOBMAIL_MAILBOX_CLIENT', 'jobmail.mailbox.GmailMailboxClient'),
    'GMAIL_QUERY': os.environ.get('JOBMAIL_GMAIL_QUERY', ''),
    'GMAIL_ACCESS_TOKEN': os.environ.get('JOBMAIL_GMAIL_ACCESS_TOKEN', ''),
    'MIN_CONFIDENCE': int(os.environ.get('JOBMAIL_MIN_CONFIDENCE', '40')),
    'DEDUP_WINDOW_DAYS': int(os.environ.get('JOBMAIL_DEDUP_WINDOW_DAYS', '0')),
    'DEFAULT_INTERVAL_MINUTES': int(os.environ.get('JOBMAIL_DEFAULT_INTERVAL_MINUTES', '5')),
}
if os.environ.get('JOBMAIL_CLASSIFIER_RULES'):
    JOBMAIL['CLASSIFIER_RULES'] = os.environ['JOBMAIL_CLASSIFIER_RULES']
if os.environ.get('JOBMAIL_FETCH_TIMEOUT_SECONDS'):
    JOBMAIL['FETCH_TIMEOUT_SECONDS'] = int(os.environ['JOBMAIL_FETCH_TIMEOUT_SECONDS'])

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'verbose': {
            'format': '%(asctime)s %(levelname)s %(name)s: %(message)s',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'verbose',
        },
    },
    'root': {
        'handlers': ['console'],
        'level': os.environ.get('DJANGO_LOG_LEVEL', 'WARNING'),
    },
    'loggers': {
        'jobmail': {
            'handlers': ['console'],
            'level': os.environ.get('JOBMAIL_LOG_LEVEL', 'INFO'),
            'propagate': False,
        },
    },
}
