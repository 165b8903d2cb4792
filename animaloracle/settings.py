from pathlib import Path
import os
import dj_database_url

BASE_DIR = Path(__file__).resolve().parent.parent

SECRET_KEY = os.getenv('DJANGO_SECRET_KEY', 'unsafe-dev-secret')
DEBUG = os.getenv('DJANGO_DEBUG', '1') == '1'
ALLOWED_HOSTS = [host for host in os.getenv('DJANGO_ALLOWED_HOSTS', 'localhost,127.0.0.1,testserver').split(',') if host]

INSTALLED_APPS = [
    'django.contrib.admin',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',
    'django.contrib.staticfiles',
    'apps.animalitos.apps.AnimalitosConfig',
]

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'whitenoise.middleware.WhiteNoiseMiddleware',
    'django.contrib.sessions.middleware.SessionMiddleware',
    'django.middleware.common.CommonMiddleware',
    'django.middleware.csrf.CsrfViewMiddleware',
    'django.contrib.auth.middleware.AuthenticationMiddleware',
    'django.contrib.messages.middleware.MessageMiddleware',
    'django.middleware.clickjacking.XFrameOptionsMiddleware',
]

ROOT_URLCONF = 'animaloracle.urls'

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

WSGI_APPLICATION = 'animaloracle.wsgi.application'

DATABASES = {
    'default': dj_database_url.config(
        default=f"sqlite:///{BASE_DIR / 'db.sqlite3'}",
        conn_max_age=600,
    )
}

LANGUAGE_CODE = 'es'
TIME_ZONE = 'America/Caracas'
USE_I18N = True
USE_TZ = True

STATIC_URL = 'static/'
STATIC_ROOT = BASE_DIR / 'staticfiles'
STORAGES = {
    'default': {
        'BACKEND': 'django.core.files.storage.FileSystemStorage',
    },
    'staticfiles': {
        'BACKEND': 'whitenoise.storage.CompressedManifestStaticFilesStorage',
    },
}

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

ANIMALITOS_API_TOKEN = os.getenv('ANIMALITOS_API_TOKEN')

ANIMALITOS_CONFIG = {
    'PROXIES': [
        proxy for proxy in os.getenv(
            'ANIMALITOS_PROXIES',
            'https://api.allorigins.win/get?url=,'
            'https://cors-anywhere.herokuapp.com/,'
            'https://api.codetabs.com/v1/proxy?quest=,'
            'https://thingproxy.freeboard.io/fetch/',
        ).split(',') if proxy
    ],
    'REQUEST_TIMEOUT': float(os.getenv('ANIMALITOS_REQUEST_TIMEOUT', '15')),
    'MAX_RETRIES': int(os.getenv('ANIMALITOS_MAX_RETRIES', '3')),
    'BACKOFF_SECONDS': float(os.getenv('ANIMALITOS_BACKOFF_SECONDS', '1.0')),
    'FETCH_BUDGET_SECONDS': float(os.getenv('ANIMALITOS_FETCH_BUDGET', '120')),
    'PROXIMITY_WINDOW': int(os.getenv('ANIMALITOS_PROXIMITY_WINDOW', '200')),
    'TODAY_CACHE_TTL': int(os.getenv('ANIMALITOS_TODAY_TTL', str(2 * 60))),
    'SCORE_CACHE_TTL': int(os.getenv('ANIMALITOS_SCORE_TTL', str(5 * 60))),
    'MIN_HISTORY_REQUIRED': int(os.getenv('ANIMALITOS_MIN_HISTORY', '10')),
    'BACKFILL_INTERVAL_DAYS': int(os.getenv('ANIMALITOS_BACKFILL_INTERVAL_DAYS', '7')),
    'BACKFILL_MAX_PAGES': int(os.getenv('ANIMALITOS_BACKFILL_MAX_PAGES', '10')),
    'MAX_TRACKED_OUTCOMES': int(os.getenv('ANIMALITOS_MAX_TRACKED_OUTCOMES', '200')),
    # Dotted path to a zero-argument factory returning a SupplementaryPredictor.
    'SUPPLEMENTARY_PREDICTOR': os.getenv('ANIMALITOS_SUPPLEMENTARY_PREDICTOR', ''),
    'WEIGHTS': {
        'recent': float(os.getenv('ANIMALITOS_WEIGHT_RECENT', '0.5')),
        'total': float(os.getenv('ANIMALITOS_WEIGHT_TOTAL', '0.3')),
        'absence': float(os.getenv('ANIMALITOS_WEIGHT_ABSENCE', '0.2')),
    },
}

ANIMALITOS_DEFAULT_LOTTERY = 'LOTTO_ACTIVO'

ANIMALITOS_LOTTERIES = {
    'GUACHARO': {
        'name': 'Guácharo Activo',
        'section_marker': 'Resultados Guacharo Activo',
        'data_sources': {
            'lotoven': {
                'url': 'https://lotoven.com/animalitos/',
                'priority': 1,
                'enabled': True,
            },
            'loteriadehoy': {
                'url': 'https://www.loteriadehoy.com/animalito/guacharoactivo/resultados/',
                'archive_url': 'https://www.loteriadehoy.com/animalito/guacharoactivo/historico/',
                'priority': 2,
                'enabled': True,
            },
        },
    },
    'LOTTO_ACTIVO': {
        'name': 'Lotto Activo',
        'section_marker': 'Resultados Lotto Activo',
        'data_sources': {
            'lotoven': {
                'url': 'https://lotoven.com/animalitos/',
                'priority': 1,
                'enabled': True,
            },
            'loteriadehoy': {
                'url': 'https://www.loteriadehoy.com/animalito/lottoactivo/resultados/',
                'archive_url': 'https://www.loteriadehoy.com/animalito/lottoactivo/historico/',
                'priority': 2,
                'enabled': True,
            },
        },
    },
}

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
        },
    },
    'loggers': {
        'animalitos': {
            'handlers': ['console'],
            'level': os.getenv('ANIMALITOS_LOG_LEVEL', 'INFO'),
        },
    },
}
