import os
from dotenv import load_dotenv
from datetime import timedelta

load_dotenv()

class Config:
    # Central store (tenants, plans, subscription events)
    SQLALCHEMY_DATABASE_URI = os.getenv('DATABASE_URL', 'sqlite:///tenancy.db')

    # Fix for Render's postgres:// vs postgresql://
    if SQLALCHEMY_DATABASE_URI and SQLALCHEMY_DATABASE_URI.startswith('postgres://'):
        SQLALCHEMY_DATABASE_URI = SQLALCHEMY_DATABASE_URI.replace('postgres://', 'postgresql://', 1)

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SECRET_KEY = os.getenv('SECRET_KEY')
    JWT_SECRET_KEY = os.getenv('JWT_SECRET_KEY')
    JWT_ACCESS_TOKEN_EXPIRES = timedelta(hours=24)
    JWT_REFRESH_TOKEN_EXPIRES = timedelta(days=30)

    # Redis / Celery
    REDIS_URL = os.getenv('REDIS_URL', 'redis://localhost:6379/0')
    CELERY_BROKER_URL = os.getenv('CELERY_BROKER_URL', REDIS_URL)
    CELERY_RESULT_BACKEND = os.getenv('CELERY_RESULT_BACKEND', REDIS_URL)
    CELERY_TASK_ALWAYS_EAGER = os.getenv('CELERY_TASK_ALWAYS_EAGER', 'false').lower() == 'true'

    # Tenant spaces
    # SQLite: a URL template with {slug}, one database file per tenant.
    # PostgreSQL: a plain URL, one schema per tenant.
    TENANT_DATABASE_URL = os.getenv('TENANT_DATABASE_URL', 'sqlite:///instance/tenants/{slug}.db')
    if TENANT_DATABASE_URL.startswith('postgres://'):
        TENANT_DATABASE_URL = TENANT_DATABASE_URL.replace('postgres://', 'postgresql://', 1)
    TENANT_SCHEMA_PREFIX = os.getenv('TENANT_SCHEMA_PREFIX', 'tenant_')
    TENANT_SPACE_TIMEOUT_SECONDS = float(os.getenv('TENANT_SPACE_TIMEOUT_SECONDS', '30'))

    # Provisioning
    DEFAULT_PLAN_SLUG = os.getenv('DEFAULT_PLAN_SLUG', 'free')
    SLUG_MAX_ATTEMPTS = int(os.getenv('SLUG_MAX_ATTEMPTS', '20'))
    # 'provisioning' rows older than this are treated as abandoned by a crashed worker
    PROVISIONING_STALE_SECONDS = float(os.getenv('PROVISIONING_STALE_SECONDS', '600'))
    APP_DOMAIN = os.getenv('APP_DOMAIN', 'localhost:3000')
    APP_SCHEME = os.getenv('APP_SCHEME', 'http')
    FRONTEND_URL = os.getenv('FRONTEND_URL', 'http://localhost:3000')

    # Stripe
    STRIPE_SECRET_KEY = os.getenv('STRIPE_SECRET_KEY')
    STRIPE_WEBHOOK_SECRET = os.getenv('STRIPE_WEBHOOK_SECRET')
    STRIPE_WEBHOOK_TOLERANCE = int(os.getenv('STRIPE_WEBHOOK_TOLERANCE', '300'))
    STRIPE_MAX_NETWORK_RETRIES = int(os.getenv('STRIPE_MAX_NETWORK_RETRIES', '2'))
    BILLING_TIMEOUT_SECONDS = float(os.getenv('BILLING_TIMEOUT_SECONDS', '20'))
    STRIPE_PRO_MONTHLY_PRICE_ID = os.getenv('STRIPE_PRO_MONTHLY_PRICE_ID')
    STRIPE_PRO_YEARLY_PRICE_ID = os.getenv('STRIPE_PRO_YEARLY_PRICE_ID')

    # Webhook reconciliation
    RECONCILE_MAX_RETRIES = int(os.getenv('RECONCILE_MAX_RETRIES', '3'))

    # Platform administration (plan CRUD, tenant teardown)
    ADMIN_API_TOKEN = os.getenv('ADMIN_API_TOKEN')
