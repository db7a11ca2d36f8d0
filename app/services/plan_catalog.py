"""
Default plan catalogue, upserted by `flask plans seed`.
"""
import logging

from flask import current_app

from app.extensions import db
from app.models.plan import UNLIMITED, Plan

logger = logging.getLogger(__name__)

_PRO_FEATURES = {
    'max_teams': UNLIMITED,
    'max_users': UNLIMITED,
    'max_boards': UNLIMITED,
    'max_tasks': UNLIMITED,
    'max_tasks_per_board': UNLIMITED,
    'max_storage_mb': 10000,
    'analytics': True,
    'priority_support': True,
    'custom_branding': True,
    'api_access': True,
    'webhooks': True,
}


def default_plans(config=None):
    config = config if config is not None else current_app.config
    return [
        {
            'slug': 'free',
            'name': 'Free',
            'stripe_price_id': None,
            'price': 0,
            'billing_period': 'monthly',
            'trial_days': 0,
            'features': {
                'max_teams': 1,
                'max_users': 3,
                'max_boards': 3,
                'max_tasks_per_board': 50,
                'max_storage_mb': 100,
                'analytics': False,
                'priority_support': False,
                'custom_branding': False,
            },
        },
        {
            'slug': 'pro-monthly',
            'name': 'Pro (Monthly)',
            'stripe_price_id': config.get('STRIPE_PRO_MONTHLY_PRICE_ID'),
            'price': 29,
            'billing_period': 'monthly',
            'trial_days': 14,
            'features': dict(_PRO_FEATURES),
        },
        {
            'slug': 'pro-yearly',
            'name': 'Pro (Yearly)',
            'stripe_price_id': config.get('STRIPE_PRO_YEARLY_PRICE_ID'),
            'price': 290,
            'billing_period': 'yearly',
            'trial_days': 14,
            'features': dict(_PRO_FEATURES),
        },
    ]


def seed_plans(config=None):
    """Insert or update the default plans by slug. Returns the number of plans written."""
    plans = default_plans(config)
    for data in plans:
        plan = Plan.query.filter_by(slug=data['slug']).first()
        if plan is None:
            plan = Plan(slug=data['slug'])
            db.session.add(plan)
        for key, value in data.items():
            setattr(plan, key, value)
        plan.is_active = True

    db.session.commit()
    logger.info("Plans seeded", extra={"plans": [p['slug'] for p in plans]})
    return len(plans)
