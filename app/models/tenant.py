from app.extensions import db
from datetime import datetime

# Lifecycle of the tenant row itself (independent of billing)
STATE_PROVISIONING = 'provisioning'
STATE_ACTIVE = 'active'
STATE_FAILED = 'failed'
STATE_DELETING = 'deleting'

# Subscription status vocabulary. Provider statuses outside this set are
# stored verbatim.
STATUS_NONE = 'none'
STATUS_TRIALING = 'trialing'
STATUS_ACTIVE = 'active'
STATUS_PAST_DUE = 'past_due'
STATUS_CANCELED = 'canceled'


class Tenant(db.Model):
    __tablename__ = 'tenants'

    """
    Tenant Model - One customer organization with its own isolated space.

    The slug is the identity and the routing key (subdomain). The row is
    inserted in the 'provisioning' state to reserve the slug, and only
    callers looking at 'active' tenants ever see it as usable.

    Attributes:
        slug (str): Unique identifier / subdomain
        name (str): Organization display name
        plan_id (int): Current plan
        state (str): 'provisioning', 'active', 'failed', 'deleting'
        stripe_customer_id (str): Stripe customer, set on first checkout
        stripe_subscription_id (str): Stripe subscription, if any
        subscription_status (str): 'none', 'trialing', 'active', 'past_due', 'canceled', ...
        trial_ends_at (datetime): End of trial, if the provider reported one
        subscription_ends_at (datetime): When the subscription ended
        settings (dict): Free-form tenant settings
        failure_reason (str): Why provisioning/compensation failed (state 'failed')
        version (int): Optimistic lock counter
    """

    slug = db.Column(db.String(63), primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    plan_id = db.Column(db.Integer, db.ForeignKey('plans.id'), nullable=True)
    state = db.Column(db.String(20), nullable=False, default=STATE_PROVISIONING)
    stripe_customer_id = db.Column(db.String(255), nullable=True, index=True)
    stripe_subscription_id = db.Column(db.String(255), nullable=True, index=True)
    subscription_status = db.Column(db.String(50), nullable=False, default=STATUS_NONE)
    trial_ends_at = db.Column(db.DateTime, nullable=True)
    subscription_ends_at = db.Column(db.DateTime, nullable=True)
    settings = db.Column(db.JSON, nullable=True)
    failure_reason = db.Column(db.Text, nullable=True)
    version = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    plan = db.relationship('Plan', back_populates='tenants')

    __mapper_args__ = {'version_id_col': version}

    @property
    def is_active(self):
        return self.state == STATE_ACTIVE

    def is_on_trial(self):
        return self.trial_ends_at is not None and datetime.utcnow() < self.trial_ends_at

    def has_active_subscription(self):
        return self.subscription_status == STATUS_ACTIVE

    def subscription_is_active(self):
        return self.subscription_status in (STATUS_ACTIVE, STATUS_TRIALING)

    def is_past_due(self):
        return self.subscription_status == STATUS_PAST_DUE

    def is_canceled(self):
        return self.subscription_status == STATUS_CANCELED

    def to_dict(self):
        return {
            "slug": self.slug,
            "name": self.name,
            "state": self.state,
            "plan": self.plan.slug if self.plan else None,
            "subscription": {
                "status": self.subscription_status,
                "trial_ends_at": self.trial_ends_at.isoformat() if self.trial_ends_at else None,
                "subscription_ends_at": self.subscription_ends_at.isoformat() if self.subscription_ends_at else None,
                "is_on_trial": self.is_on_trial(),
                "has_active_subscription": self.has_active_subscription(),
            },
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
