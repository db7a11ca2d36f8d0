from app.extensions import db
from datetime import datetime

# Feature limit value meaning "no limit"
UNLIMITED = -1


class Plan(db.Model):
    __tablename__ = 'plans'

    """
    Plan Model - A subscription tier tenants are billed against.

    Plans are shared by every tenant and live in the central store. A plan
    referenced by any tenant cannot be deleted, only deactivated.

    Attributes:
        id (int): Primary key
        slug (str): Stable identifier ('free', 'pro-monthly', ...)
        name (str): Display name
        stripe_price_id (str): Stripe price used at checkout (None for free plans)
        price (Decimal): Price per billing period
        billing_period (str): 'monthly' or 'yearly'
        trial_days (int): Trial length granted at checkout (0 = no trial)
        features (dict): feature -> int limit (-1 = unlimited) or bool flag
        is_active (bool): Offered to new customers
    """

    id = db.Column(db.Integer, primary_key=True)
    slug = db.Column(db.String(100), unique=True, nullable=False)
    name = db.Column(db.String(255), nullable=False)
    stripe_price_id = db.Column(db.String(255), nullable=True)
    price = db.Column(db.Numeric(8, 2), nullable=False, default=0)
    billing_period = db.Column(db.String(20), nullable=False, default='monthly')
    trial_days = db.Column(db.Integer, nullable=False, default=0)
    features = db.Column(db.JSON, nullable=False, default=dict)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    tenants = db.relationship('Tenant', back_populates='plan')

    def feature_limit(self, feature):
        """Return the configured limit for a feature, or None if the plan does not define it."""
        return (self.features or {}).get(feature)

    @property
    def is_free(self):
        return self.slug == 'free' or (not self.stripe_price_id and float(self.price or 0) == 0)

    def to_dict(self):
        return {
            "id": self.id,
            "slug": self.slug,
            "name": self.name,
            "price": float(self.price or 0),
            "billing_period": self.billing_period,
            "trial_days": self.trial_days,
            "features": self.features or {},
            "is_active": self.is_active,
        }
