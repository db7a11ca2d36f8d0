from app.extensions import db
from datetime import datetime

EVENT_CREATED = 'created'
EVENT_UPGRADED = 'upgraded'
EVENT_DOWNGRADED = 'downgraded'
EVENT_CANCELED = 'canceled'
EVENT_UPDATED = 'updated'


class SubscriptionEvent(db.Model):
    __tablename__ = 'subscription_events'

    """
    Subscription audit log. Append-only.

    tenant_slug is not a foreign key: the history of a tenant outlives the
    tenant row after deprovisioning.
    """

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    tenant_slug = db.Column(db.String(63), nullable=False, index=True)
    plan_id = db.Column(db.Integer, db.ForeignKey('plans.id', ondelete='SET NULL'), nullable=True)
    event_type = db.Column(db.String(20), nullable=False)
    status = db.Column(db.String(50), nullable=False)
    provider_event_id = db.Column(db.String(255), nullable=True)
    event_metadata = db.Column(db.JSON, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    plan = db.relationship('Plan')

    def to_dict(self):
        return {
            "id": self.id,
            "tenant": self.tenant_slug,
            "plan": self.plan.slug if self.plan else None,
            "event_type": self.event_type,
            "status": self.status,
            "provider_event_id": self.provider_event_id,
            "metadata": self.event_metadata or {},
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
