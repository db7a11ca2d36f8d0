from marshmallow import Schema, fields, validate, validates, ValidationError

from app.models.plan import UNLIMITED


class PlanSchema(Schema):
    """
    Plan create/update payload (platform admin only).

    features maps a feature name to an integer limit (-1 = unlimited) or a
    boolean flag.
    """
    slug = fields.Str(required=True, validate=validate.Regexp(
        r'^[a-z0-9][a-z0-9-]*$', error="Slug can only contain lowercase letters, numbers, and hyphens"
    ))
    name = fields.Str(required=True, validate=validate.Length(min=1, max=255))
    stripe_price_id = fields.Str(load_default=None, allow_none=True)
    price = fields.Decimal(required=True, places=2, validate=validate.Range(min=0))
    billing_period = fields.Str(load_default='monthly', validate=validate.OneOf(['monthly', 'yearly']))
    trial_days = fields.Int(load_default=0, validate=validate.Range(min=0, max=365))
    features = fields.Dict(keys=fields.Str(), load_default=dict)
    is_active = fields.Bool(load_default=True)

    @validates('features')
    def validate_features(self, value, **kwargs):
        for name, limit in value.items():
            if isinstance(limit, bool):
                continue
            if not isinstance(limit, int) or limit < UNLIMITED:
                raise ValidationError(
                    f"Feature '{name}' must be a boolean or an integer limit (-1 for unlimited)"
                )
