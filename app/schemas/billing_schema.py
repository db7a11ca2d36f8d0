from marshmallow import Schema, fields


class PlanChoiceSchema(Schema):
    """Body of checkout and change-plan requests: the target plan's slug."""
    plan = fields.Str(required=True, error_messages={
        "required": "Plan is required"
    })
    success_url = fields.Url(required=False, load_default=None, require_tld=False)
    cancel_url = fields.Url(required=False, load_default=None, require_tld=False)


class PortalSchema(Schema):
    return_url = fields.Url(required=False, load_default=None, require_tld=False)
