from marshmallow import Schema, fields, validates, ValidationError

from app.schemas.auth_schema import validate_password_strength


class CreateTenantSchema(Schema):
    """
    Organization Signup Request Validation Schema

    Creates a tenant and its owner in one call. The slug is optional and is
    derived from the name when missing; the plan defaults to the free plan.

    Example:
        schema = CreateTenantSchema()
        result = schema.load({
            "name": "Acme Inc",
            "owner_name": "Jane Doe",
            "owner_email": "jane@acme.com",
            "owner_password": "SecurePass123"
        })
    """
    name = fields.Str(required=True, error_messages={
        "required": "Organization name is required"
    })

    slug = fields.Str(required=False, load_default=None)

    plan = fields.Str(required=False, load_default=None)

    owner_name = fields.Str(required=True, error_messages={
        "required": "Owner name is required"
    })

    owner_email = fields.Email(required=True, error_messages={
        "required": "Owner email is required",
        "invalid": "Invalid email format"
    })

    owner_password = fields.Str(required=True, load_only=True, error_messages={
        "required": "Password is required"
    })

    @validates('name')
    def validate_name(self, value, **kwargs):
        """
        Requirements:
        - Minimum 2 characters
        - Maximum 255 characters
        """
        if len(value.strip()) < 2:
            raise ValidationError("Organization name must be at least 2 characters")

        if len(value) > 255:
            raise ValidationError("Organization name must be less than 255 characters")

    @validates('owner_name')
    def validate_owner_name(self, value, **kwargs):
        if not value.strip():
            raise ValidationError("Owner name cannot be empty")

    @validates('owner_password')
    def validate_owner_password(self, value, **kwargs):
        validate_password_strength(value)


class TenantResponseSchema(Schema):
    """
    Tenant Response Schema

    Defines what tenant data is returned.
    """
    slug = fields.Str()
    name = fields.Str()
    state = fields.Str()
    plan = fields.Function(lambda tenant: tenant.plan.slug if tenant.plan else None)
    subscription_status = fields.Str()
    created_at = fields.DateTime()
