from marshmallow import Schema, fields, validates, ValidationError
import re


def validate_password_strength(value):
    """
    Validate password strength

    Requirements:
    - Minimum 8 characters
    - At least 1 uppercase letter
    - At least 1 number

    Raises:
        ValidationError: If password doesn't meet requirements
    """
    if len(value) < 8:
        raise ValidationError("Password must be at least 8 characters long")

    if not re.search(r'[A-Z]', value):
        raise ValidationError("Password must contain at least one uppercase letter")

    if not re.search(r'\d', value):
        raise ValidationError("Password must contain at least one number")


class LoginSchema(Schema):
    """
    Tenant Login Request Validation Schema

    A user only exists inside one tenant's space, so the tenant slug is
    part of the credentials.

    Example:
        schema = LoginSchema()
        result = schema.load({"tenant": "acme", "email": "...", "password": "..."})
    """
    tenant = fields.Str(required=True, error_messages={
        "required": "Organization is required"
    })

    email = fields.Email(required=True, error_messages={
        "required": "Email is required",
        "invalid": "Invalid email format"
    })

    password = fields.Str(required=True, load_only=True, error_messages={
        "required": "Password is required"
    })

    @validates('tenant')
    def validate_tenant(self, value, **kwargs):
        if not value.strip():
            raise ValidationError("Organization cannot be empty")


class UserResponseSchema(Schema):
    """
    User Response Schema

    Defines what user data is returned to frontend.
    Never return password_hash or sensitive data!
    """
    id = fields.Int()
    name = fields.Str()
    email = fields.Email()
    role = fields.Str()
    is_active = fields.Bool()
