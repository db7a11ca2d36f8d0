from flask import Blueprint, request, jsonify, current_app
from marshmallow import ValidationError
from werkzeug.security import check_password_hash
from flask_jwt_extended import create_access_token, create_refresh_token, jwt_required, get_jwt, get_jwt_identity

from app.extensions import tenant_spaces
from app.api.decorators import tenant_required
from app.models.tenant_space import TenantUser
from app.services.permissions import permissions_for
from app.services.tenant_registry import TenantRegistry
from app.services.tenant_spaces import TenantContext
from app.schemas.auth_schema import LoginSchema, UserResponseSchema

# Create Blueprint
bp = Blueprint('auth', __name__)

# Initialize schemas
login_schema = LoginSchema()
user_schema = UserResponseSchema()


def _issue_access_token(slug, user):
    return create_access_token(
        identity=str(user.id),
        additional_claims={
            "tenant": slug,
            "email": user.email,
            "role": user.role
        }
    )


@bp.route('/login', methods=['POST'])
def login():
    """
    Tenant Login Endpoint

    Flow:
    1. Resolve the active tenant from the request
    2. Find the user inside that tenant's space
    3. Verify password hash
    4. Issue JWT tokens carrying the tenant slug and role

    Request Body:
        {"tenant": "acme", "email": "jane@acme.com", "password": "SecurePass123"}

    Responses:
      200 Login successful
      400 Validation error
      401 Wrong credentials (unknown tenant, unknown user or bad password)
    """
    data = request.get_json(silent=True) or {}
    try:
        validated = login_schema.load(data)
    except ValidationError as err:
        return jsonify({"error": "Validation failed", "details": err.messages}), 400

    slug = validated['tenant'].strip().lower()
    if TenantRegistry().get_active(slug) is None:
        return jsonify({"error": "Invalid credentials"}), 401

    with tenant_spaces.session(TenantContext(slug)) as session:
        user = session.query(TenantUser).filter_by(email=validated['email'].strip().lower()).first()

    if not user or not user.is_active or not check_password_hash(user.password_hash, validated['password']):
        current_app.logger.info(f"Login failed: tenant={slug}")
        return jsonify({"error": "Invalid credentials"}), 401

    access_token = _issue_access_token(slug, user)
    refresh_token = create_refresh_token(identity=str(user.id), additional_claims={"tenant": slug})

    return jsonify({
        "message": "Login successful",
        "tenant": slug,
        "user": user_schema.dump(user),
        "access_token": access_token,
        "refresh_token": refresh_token
    }), 200


@bp.route('/refresh', methods=['POST'])
@jwt_required(refresh=True)
def refresh():
    """
    Refresh Token Endpoint
    - Requires a valid refresh token
    - Returns a new access token with the user's current role
    """
    slug = get_jwt().get('tenant')
    if not slug or TenantRegistry().get_active(slug) is None:
        return jsonify({"error": "Organization not found or inactive"}), 404

    with tenant_spaces.session(TenantContext(slug)) as session:
        user = session.get(TenantUser, int(get_jwt_identity()))

    if not user or not user.is_active:
        return jsonify({"error": "User not found"}), 404

    return jsonify({"access_token": _issue_access_token(slug, user)}), 200


@bp.route('/me', methods=['GET'])
@tenant_required
def me(ctx):
    """
    Return current logged-in user's info and effective permissions.
    """
    with tenant_spaces.session(ctx) as session:
        user = session.get(TenantUser, int(get_jwt_identity()))

    if not user:
        return jsonify({"error": "User not found"}), 404

    return jsonify({
        "tenant": ctx.slug,
        "user": user_schema.dump(user),
        "permissions": sorted(permissions_for(user.role)),
    }), 200
