"""
Route decorators for tenant-scoped and admin endpoints.

tenant_required resolves the tenant from the JWT and hands the view an
explicit TenantContext as the `ctx` keyword argument; nothing downstream
looks the tenant up from ambient state.
"""
import hmac
from functools import wraps

from flask import current_app, jsonify, request
from flask_jwt_extended import get_jwt, verify_jwt_in_request

from app.services.entitlements import EntitlementGate
from app.services.permissions import role_has_permission
from app.services.tenant_registry import TenantRegistry
from app.services.tenant_spaces import TenantContext


def tenant_required(fn):
    """Require a valid access token for an active tenant; passes ctx=TenantContext."""
    @wraps(fn)
    def wrapper(*args, **kwargs):
        verify_jwt_in_request()
        claims = get_jwt()
        slug = claims.get('tenant')
        if not slug:
            current_app.logger.warning("Tenant route: Missing tenant in JWT token")
            return jsonify({"error": "Invalid token: missing tenant"}), 401

        if TenantRegistry().get_active(slug) is None:
            current_app.logger.warning(f"Tenant route: Tenant not active tenant={slug}")
            return jsonify({"error": "Organization not found or inactive"}), 404

        kwargs['ctx'] = TenantContext(slug)
        return fn(*args, **kwargs)
    return wrapper


def permission_required(permission):
    """Deny with 403 unless the caller's role grants `permission`. Use below tenant_required."""
    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            role = get_jwt().get('role')
            if not role_has_permission(role, permission):
                current_app.logger.info(f"Permission denied: role={role}, permission={permission}")
                return jsonify({
                    "error": "You do not have permission to perform this action",
                    "permission": permission,
                }), 403
            return fn(*args, **kwargs)
        return wrapper
    return decorator


def feature_limit_required(feature):
    """Run the Entitlement Gate before a create. Use below tenant_required."""
    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            decision = EntitlementGate().evaluate(kwargs['ctx'], feature)
            if not decision.allowed:
                current_app.logger.info(
                    f"Entitlement denied: tenant={kwargs['ctx'].slug}, feature={feature}, "
                    f"limit={decision.limit}, usage={decision.usage}"
                )
                return jsonify({
                    "error": f"You've reached your plan limit of {decision.limit} for {feature}. "
                             f"Please upgrade your plan.",
                    "feature": feature,
                    "limit": decision.limit,
                }), 403
            return fn(*args, **kwargs)
        return wrapper
    return decorator


def admin_required(fn):
    """Platform admin endpoints: X-Admin-Token must equal ADMIN_API_TOKEN."""
    @wraps(fn)
    def wrapper(*args, **kwargs):
        expected = current_app.config.get('ADMIN_API_TOKEN')
        supplied = request.headers.get('X-Admin-Token', '')
        if not expected or not hmac.compare_digest(supplied.encode(), expected.encode()):
            return jsonify({"error": "Admin token required"}), 401
        return fn(*args, **kwargs)
    return wrapper
