from flask import Blueprint, request, jsonify, current_app
from marshmallow import ValidationError

from app.api.decorators import admin_required
from app.services.provisioning import ProvisioningService, ProvisionRequest
from app.services.tenant_registry import TenantRegistry
from app.schemas.tenant_schema import CreateTenantSchema, TenantResponseSchema
from app import errors

bp = Blueprint('tenants', __name__)

create_tenant_schema = CreateTenantSchema()
tenant_schema = TenantResponseSchema()


@bp.route('', methods=['POST'])
def create_tenant():
    """
    Organization Signup Endpoint

    Provisions a tenant: reserves the slug, allocates its isolated space,
    seeds roles/permissions, creates the owner and a starter board.

    Request Body:
        {
            "name": "Acme Inc",
            "slug": "acme",                 (optional, derived from name)
            "plan": "free",                 (optional)
            "owner_name": "Jane Doe",
            "owner_email": "jane@acme.com",
            "owner_password": "SecurePass123"
        }

    Returns:
        201: {"tenant": {...}, "redirect_url": "https://acme.example.com/login"}
        400: Validation error
        409: Slug taken (concurrent signup) or no free slug variant
        503: Provisioning failed, try again
    """
    data = request.get_json(silent=True) or {}
    try:
        validated = create_tenant_schema.load(data)
    except ValidationError as err:
        return jsonify({"error": "Validation failed", "details": err.messages}), 400

    service = ProvisioningService()
    try:
        tenant = service.provision(ProvisionRequest(
            name=validated['name'],
            slug=validated.get('slug'),
            plan_slug=validated.get('plan'),
            owner_name=validated['owner_name'],
            owner_email=validated['owner_email'],
            owner_password=validated['owner_password'],
        ))
    except errors.ProvisioningError as e:
        current_app.logger.warning(
            f"Signup failed: reason={e.reason} slug={e.context.get('slug')} owner={validated['owner_email']}"
        )
        raise

    current_app.logger.info(f"Tenant created: slug={tenant.slug}")
    return jsonify({
        "message": "Organization created successfully",
        "tenant": tenant_schema.dump(tenant),
        "redirect_url": f"{service.tenant_url(tenant.slug)}/login",
    }), 201


@bp.route('/check-slug/<slug>', methods=['GET'])
def check_slug(slug):
    """Returns {"slug", "available"}; 400 if the slug is malformed."""
    available = ProvisioningService().is_slug_available(slug)
    return jsonify({"slug": slug, "available": available}), 200


@bp.route('/<slug>', methods=['GET'])
@admin_required
def get_tenant(slug):
    tenant = TenantRegistry().get(slug)
    if tenant is None:
        raise errors.NotFound(f"Tenant '{slug}' not found", slug=slug)

    data = tenant.to_dict()
    data["failure_reason"] = tenant.failure_reason
    data["stripe_customer_id"] = tenant.stripe_customer_id
    data["stripe_subscription_id"] = tenant.stripe_subscription_id
    return jsonify({"tenant": data}), 200


@bp.route('/<slug>/health', methods=['GET'])
@admin_required
def tenant_health(slug):
    issues = ProvisioningService().check_health(slug)
    return jsonify({"slug": slug, "healthy": not issues, "issues": issues}), 200


@bp.route('/<slug>/events', methods=['GET'])
@admin_required
def tenant_events(slug):
    """Subscription audit log, newest first. Available after deprovisioning too."""
    limit = min(request.args.get('limit', 50, type=int), 500)
    events = TenantRegistry().history(slug, limit=limit)
    return jsonify({"slug": slug, "events": [e.to_dict() for e in events]}), 200


@bp.route('/<slug>', methods=['DELETE'])
@admin_required
def delete_tenant(slug):
    """
    Deprovision a tenant in the background.

    Returns:
        202: Teardown queued
        404: No such tenant
        503: Celery/Redis unavailable
    """
    if TenantRegistry().get(slug) is None:
        raise errors.NotFound(f"Tenant '{slug}' not found", slug=slug)

    from app.tasks.tenant_tasks import deprovision_tenant_task

    try:
        task = deprovision_tenant_task.delay(slug)
    except Exception as e:
        error_msg = str(e)
        if 'Connection refused' in error_msg or 'Error 111' in error_msg or 'redis' in error_msg.lower():
            current_app.logger.error(f"Tenant delete: Celery/Redis connection error: {error_msg}")
            return jsonify({
                "error": "Background job service unavailable",
                "details": "Redis/Celery is not running. Please start Redis and Celery worker."
            }), 503
        raise

    current_app.logger.info(f"Tenant delete: Queued teardown slug={slug}, task_id={task.id}")
    return jsonify({"message": "Tenant deletion started", "slug": slug, "task_id": task.id}), 202
