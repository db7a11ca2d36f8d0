from flask import Blueprint, request, jsonify, current_app
from marshmallow import ValidationError

from app.extensions import tenant_spaces
from app.api.decorators import tenant_required, permission_required
from app.models.tenant_space import TenantUser
from app.services.billing_gateway import get_billing_gateway
from app.services.entitlements import EntitlementGate
from app.services.permissions import ROLE_OWNER
from app.services.subscription_reconciler import SubscriptionReconciler
from app.services.tenant_registry import TenantRegistry
from app.schemas.billing_schema import PlanChoiceSchema, PortalSchema
from app import errors

bp = Blueprint('billing', __name__)

plan_choice_schema = PlanChoiceSchema()
portal_schema = PortalSchema()


def _load(schema):
    data = request.get_json(silent=True) or {}
    return schema.load(data)


@bp.route('/subscription', methods=['GET'])
@tenant_required
def subscription(ctx):
    tenant = TenantRegistry().get_active(ctx.slug)
    return jsonify({
        "status": tenant.subscription_status,
        "trial_ends_at": tenant.trial_ends_at.isoformat() if tenant.trial_ends_at else None,
        "subscription_ends_at": tenant.subscription_ends_at.isoformat() if tenant.subscription_ends_at else None,
        "is_on_trial": tenant.is_on_trial(),
        "has_active_subscription": tenant.has_active_subscription(),
        "is_active": tenant.subscription_is_active(),
        "current_plan": tenant.plan.to_dict() if tenant.plan else None,
    }), 200


@bp.route('/usage', methods=['GET'])
@tenant_required
def usage(ctx):
    return jsonify({"usage": EntitlementGate().usage(ctx)}), 200


@bp.route('/history', methods=['GET'])
@tenant_required
@permission_required('manage settings')
def history(ctx):
    events = TenantRegistry().history(ctx.slug)
    return jsonify({"events": [e.to_dict() for e in events]}), 200


@bp.route('/checkout', methods=['POST'])
@tenant_required
@permission_required('manage settings')
def checkout(ctx):
    """
    Start a Stripe Checkout for a paid plan.

    Request Body:
        {"plan": "pro-monthly"}

    Returns:
        200: {"checkout_url", "session_id"}
        400: Validation error / free plan
        404: Unknown plan
        503: Stripe unavailable
    """
    try:
        validated = _load(plan_choice_schema)
    except ValidationError as err:
        return jsonify({"error": "Validation failed", "details": err.messages}), 400

    registry = TenantRegistry()
    plan = registry.get_plan(validated['plan'])
    if plan is None or not plan.is_active:
        raise errors.NotFound("The selected plan is invalid or inactive", plan=validated['plan'])
    if plan.is_free:
        raise errors.ValidationError("Free plan does not require checkout", plan=plan.slug)

    tenant = registry.get_active(ctx.slug)
    gateway = get_billing_gateway()

    if not tenant.stripe_customer_id:
        with tenant_spaces.session(ctx) as session:
            owner = session.query(TenantUser).filter_by(role=ROLE_OWNER).first()
            owner_email = owner.email if owner else None

        customer_id = gateway.get_or_create_customer(tenant, owner_email=owner_email)
        with registry.locked(ctx.slug) as locked_tenant:
            if locked_tenant is not None and not locked_tenant.stripe_customer_id:
                locked_tenant.stripe_customer_id = customer_id
        tenant = registry.get_active(ctx.slug)

    session = gateway.create_checkout_session(
        tenant,
        plan,
        customer_id=tenant.stripe_customer_id,
        success_url=validated.get('success_url'),
        cancel_url=validated.get('cancel_url'),
    )

    current_app.logger.info(f"Checkout session created: tenant={ctx.slug}, plan={plan.slug}")
    return jsonify({"checkout_url": session["url"], "session_id": session["id"]}), 200


@bp.route('/portal', methods=['POST'])
@tenant_required
@permission_required('manage settings')
def portal(ctx):
    try:
        validated = _load(portal_schema)
    except ValidationError as err:
        return jsonify({"error": "Validation failed", "details": err.messages}), 400

    tenant = TenantRegistry().get_active(ctx.slug)
    session = get_billing_gateway().create_portal_session(tenant, return_url=validated.get('return_url'))
    return jsonify({"portal_url": session["url"]}), 200


@bp.route('/change-plan', methods=['POST'])
@tenant_required
@permission_required('manage settings')
def change_plan(ctx):
    """
    Switch a live subscription to another paid plan.

    Request Body:
        {"plan": "pro-yearly"}
    """
    try:
        validated = _load(plan_choice_schema)
    except ValidationError as err:
        return jsonify({"error": "Validation failed", "details": err.messages}), 400

    tenant = SubscriptionReconciler().change_plan(ctx.slug, validated['plan'])

    current_app.logger.info(f"Plan changed: tenant={ctx.slug}, plan={validated['plan']}")
    return jsonify({"message": "Plan changed successfully", "tenant": tenant.to_dict()}), 200


@bp.route('/cancel', methods=['POST'])
@tenant_required
@permission_required('manage settings')
def cancel(ctx):
    tenant = SubscriptionReconciler().cancel_subscription(ctx.slug)

    current_app.logger.info(f"Subscription canceled: tenant={ctx.slug}")
    return jsonify({"message": "Subscription cancelled successfully", "tenant": tenant.to_dict()}), 200
