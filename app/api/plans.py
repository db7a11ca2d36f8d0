from flask import Blueprint, request, jsonify, current_app
from marshmallow import ValidationError

from app.extensions import db
from app.api.decorators import admin_required
from app.models.plan import Plan
from app.models.tenant import Tenant
from app.schemas.plan_schema import PlanSchema
from app import errors

bp = Blueprint('plans', __name__)

plan_schema = PlanSchema()


def _get_plan_or_404(slug):
    plan = Plan.query.filter_by(slug=slug).first()
    if plan is None:
        raise errors.NotFound(f"Plan '{slug}' not found", plan=slug)
    return plan


@bp.route('', methods=['GET'])
def list_plans():
    """Active plans, cheapest first."""
    plans = Plan.query.filter_by(is_active=True).order_by(Plan.price.asc(), Plan.id.asc()).all()
    return jsonify({"plans": [p.to_dict() for p in plans]}), 200


@bp.route('/<slug>', methods=['GET'])
def get_plan(slug):
    return jsonify({"plan": _get_plan_or_404(slug).to_dict()}), 200


@bp.route('', methods=['POST'])
@admin_required
def create_plan():
    data = request.get_json(silent=True) or {}
    try:
        validated = plan_schema.load(data)
    except ValidationError as err:
        return jsonify({"error": "Validation failed", "details": err.messages}), 400

    if Plan.query.filter_by(slug=validated['slug']).first():
        raise errors.ConflictError(f"Plan '{validated['slug']}' already exists", plan=validated['slug'])

    plan = Plan(**validated)
    db.session.add(plan)
    db.session.commit()

    current_app.logger.info(f"Plan created: slug={plan.slug}")
    return jsonify({"plan": plan.to_dict()}), 201


@bp.route('/<slug>', methods=['PUT'])
@admin_required
def update_plan(slug):
    plan = _get_plan_or_404(slug)

    data = request.get_json(silent=True) or {}
    try:
        validated = plan_schema.load(data, partial=True)
    except ValidationError as err:
        return jsonify({"error": "Validation failed", "details": err.messages}), 400

    # checkout metadata and DEFAULT_PLAN_SLUG refer to plans by slug
    new_slug = validated.get('slug')
    if new_slug and new_slug != plan.slug:
        raise errors.ValidationError(
            "Plan slugs cannot be changed, create a new plan instead", plan=slug
        )

    for key, value in validated.items():
        setattr(plan, key, value)
    db.session.commit()

    current_app.logger.info(f"Plan updated: slug={plan.slug}")
    return jsonify({"plan": plan.to_dict()}), 200


@bp.route('/<slug>', methods=['DELETE'])
@admin_required
def delete_plan(slug):
    """
    Returns:
        200: Deleted
        409: Plan still has tenants (deactivate it instead)
    """
    plan = _get_plan_or_404(slug)

    in_use = Tenant.query.filter_by(plan_id=plan.id).count()
    if in_use:
        raise errors.ConflictError(
            f"Cannot delete plan with {in_use} active tenant(s)", plan=slug
        )

    db.session.delete(plan)
    db.session.commit()

    current_app.logger.info(f"Plan deleted: slug={slug}")
    return jsonify({"message": "Plan deleted successfully"}), 200
