import json

from flask import Blueprint, request, jsonify, current_app

from app.services.billing_events import parse_event
from app.services.billing_gateway import get_billing_gateway
from app.services.subscription_reconciler import SubscriptionReconciler

bp = Blueprint('webhooks', __name__)


@bp.route('/stripe', methods=['POST'])
def stripe_webhook():
    """
    Stripe Webhook Endpoint

    The signature is checked against the raw body before anything is parsed.

    Returns:
        200: Event applied, ignored (unhandled type) or dropped (unknown tenant)
        400: Missing/invalid signature or malformed payload (Stripe does not retry)
        500: Processing failed (Stripe redelivers)
        503: Webhook secret not configured
    """
    payload = request.get_data()
    get_billing_gateway().verify_webhook(payload, request.headers.get('Stripe-Signature'))

    try:
        event = parse_event(json.loads(payload))
    except ValueError as e:
        current_app.logger.warning(f"Stripe webhook: Malformed payload: {e}")
        return jsonify({"error": "Invalid payload"}), 400

    if event is None:
        return jsonify({"received": True, "handled": False}), 200

    try:
        changed = SubscriptionReconciler().apply(event)
    except Exception:
        current_app.logger.exception(
            f"Stripe webhook: Processing failed event_id={event.event_id}, kind={type(event).__name__}"
        )
        return jsonify({"error": "Webhook processing failed"}), 500

    return jsonify({"received": True, "handled": True, "changed": changed}), 200
