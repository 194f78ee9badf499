"""Subscription, product catalog and Stripe payment routes."""

from __future__ import annotations

import logging
from typing import Any

from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user, login_required

from audit import log_event
from helpers import current_user_id
from stripe_integration import (
    CHECKOUT_MODES,
    create_checkout_session,
    create_portal_session,
    get_products,
    handle_webhook_event,
    is_stripe_available,
    verify_webhook_signature,
)
from subscription_store import PlanSettingsDB, SubscriptionStoreDB

logger = logging.getLogger(__name__)

bp = Blueprint("billing", __name__)


@bp.record_once
def _exempt_webhook_from_csrf(state: Any) -> None:
    """Exempt the Stripe webhook endpoint from CSRF protection."""
    csrf = state.app.extensions.get("csrf")
    if csrf:
        csrf.exempt(api_billing_webhook)


# ---------------------------------------------------------------------------
# Plans and products
# ---------------------------------------------------------------------------

@bp.route("/api/billing/products")
def api_billing_products() -> Any:
    return jsonify({
        "products": get_products(),
        "publishable_key": current_app.config.get("STRIPE_PUBLISHABLE_KEY", ""),
    })


@bp.route("/api/plans")
def api_plans() -> Any:
    return jsonify({"plans": PlanSettingsDB.all()})


@bp.route("/api/subscription/current")
@login_required
def api_subscription_current() -> Any:
    store = SubscriptionStoreDB(current_user_id())
    return jsonify({"plan": store.current_plan()})


# ---------------------------------------------------------------------------
# Stripe Checkout
# ---------------------------------------------------------------------------

@bp.route("/api/billing/checkout", methods=["POST"])
@login_required
def api_billing_checkout() -> tuple[Any, int] | Any:
    """Create a Stripe Checkout Session for one of the catalog prices."""
    if not is_stripe_available():
        return jsonify({"error": "Payments not configured"}), 503

    data = request.get_json(silent=True) or {}
    price_id = data.get("price_id", "")
    mode = data.get("mode", "subscription")

    if not price_id:
        return jsonify({"error": "price_id required"}), 400
    if mode not in CHECKOUT_MODES:
        return jsonify({"error": "mode must be 'payment' or 'subscription'"}), 400

    try:
        result = create_checkout_session(
            user_id=current_user.id,
            email=current_user.email,
            price_id=price_id,
            mode=mode,
            success_url=data.get("success_url", ""),
            cancel_url=data.get("cancel_url", ""),
        )
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        logger.exception("Stripe checkout error")
        return jsonify({"error": "Payment service error"}), 500
    log_event("checkout_started", current_user.id, f"price={price_id} mode={mode}")
    return jsonify(result)


# ---------------------------------------------------------------------------
# Stripe Customer Portal
# ---------------------------------------------------------------------------

@bp.route("/api/billing/portal", methods=["POST"])
@login_required
def api_billing_portal() -> tuple[Any, int] | Any:
    """Create a Stripe Customer Portal session."""
    if not is_stripe_available():
        return jsonify({"error": "Payments not configured"}), 503

    try:
        result = create_portal_session(
            user_id=current_user.id,
            email=current_user.email,
        )
        return jsonify(result)
    except Exception:
        logger.exception("Stripe portal error")
        return jsonify({"error": "Payment service error"}), 500


# ---------------------------------------------------------------------------
# Stripe Webhook
# ---------------------------------------------------------------------------

@bp.route("/api/billing/webhook", methods=["POST"])
def api_billing_webhook() -> tuple[Any, int] | Any:
    """Handle Stripe webhook events.

    Not behind login_required: Stripe calls it directly and authenticates
    with the webhook signature instead.
    """
    if not is_stripe_available():
        return jsonify({"error": "Payments not configured"}), 503

    payload = request.get_data()
    sig_header = request.headers.get("Stripe-Signature", "")
    webhook_secret = current_app.config.get("STRIPE_WEBHOOK_SECRET", "")

    if not webhook_secret:
        logger.error("STRIPE_WEBHOOK_SECRET not configured")
        return jsonify({"error": "Webhook not configured"}), 500

    try:
        event = verify_webhook_signature(payload, sig_header, webhook_secret)
        result = handle_webhook_event(event)
        logger.info("Webhook processed: %s -> %s", event.get("type"), result.get("action"))
        return jsonify({"status": "ok", **result})
    except ValueError:
        logger.warning("Invalid webhook payload")
        return jsonify({"error": "Invalid payload"}), 400
    except Exception as e:
        if "SignatureVerificationError" in type(e).__name__:
            logger.warning("Invalid webhook signature")
            return jsonify({"error": "Invalid signature"}), 400
        logger.exception("Webhook processing error")
        return jsonify({"error": "Webhook processing failed"}), 500
