"""Stripe Payment Integration.

Handles the product catalog, checkout sessions, the customer portal and
webhook processing. Falls back gracefully when Stripe is unconfigured.
"""

from __future__ import annotations

import logging
from typing import Any

from flask import current_app

from database import get_db
from subscription_store import SubscriptionStoreDB

logger = logging.getLogger(__name__)

CHECKOUT_MODES = ("payment", "subscription")

# Lazy import: Stripe is only needed once billing is used
_stripe = None


def _get_stripe():
    """Lazy-load the stripe module."""
    global _stripe
    if _stripe is None:
        try:
            import stripe
            _stripe = stripe
        except ImportError:
            raise RuntimeError(
                "stripe package not installed. Run: pip install stripe"
            ) from None
    return _stripe


def is_stripe_available() -> bool:
    """Check if Stripe is configured."""
    return bool(current_app.config.get("STRIPE_SECRET_KEY", ""))


def _configure_stripe() -> None:
    """Set the Stripe API key from Flask config."""
    stripe = _get_stripe()
    stripe.api_key = current_app.config["STRIPE_SECRET_KEY"]


# ---------------------------------------------------------------------------
# Product catalog, price ids come from config
# ---------------------------------------------------------------------------

def get_products() -> list[dict[str, Any]]:
    cfg = current_app.config
    return [
        {
            "id": "pbe-pro-monthly",
            "name": "PBE Pro Plan",
            "description": "Monthly subscription to PBE Pro with enhanced features and team management.",
            "price_id": cfg.get("STRIPE_PRICE_MONTHLY", ""),
            "mode": "subscription",
            "plan_id": "pro",
            "price": 15.00,
            "currency": "GBP",
            "interval": "month",
            "features": [
                "Enhanced quiz features",
                "Team management",
                "Progress tracking",
                "Pro question access",
                "Custom quiz builder",
                "Basic analytics",
            ],
        },
        {
            "id": "pbe-pro-yearly",
            "name": "PBE Pro Play Yearly",
            "description": "Annual subscription to PBE Pro Play with advanced features and unlimited access.",
            "price_id": cfg.get("STRIPE_PRICE_YEARLY", ""),
            "mode": "subscription",
            "plan_id": "pro",
            "price": 150.00,
            "currency": "GBP",
            "interval": "year",
            "features": [
                "Unlimited quiz sessions",
                "Advanced analytics",
                "Priority support",
                "All question tiers",
                "Team collaboration",
                "Study schedule management",
            ],
        },
    ]


def product_for_price(price_id: str) -> dict[str, Any] | None:
    for product in get_products():
        if product["price_id"] and product["price_id"] == price_id:
            return product
    return None


# ---------------------------------------------------------------------------
# Customer management
# ---------------------------------------------------------------------------

def get_or_create_customer(user_id: int, email: str, name: str = "") -> str:
    """Get existing Stripe customer ID or create a new one.

    Stores the stripe_customer_id in the users table.
    """
    _configure_stripe()
    stripe = _get_stripe()

    db = get_db()
    row = db.execute(
        "SELECT stripe_customer_id FROM users WHERE id = ?", (user_id,)
    ).fetchone()

    if row and row["stripe_customer_id"]:
        return row["stripe_customer_id"]

    customer = stripe.Customer.create(
        email=email,
        name=name or email,
        metadata={"user_id": str(user_id)},
    )

    db.execute(
        "UPDATE users SET stripe_customer_id = ? WHERE id = ?",
        (customer.id, user_id),
    )
    db.commit()
    return customer.id


# ---------------------------------------------------------------------------
# Checkout sessions
# ---------------------------------------------------------------------------

def create_checkout_session(
    user_id: int,
    email: str,
    price_id: str,
    mode: str = "subscription",
    success_url: str = "",
    cancel_url: str = "",
) -> dict[str, Any]:
    """Create a Stripe Checkout Session for one of the catalog's prices."""
    if mode not in CHECKOUT_MODES:
        raise ValueError(f"Invalid checkout mode: {mode}")
    product = product_for_price(price_id)
    if not product:
        raise ValueError(f"Unknown price: {price_id}")

    _configure_stripe()
    stripe = _get_stripe()

    base_url = current_app.config.get("BASE_URL", "http://localhost:5001")
    if not success_url:
        success_url = f"{base_url}/billing/success?session_id={{CHECKOUT_SESSION_ID}}"
    if not cancel_url:
        cancel_url = f"{base_url}/billing/cancel"

    customer_id = get_or_create_customer(user_id, email)
    metadata = {"user_id": str(user_id), "plan_id": product["plan_id"], "price_id": price_id}

    params: dict[str, Any] = {
        "customer": customer_id,
        "mode": mode,
        "line_items": [{"price": price_id, "quantity": 1}],
        "success_url": success_url,
        "cancel_url": cancel_url,
        "metadata": metadata,
    }
    if mode == "subscription":
        params["subscription_data"] = {"metadata": metadata}

    session = stripe.checkout.Session.create(**params)
    logger.info("Checkout session created: user=%s price=%s mode=%s", user_id, price_id, mode)
    return {
        "session_id": session.id,
        "url": session.url,
    }


# ---------------------------------------------------------------------------
# Customer portal
# ---------------------------------------------------------------------------

def create_portal_session(user_id: int, email: str) -> dict[str, str]:
    """Create a Stripe Customer Portal session for managing subscriptions."""
    _configure_stripe()
    stripe = _get_stripe()

    customer_id = get_or_create_customer(user_id, email)
    base_url = current_app.config.get("BASE_URL", "http://localhost:5001")

    session = stripe.billing_portal.Session.create(
        customer=customer_id,
        return_url=f"{base_url}/billing",
    )
    return {"url": session.url}


# ---------------------------------------------------------------------------
# Webhook handling
# ---------------------------------------------------------------------------

def verify_webhook_signature(payload: bytes, sig_header: str, secret: str) -> dict:
    """Verify Stripe webhook signature and return the event object."""
    stripe = _get_stripe()
    return stripe.Webhook.construct_event(payload, sig_header, secret)


def handle_webhook_event(event: dict) -> dict[str, Any]:
    """Process a verified Stripe webhook event.

    Returns a dict describing the action taken.
    """
    event_type = event.get("type", "")
    data_obj = event.get("data", {}).get("object", {})

    handlers = {
        "checkout.session.completed": _handle_checkout_completed,
        "customer.subscription.updated": _handle_subscription_updated,
        "customer.subscription.deleted": _handle_subscription_deleted,
    }

    handler = handlers.get(event_type)
    if handler:
        return handler(data_obj)

    logger.info("Unhandled Stripe event type: %s", event_type)
    return {"action": "ignored", "event_type": event_type}


def _user_id_for(obj: dict) -> int | None:
    """User id from metadata, else by the Stripe customer id."""
    user_id = (obj.get("metadata") or {}).get("user_id")
    if user_id:
        return int(user_id)
    customer_id = obj.get("customer", "")
    if not customer_id:
        return None
    row = get_db().execute(
        "SELECT id FROM users WHERE stripe_customer_id = ?", (customer_id,)
    ).fetchone()
    return row["id"] if row else None


def _handle_checkout_completed(session: dict) -> dict[str, Any]:
    """Activate the purchased plan."""
    user_id = _user_id_for(session)
    if not user_id:
        logger.warning("checkout.session.completed without a known user")
        return {"action": "skipped", "reason": "no user_id"}

    plan_id = (session.get("metadata") or {}).get("plan_id") or "pro"
    SubscriptionStoreDB(user_id).upgrade(plan_id, session.get("subscription") or "")
    logger.info("Subscription activated: user=%s plan=%s", user_id, plan_id)
    return {"action": "subscription_activated", "user_id": user_id, "plan_id": plan_id}


def _handle_subscription_updated(subscription: dict) -> dict[str, Any]:
    """Keep the plan in sync on renewals and plan changes."""
    user_id = _user_id_for(subscription)
    if not user_id:
        return {"action": "skipped", "reason": "no user_id"}

    status = subscription.get("status", "")
    plan_id = (subscription.get("metadata") or {}).get("plan_id", "")
    if status == "active" and plan_id:
        SubscriptionStoreDB(user_id).upgrade(plan_id, subscription.get("id") or "")
        return {"action": "subscription_updated", "user_id": user_id, "plan_id": plan_id}

    return {"action": "subscription_update_noted", "status": status}


def _handle_subscription_deleted(subscription: dict) -> dict[str, Any]:
    """Downgrade to free."""
    user_id = _user_id_for(subscription)
    if not user_id:
        return {"action": "skipped", "reason": "no user_id"}

    SubscriptionStoreDB(user_id).cancel()
    logger.info("Subscription cancelled: user=%s", user_id)
    return {"action": "subscription_cancelled", "user_id": user_id}
