"""Tests for the billing blueprint — plans, products, checkout and webhook routes."""

from __future__ import annotations

from unittest.mock import patch


class TestPlans:
    def test_plans_listed_in_order(self, client):
        resp = client.get("/api/plans")
        assert resp.status_code == 200
        plans = resp.get_json()["plans"]
        assert [p["plan_id"] for p in plans] == ["free", "pro", "enterprise"]
        assert plans[0]["allow_analytics_access"] is False
        assert plans[1]["question_tier_access"] == ["free", "pro"]

    def test_current_subscription(self, owner_client):
        plan = owner_client.get("/api/subscription/current").get_json()["plan"]
        assert plan["plan_id"] == "pro"
        assert plan["max_questions_custom_quiz"] == 50

    def test_current_subscription_requires_login(self, client):
        assert client.get("/api/subscription/current").status_code == 401

    def test_products_are_public(self, client):
        resp = client.get("/api/billing/products")
        assert resp.status_code == 200
        ids = [p["id"] for p in resp.get_json()["products"]]
        assert ids == ["pbe-pro-monthly", "pbe-pro-yearly"]


class TestCheckoutRoute:
    def test_unconfigured_returns_503(self, auth_client):
        resp = auth_client.post("/api/billing/checkout", json={"price_id": "price_month"})
        assert resp.status_code == 503

    def test_missing_price(self, app, auth_client):
        app.config["STRIPE_SECRET_KEY"] = "sk_test_fake"
        resp = auth_client.post("/api/billing/checkout", json={})
        assert resp.status_code == 400

    def test_bad_mode(self, app, auth_client):
        app.config["STRIPE_SECRET_KEY"] = "sk_test_fake"
        resp = auth_client.post("/api/billing/checkout", json={"price_id": "p", "mode": "setup"})
        assert resp.status_code == 400

    def test_unknown_price(self, app, auth_client):
        app.config["STRIPE_SECRET_KEY"] = "sk_test_fake"
        resp = auth_client.post("/api/billing/checkout", json={"price_id": "price_nope"})
        assert resp.status_code == 400
        assert "Unknown price" in resp.get_json()["error"]

    def test_checkout_success(self, app, auth_client):
        app.config["STRIPE_SECRET_KEY"] = "sk_test_fake"
        with patch("blueprints.billing.create_checkout_session",
                   return_value={"session_id": "cs_1", "url": "https://checkout/cs_1"}) as create:
            resp = auth_client.post("/api/billing/checkout", json={"price_id": "price_month"})
        assert resp.status_code == 200
        assert resp.get_json()["url"] == "https://checkout/cs_1"
        assert create.call_args.kwargs["user_id"] == 1

    def test_stripe_failure_is_500(self, app, auth_client):
        app.config["STRIPE_SECRET_KEY"] = "sk_test_fake"
        with patch("blueprints.billing.create_checkout_session", side_effect=RuntimeError("down")):
            resp = auth_client.post("/api/billing/checkout", json={"price_id": "price_month"})
        assert resp.status_code == 500
        assert resp.get_json()["error"] == "Payment service error"


class TestWebhookRoute:
    def test_unconfigured_returns_503(self, client):
        assert client.post("/api/billing/webhook", data=b"{}").status_code == 503

    def test_missing_secret_returns_500(self, app, client):
        app.config["STRIPE_SECRET_KEY"] = "sk_test_fake"
        app.config["STRIPE_WEBHOOK_SECRET"] = ""
        assert client.post("/api/billing/webhook", data=b"{}").status_code == 500

    def test_verified_event_upgrades_plan(self, app, client):
        app.config.update(STRIPE_SECRET_KEY="sk_test_fake", STRIPE_WEBHOOK_SECRET="whsec_test")
        event = {
            "type": "checkout.session.completed",
            "data": {"object": {"metadata": {"user_id": "1", "plan_id": "pro"}, "subscription": "sub_1"}},
        }
        with patch("blueprints.billing.verify_webhook_signature", return_value=event) as verify:
            resp = client.post("/api/billing/webhook", data=b"payload",
                               headers={"Stripe-Signature": "t=1,v1=abc"})
        assert resp.status_code == 200
        assert resp.get_json()["action"] == "subscription_activated"
        assert verify.call_args[0] == (b"payload", "t=1,v1=abc", "whsec_test")

        with app.app_context():
            from subscription_store import SubscriptionStoreDB
            assert SubscriptionStoreDB(1).plan_id() == "pro"

    def test_invalid_payload(self, app, client):
        app.config.update(STRIPE_SECRET_KEY="sk_test_fake", STRIPE_WEBHOOK_SECRET="whsec_test")
        with patch("blueprints.billing.verify_webhook_signature", side_effect=ValueError("bad json")):
            resp = client.post("/api/billing/webhook", data=b"nope")
        assert resp.status_code == 400

    def test_bad_signature(self, app, client):
        class SignatureVerificationError(Exception):
            pass

        app.config.update(STRIPE_SECRET_KEY="sk_test_fake", STRIPE_WEBHOOK_SECRET="whsec_test")
        with patch("blueprints.billing.verify_webhook_signature",
                   side_effect=SignatureVerificationError("mismatch")):
            resp = client.post("/api/billing/webhook", data=b"{}")
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "Invalid signature"
