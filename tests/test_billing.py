import hashlib
import hmac
import json
import time
from datetime import timedelta
from unittest import mock

import pytest
import stripe
from django.urls import reverse
from django.utils import timezone
from rest_framework.test import APIClient

from billing import services
from billing.models import Subscription, WebhookEvent
from users.models import Profile

pytestmark = pytest.mark.django_db


def sign(payload: str, secret="whsec_test_secret", timestamp=None):
    timestamp = timestamp or int(time.time())
    digest = hmac.new(secret.encode(), f"{timestamp}.{payload}".encode(), hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


def post_event(client, event, signature=None):
    payload = json.dumps(event)
    return client.post(
        reverse("api-stripe-webhook"),
        data=payload,
        content_type="application/json",
        HTTP_STRIPE_SIGNATURE=signature if signature is not None else sign(payload),
    )


def event(event_id, event_type, obj):
    return {"id": event_id, "type": event_type, "data": {"object": obj}}


@pytest.fixture
def paying_owner(owner):
    subscription = owner.subscription
    subscription.status = Subscription.Status.ACTIVE
    subscription.stripe_customer_id = "cus_123"
    subscription.stripe_subscription_id = "sub_123"
    subscription.trial_start = subscription.trial_end = None
    subscription.save()
    return owner


class TestTrialAndAccess:
    def test_trial_starts_once(self, django_user_model, settings):
        settings.TRIAL_DAYS = 7
        user = django_user_model.objects.create_user(username="new", password="pass12345")

        first = services.start_trial(user)
        assert first.status == Subscription.Status.TRIAL
        assert first.trial_end - first.trial_start == timedelta(days=7)

        first.trial_end = timezone.now() - timedelta(days=1)
        first.save()
        again = services.start_trial(user)
        assert again.pk == first.pk
        assert again.trial_end < timezone.now()

    def test_has_access(self, owner):
        subscription = owner.subscription
        now = timezone.now()
        assert services.has_access(subscription, now)
        assert not services.has_access(subscription, now + timedelta(days=8))
        assert not services.has_access(None)

        for status, expected in [
            (Subscription.Status.ACTIVE, True),
            (Subscription.Status.PAST_DUE, False),
            (Subscription.Status.CANCELED, False),
            (Subscription.Status.INCOMPLETE, False),
        ]:
            subscription.status = status
            assert subscription.has_access(now) is expected

    @pytest.mark.parametrize(
        "days, state, days_left",
        [
            (7, "trial", 7),
            (3, "trial_expiring", 3),
            (0.5, "trial_expiring", 1),
            (-1, "trial_expired", 0),
        ],
    )
    def test_trial_banner(self, owner, days, state, days_left):
        now = timezone.now()
        subscription = owner.subscription
        subscription.trial_end = now + timedelta(days=days)
        assert services.banner_for(subscription, now) == services.Banner(state, days_left)

    def test_other_banners(self, owner):
        now = timezone.now()
        subscription = owner.subscription

        subscription.status = Subscription.Status.PAST_DUE
        assert services.banner_for(subscription, now).state == "past_due"

        subscription.status = Subscription.Status.ACTIVE
        assert services.banner_for(subscription, now) is None

        subscription.cancel_at_period_end = True
        subscription.current_period_end = now + timedelta(days=10)
        assert services.banner_for(subscription, now) == services.Banner("cancel_scheduled", 10)


class TestStripeCalls:
    def test_checkout_creates_customer(self, owner):
        with mock.patch("stripe.Customer.create", return_value=mock.Mock(id="cus_new")) as create_customer, \
                mock.patch(
                    "stripe.checkout.Session.create",
                    return_value=mock.Mock(id="cs_1", url="https://checkout.stripe.com/cs_1"),
                ) as create_session:
            session = services.create_checkout_session(owner)

        assert session == {"session_id": "cs_1", "url": "https://checkout.stripe.com/cs_1"}
        create_customer.assert_called_once()
        kwargs = create_session.call_args.kwargs
        assert kwargs["customer"] == "cus_new"
        assert kwargs["line_items"] == [{"price": "price_monthly", "quantity": 1}]
        assert kwargs["success_url"] == "https://app.example.com/billing?success=true"
        assert kwargs["metadata"] == {"user_id": str(owner.pk)}

        subscription = Subscription.objects.get(user=owner)
        assert subscription.stripe_customer_id == "cus_new"
        assert subscription.status == Subscription.Status.TRIAL

    def test_checkout_reuses_customer(self, paying_owner):
        with mock.patch("stripe.Customer.create") as create_customer, \
                mock.patch("stripe.checkout.Session.create", return_value=mock.Mock(id="cs_2", url="u")):
            services.create_checkout_session(paying_owner)
        create_customer.assert_not_called()

    def test_checkout_without_subscription_row(self, django_user_model):
        user = django_user_model.objects.create_user(username="late", password="pass12345")
        with mock.patch("stripe.Customer.create", return_value=mock.Mock(id="cus_9")), \
                mock.patch("stripe.checkout.Session.create", return_value=mock.Mock(id="cs_3", url="u")):
            services.create_checkout_session(user)

        assert Subscription.objects.get(user=user).status == Subscription.Status.INCOMPLETE

    def test_provider_failure(self, paying_owner):
        with mock.patch("stripe.checkout.Session.create", side_effect=stripe.StripeError("down")):
            with pytest.raises(services.ProviderError):
                services.create_checkout_session(paying_owner)

    def test_not_configured(self, owner, settings):
        settings.STRIPE_SECRET_KEY = ""
        with pytest.raises(services.BillingError):
            services.create_checkout_session(owner)

    def test_portal_needs_customer(self, owner):
        with pytest.raises(services.SubscriptionNotFound):
            services.create_portal_session(owner)

    def test_portal(self, paying_owner):
        with mock.patch("stripe.billing_portal.Session.create", return_value=mock.Mock(url="https://portal")) as create:
            assert services.create_portal_session(paying_owner) == {"url": "https://portal"}
        assert create.call_args.kwargs["return_url"] == "https://app.example.com/billing"

    def test_cancel_and_reactivate(self, paying_owner):
        period_end = int(time.time()) + 86400 * 20
        with mock.patch("stripe.Subscription.modify", return_value=mock.Mock(current_period_end=period_end)) as modify:
            subscription = services.cancel_subscription(paying_owner)
            modify.assert_called_once_with("sub_123", cancel_at_period_end=True)
            assert subscription.cancel_at_period_end
            assert int(subscription.current_period_end.timestamp()) == period_end

            subscription = services.reactivate_subscription(paying_owner)
            assert not subscription.cancel_at_period_end

    def test_cancel_incomplete_subscription(self, owner):
        with pytest.raises(services.BillingError):
            services.cancel_subscription(owner)


class TestWebhook:
    def test_checkout_completed_activates(self, owner, api_client):
        response = post_event(api_client, event("evt_1", "checkout.session.completed", {
            "id": "cs_1", "customer": "cus_abc", "subscription": "sub_abc",
            "metadata": {"user_id": str(owner.pk)},
        }))

        assert response.status_code == 200
        assert response.json() == {"received": True}
        subscription = Subscription.objects.get(user=owner)
        assert subscription.status == Subscription.Status.ACTIVE
        assert subscription.stripe_subscription_id == "sub_abc"
        assert subscription.trial_end is None

    def test_bad_signature(self, owner, api_client):
        response = post_event(
            api_client,
            event("evt_2", "invoice.payment_failed", {"subscription": "sub_123"}),
            signature=sign("something else"),
        )
        assert response.status_code == 400
        assert not WebhookEvent.objects.exists()

    def test_missing_signature(self, api_client):
        response = post_event(api_client, event("evt_3", "ping", {}), signature="")
        assert response.status_code == 400

    def test_duplicate_event_is_applied_once(self, paying_owner, api_client):
        failed = event("evt_4", "invoice.payment_failed", {"subscription": "sub_123"})
        assert post_event(api_client, failed).status_code == 200
        assert Subscription.objects.get(user=paying_owner).status == Subscription.Status.PAST_DUE

        Subscription.objects.filter(user=paying_owner).update(status=Subscription.Status.ACTIVE)
        assert post_event(api_client, failed).status_code == 200
        assert Subscription.objects.get(user=paying_owner).status == Subscription.Status.ACTIVE
        assert WebhookEvent.objects.filter(event_id="evt_4").count() == 1

    def test_payment_succeeded(self, paying_owner):
        Subscription.objects.filter(user=paying_owner).update(status=Subscription.Status.PAST_DUE)
        services.handle_event(event("evt_5", "invoice.payment_succeeded", {"subscription": "sub_123"}))
        assert Subscription.objects.get(user=paying_owner).status == Subscription.Status.ACTIVE

    @pytest.mark.parametrize(
        "remote_status, expected",
        [
            ("trialing", Subscription.Status.TRIAL),
            ("active", Subscription.Status.ACTIVE),
            ("past_due", Subscription.Status.PAST_DUE),
            ("unpaid", Subscription.Status.CANCELED),
            ("incomplete_expired", Subscription.Status.CANCELED),
            ("paused", Subscription.Status.ACTIVE),
        ],
    )
    def test_subscription_updated(self, paying_owner, remote_status, expected):
        services.handle_event(event("evt_6", "customer.subscription.updated", {
            "id": "sub_123",
            "customer": "cus_123",
            "status": remote_status,
            "cancel_at_period_end": True,
            "current_period_start": 1704067200,
            "current_period_end": 1706745600,
            "items": {"data": [{"price": {"id": "price_monthly"}}]},
        }))

        subscription = Subscription.objects.get(user=paying_owner)
        assert subscription.status == expected
        assert subscription.cancel_at_period_end
        assert subscription.stripe_price_id == "price_monthly"
        assert subscription.current_period_end.timestamp() == 1706745600

    def test_subscription_deleted(self, paying_owner):
        services.handle_event(event("evt_7", "customer.subscription.deleted", {"id": "sub_123"}))
        assert Subscription.objects.get(user=paying_owner).status == Subscription.Status.CANCELED

    def test_unknown_type_is_recorded(self):
        assert services.handle_event(event("evt_8", "charge.refunded", {})) is True
        assert services.handle_event(event("evt_8", "charge.refunded", {})) is False

    def test_failing_handler_can_be_retried(self, api_client):
        response = post_event(api_client, {"id": "evt_9", "type": "invoice.payment_failed"})
        assert response.status_code == 500
        assert not WebhookEvent.objects.filter(event_id="evt_9").exists()


class TestBillingApi:
    def test_subscription_state(self, owner_client):
        response = owner_client.get(reverse("api-subscription"))
        assert response.status_code == 200
        assert response.data["status"] == "trial"
        assert response.data["has_access"] is True
        assert response.data["banner"]["state"] == "trial"

    def test_start_trial(self, django_user_model):
        user = django_user_model.objects.create_user(username="fresh", password="pass12345")
        client = APIClient()
        client.force_authenticate(user)

        assert client.get(reverse("api-subscription")).status_code == 404
        assert client.post(reverse("api-start-trial")).status_code == 201
        assert client.post(reverse("api-start-trial")).status_code == 200

    def test_portal_without_customer_is_404(self, owner_client):
        assert owner_client.post(reverse("api-portal")).status_code == 404

    def test_provider_failure_is_502(self, paying_owner):
        client = APIClient()
        client.force_authenticate(paying_owner)
        with mock.patch("stripe.Subscription.modify", side_effect=stripe.StripeError("down")):
            response = client.post(reverse("api-cancel-subscription"))
        assert response.status_code == 502

    def test_checkout_endpoint(self, owner_client):
        with mock.patch("stripe.Customer.create", return_value=mock.Mock(id="cus_1")), \
                mock.patch("stripe.checkout.Session.create", return_value=mock.Mock(id="cs_1", url="https://pay")):
            response = owner_client.post(reverse("api-checkout"))
        assert response.data == {"session_id": "cs_1", "url": "https://pay"}


class TestHasActiveSubscription:
    def test_past_due_owner_is_blocked(self, paying_owner, shop):
        subscription = paying_owner.subscription
        subscription.status = Subscription.Status.PAST_DUE
        subscription.save()
        client = APIClient()
        client.force_authenticate(paying_owner)
        response = client.get(reverse("api-owner-shops"))
        assert response.status_code == 403

    def test_owner_without_subscription_is_blocked(self, django_user_model):
        user = django_user_model.objects.create_user(username="nosub", password="pass12345")
        user.profile.role = Profile.Role.OWNER
        user.profile.save()
        client = APIClient()
        client.force_authenticate(user)
        assert client.get(reverse("api-owner-shops")).status_code == 403

    def test_barber_is_not_billed(self, barber_client, owner, shop):
        subscription = owner.subscription
        subscription.status = Subscription.Status.CANCELED
        subscription.save()
        assert barber_client.get(reverse("api-shop-manage", args=[shop.pk])).status_code == 200
