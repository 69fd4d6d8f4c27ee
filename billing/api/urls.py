from django.urls import path

from billing.api.views import (
    CancelSubscriptionView,
    CheckoutSessionView,
    PortalSessionView,
    ReactivateSubscriptionView,
    StartTrialView,
    StripeWebhookView,
    SubscriptionView,
)

urlpatterns = [
    path("subscription/", SubscriptionView.as_view(), name="api-subscription"),
    path("trial/", StartTrialView.as_view(), name="api-start-trial"),
    path("checkout/", CheckoutSessionView.as_view(), name="api-checkout"),
    path("portal/", PortalSessionView.as_view(), name="api-portal"),
    path("cancel/", CancelSubscriptionView.as_view(), name="api-cancel-subscription"),
    path("reactivate/", ReactivateSubscriptionView.as_view(), name="api-reactivate-subscription"),
    path("webhook/", StripeWebhookView.as_view(), name="api-stripe-webhook"),
]
