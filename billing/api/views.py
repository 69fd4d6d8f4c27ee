import json
import logging

import stripe
from rest_framework import permissions, status
from rest_framework.response import Response
from rest_framework.views import APIView

from billing import services
from billing.api.serializers import SubscriptionSerializer
from billing.models import Subscription

logger = logging.getLogger(__name__)


def billing_error_response(exc: services.BillingError):
    if isinstance(exc, services.SubscriptionNotFound):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, services.ProviderError):
        code = status.HTTP_502_BAD_GATEWAY
    else:
        code = status.HTTP_400_BAD_REQUEST
    return Response({"detail": str(exc)}, status=code)


class SubscriptionView(APIView):
    def get(self, request):
        subscription = Subscription.objects.filter(user=request.user).first()
        if subscription is None:
            return Response({"detail": "You do not have a subscription."}, status=status.HTTP_404_NOT_FOUND)
        return Response(SubscriptionSerializer(subscription).data)


class StartTrialView(APIView):
    def post(self, request):
        existed = Subscription.objects.filter(user=request.user).exists()
        subscription = services.start_trial(request.user)
        code = status.HTTP_200_OK if existed else status.HTTP_201_CREATED
        return Response(SubscriptionSerializer(subscription).data, status=code)


class CheckoutSessionView(APIView):
    def post(self, request):
        try:
            session = services.create_checkout_session(request.user)
        except services.BillingError as exc:
            return billing_error_response(exc)
        return Response(session)


class PortalSessionView(APIView):
    def post(self, request):
        try:
            session = services.create_portal_session(request.user)
        except services.BillingError as exc:
            return billing_error_response(exc)
        return Response(session)


class CancelSubscriptionView(APIView):
    def post(self, request):
        try:
            subscription = services.cancel_subscription(request.user)
        except services.BillingError as exc:
            return billing_error_response(exc)
        return Response({
            "detail": "The subscription will end at the close of the current period.",
            "period_end": subscription.current_period_end,
        })


class ReactivateSubscriptionView(APIView):
    def post(self, request):
        try:
            subscription = services.reactivate_subscription(request.user)
        except services.BillingError as exc:
            return billing_error_response(exc)
        return Response(SubscriptionSerializer(subscription).data)


class StripeWebhookView(APIView):
    authentication_classes = []
    permission_classes = [permissions.AllowAny]

    def post(self, request):
        payload = request.body
        signature = request.META.get("HTTP_STRIPE_SIGNATURE", "")

        try:
            services.verify_webhook(payload, signature)
            event = json.loads(payload)
        except stripe.SignatureVerificationError as exc:
            logger.warning("Rejected Stripe webhook: %s", exc)
            return Response({"detail": f"Webhook error: {exc}"}, status=status.HTTP_400_BAD_REQUEST)
        except (ValueError, services.BillingError) as exc:
            logger.warning("Unreadable Stripe webhook: %s", exc)
            return Response({"detail": f"Webhook error: {exc}"}, status=status.HTTP_400_BAD_REQUEST)

        try:
            services.handle_event(event)
        except (KeyError, TypeError, services.BillingError):
            logger.exception("Failed to process Stripe event %s", event.get("id"))
            return Response({"detail": "Could not process the event."}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)

        return Response({"received": True})
