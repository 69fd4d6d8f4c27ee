"""Owner subscriptions: trial, access checks and the Stripe integration."""
import logging
import math
from datetime import datetime, timedelta, timezone as dt_timezone
from typing import NamedTuple, Optional

import stripe
from django.conf import settings
from django.contrib.auth import get_user_model
from django.db import transaction
from django.utils import timezone

from billing.models import Subscription, WebhookEvent

logger = logging.getLogger(__name__)

User = get_user_model()

# Days left at or below which a running trial is reported as expiring.
TRIAL_WARNING_DAYS = 3

STRIPE_STATUS_MAP = {
    'trialing': Subscription.Status.TRIAL,
    'active': Subscription.Status.ACTIVE,
    'past_due': Subscription.Status.PAST_DUE,
    'canceled': Subscription.Status.CANCELED,
    'unpaid': Subscription.Status.CANCELED,
    'incomplete': Subscription.Status.INCOMPLETE,
    'incomplete_expired': Subscription.Status.CANCELED,
}


class BillingError(ValueError):
    pass


class SubscriptionNotFound(BillingError):
    pass


class ProviderError(BillingError):
    """The payment provider rejected a call or could not be reached."""


class Banner(NamedTuple):
    state: str
    days_left: Optional[int] = None


def start_trial(user, now=None) -> Subscription:
    """Open the free trial; a user who already has a subscription row keeps it."""
    now = now or timezone.now()
    subscription, created = Subscription.objects.get_or_create(
        user=user,
        defaults={
            'status': Subscription.Status.TRIAL,
            'trial_start': now,
            'trial_end': now + timedelta(days=settings.TRIAL_DAYS),
        },
    )
    if created:
        logger.info("Trial started for user %s until %s", user.pk, subscription.trial_end.isoformat())
    return subscription


def has_access(subscription: Optional[Subscription], now=None) -> bool:
    if subscription is None:
        return False
    return subscription.has_access(now)


def _days_until(moment, now) -> int:
    return math.ceil((moment - now).total_seconds() / 86400)


def banner_for(subscription: Optional[Subscription], now=None) -> Optional[Banner]:
    if subscription is None:
        return None
    now = now or timezone.now()
    status = subscription.status

    if status == Subscription.Status.TRIAL:
        days_left = _days_until(subscription.trial_end, now) if subscription.trial_end else 0
        if days_left <= 0:
            return Banner('trial_expired', 0)
        if days_left <= TRIAL_WARNING_DAYS:
            return Banner('trial_expiring', days_left)
        return Banner('trial', days_left)

    if status == Subscription.Status.PAST_DUE:
        return Banner('past_due')

    if status == Subscription.Status.ACTIVE and subscription.cancel_at_period_end:
        days_left = None
        if subscription.current_period_end:
            days_left = max(_days_until(subscription.current_period_end, now), 0)
        return Banner('cancel_scheduled', days_left)

    return None


# Stripe

def _configure_stripe():
    if not settings.STRIPE_SECRET_KEY:
        raise BillingError('Payments are not configured.')
    stripe.api_key = settings.STRIPE_SECRET_KEY
    stripe.api_version = settings.STRIPE_API_VERSION


def _timestamp(value):
    if not value:
        return None
    return datetime.fromtimestamp(int(value), tz=dt_timezone.utc)


def _get_subscription(user) -> Subscription:
    try:
        return Subscription.objects.get(user=user)
    except Subscription.DoesNotExist:
        raise SubscriptionNotFound('You do not have a subscription.')


def create_checkout_session(user) -> dict:
    _configure_stripe()
    if not settings.STRIPE_PRICE_ID:
        raise BillingError('The subscription price is not configured.')

    subscription = Subscription.objects.filter(user=user).first()
    customer_id = subscription.stripe_customer_id if subscription else ''

    try:
        if not customer_id:
            customer = stripe.Customer.create(
                email=user.email or None,
                metadata={'user_id': str(user.pk)},
            )
            customer_id = customer.id
            if subscription is None:
                Subscription.objects.create(
                    user=user,
                    stripe_customer_id=customer_id,
                    status=Subscription.Status.INCOMPLETE,
                )
            else:
                subscription.stripe_customer_id = customer_id
                subscription.save(update_fields=['stripe_customer_id', 'updated_at'])
            logger.info("Stripe customer %s created for user %s", customer_id, user.pk)

        session = stripe.checkout.Session.create(
            customer=customer_id,
            line_items=[{'price': settings.STRIPE_PRICE_ID, 'quantity': 1}],
            mode='subscription',
            success_url=f"{settings.APP_URL}/billing?success=true",
            cancel_url=f"{settings.APP_URL}/billing?canceled=true",
            metadata={'user_id': str(user.pk)},
        )
    except stripe.StripeError as exc:
        logger.exception("Stripe checkout failed for user %s", user.pk)
        raise ProviderError('Could not start the checkout.') from exc

    return {'session_id': session.id, 'url': session.url}


def create_portal_session(user) -> dict:
    _configure_stripe()
    subscription = Subscription.objects.filter(user=user).first()
    if subscription is None or not subscription.stripe_customer_id:
        raise SubscriptionNotFound('No billing account found for this user.')

    try:
        session = stripe.billing_portal.Session.create(
            customer=subscription.stripe_customer_id,
            return_url=f"{settings.APP_URL}/billing",
        )
    except stripe.StripeError as exc:
        logger.exception("Stripe portal session failed for user %s", user.pk)
        raise ProviderError('Could not open the billing portal.') from exc

    return {'url': session.url}


def _set_cancel_at_period_end(user, cancel: bool) -> Subscription:
    _configure_stripe()
    subscription = _get_subscription(user)
    if not subscription.stripe_subscription_id:
        raise BillingError('The subscription is incomplete.')

    try:
        remote = stripe.Subscription.modify(
            subscription.stripe_subscription_id,
            cancel_at_period_end=cancel,
        )
    except stripe.StripeError as exc:
        logger.exception("Stripe update of %s failed", subscription.stripe_subscription_id)
        raise ProviderError('Could not update the subscription.') from exc

    subscription.cancel_at_period_end = cancel
    period_end = _timestamp(getattr(remote, 'current_period_end', None))
    if period_end:
        subscription.current_period_end = period_end
    subscription.save(update_fields=['cancel_at_period_end', 'current_period_end', 'updated_at'])
    logger.info(
        "Subscription %s cancel_at_period_end=%s",
        subscription.stripe_subscription_id, cancel,
    )
    return subscription


def cancel_subscription(user) -> Subscription:
    return _set_cancel_at_period_end(user, True)


def reactivate_subscription(user) -> Subscription:
    return _set_cancel_at_period_end(user, False)


# Webhook

def verify_webhook(payload: bytes, signature: str) -> None:
    """Raise ``stripe.SignatureVerificationError`` unless the payload is signed by Stripe."""
    if not settings.STRIPE_WEBHOOK_SECRET:
        raise BillingError('Webhook secret is not configured.')
    stripe.WebhookSignature.verify_header(
        payload.decode('utf-8'),
        signature or '',
        settings.STRIPE_WEBHOOK_SECRET,
        stripe.Webhook.DEFAULT_TOLERANCE,
    )


def _on_checkout_completed(session: dict):
    user_id = (session.get('metadata') or {}).get('user_id')
    if not user_id:
        logger.warning("Checkout session %s has no user id in metadata", session.get('id'))
        return

    user = User.objects.filter(pk=user_id).first()
    if user is None:
        logger.warning("Checkout session %s references unknown user %s", session.get('id'), user_id)
        return

    Subscription.objects.update_or_create(
        user=user,
        defaults={
            'stripe_customer_id': session.get('customer') or '',
            'stripe_subscription_id': session.get('subscription') or '',
            'status': Subscription.Status.ACTIVE,
            'trial_start': None,
            'trial_end': None,
        },
    )


def _on_subscription_updated(remote: dict):
    subscription = Subscription.objects.filter(stripe_customer_id=remote.get('customer')).first()
    if subscription is None:
        logger.warning("No subscription for Stripe customer %s", remote.get('customer'))
        return

    status = STRIPE_STATUS_MAP.get(remote.get('status'))
    if status is None:
        logger.warning("Unhandled Stripe subscription status %s", remote.get('status'))
        status = subscription.status

    items = (remote.get('items') or {}).get('data') or []
    first_item = items[0] if items else {}
    price_id = (first_item.get('price') or {}).get('id', '')

    subscription.stripe_subscription_id = remote.get('id') or subscription.stripe_subscription_id
    subscription.stripe_price_id = price_id or subscription.stripe_price_id
    subscription.status = status
    subscription.current_period_start = _timestamp(
        remote.get('current_period_start') or first_item.get('current_period_start')
    )
    subscription.current_period_end = _timestamp(
        remote.get('current_period_end') or first_item.get('current_period_end')
    )
    subscription.cancel_at_period_end = bool(remote.get('cancel_at_period_end'))
    subscription.save()


def _on_subscription_deleted(remote: dict):
    Subscription.objects.filter(stripe_subscription_id=remote.get('id')).update(
        status=Subscription.Status.CANCELED,
        cancel_at_period_end=False,
        updated_at=timezone.now(),
    )


def _set_status_for_invoice(invoice: dict, status: str):
    subscription_id = invoice.get('subscription')
    if not subscription_id:
        return
    Subscription.objects.filter(stripe_subscription_id=subscription_id).update(
        status=status,
        updated_at=timezone.now(),
    )


def _on_payment_succeeded(invoice: dict):
    _set_status_for_invoice(invoice, Subscription.Status.ACTIVE)


def _on_payment_failed(invoice: dict):
    _set_status_for_invoice(invoice, Subscription.Status.PAST_DUE)


EVENT_HANDLERS = {
    'checkout.session.completed': _on_checkout_completed,
    'customer.subscription.created': _on_subscription_updated,
    'customer.subscription.updated': _on_subscription_updated,
    'customer.subscription.deleted': _on_subscription_deleted,
    'invoice.payment_succeeded': _on_payment_succeeded,
    'invoice.payment_failed': _on_payment_failed,
}


def handle_event(event: dict) -> bool:
    """Apply a verified webhook event once.

    Returns False when the event id was already processed. The event record
    and the subscription change share a transaction, so a failing handler
    leaves the event free to be retried.
    """
    event_id = event.get('id')
    event_type = event.get('type', '')
    if not event_id:
        raise BillingError('Webhook event has no id.')

    with transaction.atomic():
        _, created = WebhookEvent.objects.get_or_create(event_id=event_id, defaults={'type': event_type})
        if not created:
            logger.info("Webhook event %s already processed", event_id)
            return False

        handler = EVENT_HANDLERS.get(event_type)
        if handler is None:
            logger.info("Ignoring webhook event %s of type %s", event_id, event_type)
            return True

        handler(event['data']['object'])

    logger.info("Processed webhook event %s (%s)", event_id, event_type)
    return True
