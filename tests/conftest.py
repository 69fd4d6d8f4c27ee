from datetime import time, timedelta
from decimal import Decimal

import pytest
from django.contrib.auth import get_user_model
from django.utils import timezone
from rest_framework.test import APIClient

from billing.models import Subscription
from booking.availability import local_datetime
from booking.models import Service, Shop, Staff
from users.models import Profile

User = get_user_model()


@pytest.fixture(autouse=True)
def _isolated_settings(settings, tmp_path):
    settings.MEDIA_ROOT = tmp_path / "media"
    settings.TELEGRAM_BOT_TOKEN = ""
    settings.TIME_ZONE = "Europe/Lisbon"
    settings.STRIPE_SECRET_KEY = "sk_test_dummy"
    settings.STRIPE_WEBHOOK_SECRET = "whsec_test_secret"
    settings.STRIPE_PRICE_ID = "price_monthly"
    settings.APP_URL = "https://app.example.com"


@pytest.fixture
def owner(db):
    user = User.objects.create_user(username="owner", password="pass12345", email="owner@example.com")
    user.profile.role = Profile.Role.OWNER
    user.profile.save(update_fields=["role"])
    Subscription.objects.create(
        user=user,
        status=Subscription.Status.TRIAL,
        trial_start=timezone.now(),
        trial_end=timezone.now() + timedelta(days=7),
    )
    return user


@pytest.fixture
def shop(owner):
    return Shop.objects.create(
        owner=owner,
        name="Corte Fino",
        opening_time=time(9, 0),
        closing_time=time(18, 0),
        slot_step=15,
    )


@pytest.fixture
def haircut(shop):
    return Service.objects.create(shop=shop, name="Haircut", price=Decimal("15.00"), duration_minutes=30)


@pytest.fixture
def beard(shop):
    return Service.objects.create(shop=shop, name="Beard trim", price=Decimal("10.00"), duration_minutes=20)


@pytest.fixture
def alice(shop):
    return Staff.objects.create(shop=shop, name="Alice")


@pytest.fixture
def bruno(shop):
    return Staff.objects.create(shop=shop, name="Bruno")


@pytest.fixture
def barber_user(shop, alice):
    user = User.objects.create_user(username="alice", password="pass12345")
    user.profile.role = Profile.Role.BARBER
    user.profile.shop = shop
    user.profile.save(update_fields=["role", "shop"])
    alice.user = user
    alice.save(update_fields=["user"])
    return user


@pytest.fixture
def future_day():
    return timezone.localdate() + timedelta(days=7)


@pytest.fixture
def at(future_day):
    """Aware datetime on ``future_day`` at ``HH:MM`` shop time."""

    def _at(clock, day=None):
        hours, minutes = (int(part) for part in clock.split(":"))
        return local_datetime(day or future_day, hours * 60 + minutes)

    return _at


@pytest.fixture
def api_client():
    return APIClient()


@pytest.fixture
def owner_client(owner):
    client = APIClient()
    client.force_authenticate(owner)
    return client


@pytest.fixture
def barber_client(barber_user):
    client = APIClient()
    client.force_authenticate(barber_user)
    return client
