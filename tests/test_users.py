import pytest
from django.contrib.auth import get_user_model
from django.urls import reverse
from rest_framework.authtoken.models import Token

from billing.models import Subscription
from users.models import Profile
from users.phone_utils import is_valid_phone_input, normalize_phone

User = get_user_model()


class TestPhoneUtils:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("912 345 678", "+351912345678"),
            ("+351 912-345-678", "+351912345678"),
            ("00351912345678", "+351912345678"),
            ("+44 20 7946 0958", "+442079460958"),
            ("5511987654321", "+5511987654321"),
            ("", ""),
            ("  ", ""),
            (None, ""),
        ],
    )
    def test_normalize(self, raw, expected):
        assert normalize_phone(raw) == expected

    def test_country_code_from_settings(self, settings):
        settings.PHONE_COUNTRY_CODE = "34"
        assert normalize_phone("612345678") == "+34612345678"
        assert normalize_phone("612345678", default_country_code="+33") == "+33612345678"

    @pytest.mark.parametrize("raw, valid", [("912345678", True), ("12-34-567", True), ("12345", False), ("abc", False)])
    def test_valid_input(self, raw, valid):
        assert is_valid_phone_input(raw) is valid


@pytest.mark.django_db
class TestAccounts:
    def test_profile_created_with_user(self):
        user = User.objects.create_user(username="someone", password="pass12345")
        assert user.profile.role == Profile.Role.CLIENT

    def test_register_owner(self, api_client):
        response = api_client.post(reverse("api-register"), {
            "username": "maria",
            "email": "maria@example.com",
            "phone": "912 000 111",
            "password": "a-long-secret-42",
        })

        assert response.status_code == 201
        user = User.objects.get(username="maria")
        assert response.data == {"token": Token.objects.get(user=user).key}
        assert user.profile.role == Profile.Role.OWNER
        assert user.profile.phone == "+351912000111"
        assert user.subscription.status == Subscription.Status.TRIAL

    def test_register_rejects_duplicates_and_weak_passwords(self, api_client, owner):
        response = api_client.post(reverse("api-register"), {"username": "OWNER", "password": "a-long-secret-42"})
        assert response.status_code == 400
        assert "username" in response.data

        response = api_client.post(reverse("api-register"), {"username": "new", "password": "12345678"})
        assert response.status_code == 400
        assert "password" in response.data

    def test_token_login(self, api_client, owner):
        response = api_client.post(reverse("api-token"), {"username": "owner", "password": "pass12345"})

        assert response.status_code == 200
        assert response.data["user_id"] == owner.pk
        assert response.data["role"] == "owner"

        api_client.credentials(HTTP_AUTHORIZATION=f"Token {response.data['token']}")
        assert api_client.get(reverse("api-me")).status_code == 200

    def test_token_login_wrong_password(self, api_client, owner):
        response = api_client.post(reverse("api-token"), {"username": "owner", "password": "nope"})
        assert response.status_code == 400

    def test_me(self, owner_client, owner):
        response = owner_client.get(reverse("api-me"))

        assert response.data["username"] == "owner"
        assert response.data["role"] == "owner"
        assert response.data["subscription"]["status"] == "trial"

    def test_me_update(self, owner_client, owner):
        response = owner_client.patch(reverse("api-me"), {"first_name": "Ana", "phone": "912345678"})

        assert response.status_code == 200
        owner.refresh_from_db()
        assert owner.first_name == "Ana"
        assert Profile.objects.get(user=owner).phone == "+351912345678"

        response = owner_client.patch(reverse("api-me"), {"phone": "123"})
        assert response.status_code == 400
