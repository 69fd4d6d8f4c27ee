from django.contrib.auth import get_user_model
from django.contrib.auth.password_validation import validate_password
from django.db import transaction
from rest_framework import serializers

from users.models import Profile
from users.phone_utils import is_valid_phone_input, normalize_phone

User = get_user_model()


def _clean_phone(value: str) -> str:
    if not value:
        return ''
    if not is_valid_phone_input(value):
        raise serializers.ValidationError("Enter a valid phone number.")
    return normalize_phone(value)


class RegistrationSerializer(serializers.Serializer):
    """Sign-up of a shop owner."""

    username = serializers.CharField(max_length=150)
    email = serializers.EmailField(required=False, allow_blank=True)
    first_name = serializers.CharField(max_length=150, required=False, allow_blank=True)
    last_name = serializers.CharField(max_length=150, required=False, allow_blank=True)
    phone = serializers.CharField(max_length=32, required=False, allow_blank=True)
    password = serializers.CharField(write_only=True, min_length=8)

    def validate_username(self, value: str) -> str:
        if User.objects.filter(username__iexact=value).exists():
            raise serializers.ValidationError("A user with this username already exists.")
        return value

    def validate_phone(self, value: str) -> str:
        return _clean_phone(value)

    def validate_password(self, value: str) -> str:
        validate_password(value)
        return value

    def create(self, validated_data):
        phone = validated_data.pop("phone", "")
        with transaction.atomic():
            user = User.objects.create_user(**validated_data)
            profile, _ = Profile.objects.get_or_create(user=user)
            profile.role = Profile.Role.OWNER
            profile.phone = phone
            profile.save(update_fields=["role", "phone"])
        return user


class ProfileSerializer(serializers.ModelSerializer):
    role = serializers.CharField(source="profile.role", read_only=True)
    phone = serializers.CharField(source="profile.phone", required=False, allow_blank=True, max_length=32)
    shop = serializers.IntegerField(source="profile.shop_id", read_only=True)
    subscription = serializers.SerializerMethodField()

    class Meta:
        model = User
        fields = ["id", "username", "email", "first_name", "last_name", "role", "phone", "shop", "subscription"]
        read_only_fields = ["id", "username"]

    def get_subscription(self, user):
        from billing.api.serializers import SubscriptionSerializer

        subscription = getattr(user, "subscription", None)
        if subscription is None:
            return None
        return SubscriptionSerializer(subscription).data

    def validate_phone(self, value: str) -> str:
        return _clean_phone(value)

    def update(self, instance, validated_data):
        profile_data = validated_data.pop("profile", {})
        for field in ("email", "first_name", "last_name"):
            if field in validated_data:
                setattr(instance, field, validated_data[field])
        instance.save(update_fields=["email", "first_name", "last_name"])

        if "phone" in profile_data:
            profile, _ = Profile.objects.get_or_create(user=instance)
            profile.phone = profile_data["phone"]
            profile.save(update_fields=["phone"])
        return instance
