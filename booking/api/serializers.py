from django.contrib.auth import get_user_model
from django.db import transaction
from django.utils.timezone import localtime
from rest_framework import serializers

from booking import slots
from booking.models import (
    Appointment,
    Client,
    Service,
    Shop,
    ShopPhoto,
    Staff,
    StaffDayOff,
)
from booking.validators import validate_photo, validate_staff_photo
from users.models import Profile
from users.phone_utils import is_valid_phone_input, normalize_phone

User = get_user_model()


def _clean_phone(value: str) -> str:
    if not value:
        return ''
    if not is_valid_phone_input(value):
        raise serializers.ValidationError('Enter a valid phone number.')
    return normalize_phone(value)


class ShopPhotoSerializer(serializers.ModelSerializer):
    class Meta:
        model = ShopPhoto
        fields = ["id", "image", "position", "uploaded_at"]
        read_only_fields = ["uploaded_at"]

    def validate_image(self, value):
        return validate_photo(value)


class ShopSerializer(serializers.ModelSerializer):
    photos = ShopPhotoSerializer(many=True, read_only=True)

    class Meta:
        model = Shop
        fields = [
            "id",
            "name",
            "slug",
            "description",
            "address",
            "city",
            "phone",
            "opening_time",
            "closing_time",
            "slot_step",
            "photo",
            "photos",
        ]
        read_only_fields = fields


class ShopManageSerializer(serializers.ModelSerializer):
    class Meta:
        model = Shop
        fields = [
            "id",
            "name",
            "slug",
            "description",
            "address",
            "city",
            "phone",
            "opening_time",
            "closing_time",
            "slot_step",
            "photo",
            "is_active",
            "created_at",
        ]
        read_only_fields = ["slug", "created_at"]

    def validate_phone(self, value):
        return _clean_phone(value)

    def validate_photo(self, value):
        return validate_photo(value)

    def validate_slot_step(self, value):
        if not value:
            raise serializers.ValidationError('Slot step must be positive.')
        return value

    def validate(self, attrs):
        opening = attrs.get("opening_time", getattr(self.instance, "opening_time", None))
        closing = attrs.get("closing_time", getattr(self.instance, "closing_time", None))
        if opening and closing and closing <= opening:
            raise serializers.ValidationError({"closing_time": "Closing time must be after opening time."})
        return attrs


class ServiceSerializer(serializers.ModelSerializer):
    class Meta:
        model = Service
        fields = ["id", "name", "description", "price", "duration_minutes", "is_active"]

    def validate_duration_minutes(self, value):
        if not value:
            raise serializers.ValidationError('Duration must be positive.')
        return value

    def validate_price(self, value):
        if value < 0:
            raise serializers.ValidationError('Price cannot be negative.')
        return value


class StaffSerializer(serializers.ModelSerializer):
    class Meta:
        model = Staff
        fields = ["id", "name", "photo"]


class StaffManageSerializer(serializers.ModelSerializer):
    """Staff member as the owner sees it; can also open a barber login."""

    username = serializers.CharField(max_length=150, required=False, allow_blank=True, write_only=True)
    password = serializers.CharField(min_length=6, required=False, allow_blank=True, write_only=True)
    email = serializers.EmailField(required=False, allow_blank=True, write_only=True)
    account = serializers.SerializerMethodField()

    class Meta:
        model = Staff
        fields = [
            "id",
            "name",
            "phone",
            "photo",
            "telegram_chat_id",
            "is_active",
            "account",
            "username",
            "password",
            "email",
        ]

    def get_account(self, obj: Staff):
        return obj.user.username if obj.user_id else None

    def validate_phone(self, value):
        return _clean_phone(value)

    def validate_photo(self, value):
        return validate_staff_photo(value)

    def validate_username(self, value):
        if value and User.objects.filter(username__iexact=value).exists():
            raise serializers.ValidationError('A user with this username already exists.')
        return value

    def validate(self, attrs):
        if attrs.get("username") and not attrs.get("password"):
            raise serializers.ValidationError({"password": "Set a password for the barber account."})
        if attrs.get("username") and self.instance is not None and self.instance.user_id:
            raise serializers.ValidationError({"username": "This staff member already has an account."})
        return attrs

    def _open_account(self, staff_data, username, password, email, shop):
        user = User.objects.create_user(
            username=username,
            password=password,
            email=email or "",
            first_name=staff_data.get("name", ""),
        )
        profile, _ = Profile.objects.get_or_create(user=user)
        profile.role = Profile.Role.BARBER
        profile.shop = shop
        profile.phone = staff_data.get("phone", "")
        profile.save(update_fields=["role", "shop", "phone"])
        return user

    def create(self, validated_data):
        username = validated_data.pop("username", "")
        password = validated_data.pop("password", "")
        email = validated_data.pop("email", "")
        with transaction.atomic():
            if username:
                validated_data["user"] = self._open_account(
                    validated_data, username, password, email, validated_data["shop"]
                )
            return Staff.objects.create(**validated_data)

    def update(self, instance, validated_data):
        username = validated_data.pop("username", "")
        password = validated_data.pop("password", "")
        email = validated_data.pop("email", "")
        with transaction.atomic():
            if username:
                data = {"name": validated_data.get("name", instance.name),
                        "phone": validated_data.get("phone", instance.phone)}
                instance.user = self._open_account(data, username, password, email, instance.shop)
            elif password and instance.user_id:
                instance.user.set_password(password)
                instance.user.save(update_fields=["password"])
            return super().update(instance, validated_data)


class StaffDayOffSerializer(serializers.ModelSerializer):
    class Meta:
        model = StaffDayOff
        fields = ["id", "staff", "date", "from_time", "to_time", "reason"]

    def validate_staff(self, value: Staff):
        shop = self.context.get("shop")
        if shop is not None and value.shop_id != shop.pk:
            raise serializers.ValidationError('The staff member does not work at this shop.')
        return value

    def validate(self, attrs):
        from_time = attrs.get("from_time")
        to_time = attrs.get("to_time")
        if (from_time is None) != (to_time is None):
            raise serializers.ValidationError('Give both start and end times, or neither for a whole day.')
        if from_time and to_time and to_time <= from_time:
            raise serializers.ValidationError({"to_time": "End time must be after start time."})
        return attrs


class ClientSerializer(serializers.ModelSerializer):
    appointments_count = serializers.IntegerField(read_only=True, required=False)

    class Meta:
        model = Client
        fields = ["id", "name", "phone", "email", "created_at", "appointments_count"]
        read_only_fields = ["created_at"]

    def validate_phone(self, value):
        phone = _clean_phone(value)
        if not phone:
            raise serializers.ValidationError('Phone is required.')
        shop = self.context.get("shop")
        clash = Client.objects.filter(shop=shop, phone=phone)
        if self.instance is not None:
            clash = clash.exclude(pk=self.instance.pk)
        if shop is not None and clash.exists():
            raise serializers.ValidationError('A client with this phone already exists.')
        return phone


class AppointmentSerializer(serializers.ModelSerializer):
    service_name = serializers.CharField(source="service.name", read_only=True)
    staff_name = serializers.CharField(source="staff.name", read_only=True)
    start_time_local = serializers.SerializerMethodField()
    end_time_local = serializers.SerializerMethodField()

    class Meta:
        model = Appointment
        fields = [
            "id",
            "shop",
            "service",
            "service_name",
            "staff",
            "staff_name",
            "client",
            "client_name",
            "client_phone",
            "start_time",
            "end_time",
            "start_time_local",
            "end_time_local",
            "status",
            "price",
            "notes",
            "created_at",
        ]
        read_only_fields = fields

    def get_start_time_local(self, obj: Appointment):
        return localtime(obj.start_time)

    def get_end_time_local(self, obj: Appointment):
        return localtime(obj.end_time)


class AppointmentCreateSerializer(serializers.Serializer):
    service = serializers.IntegerField(min_value=1)
    staff = serializers.CharField(required=False, default=slots.ANY_STAFF)
    start_time = serializers.DateTimeField()
    client_name = serializers.CharField(max_length=120)
    client_phone = serializers.CharField(max_length=20)
    client_email = serializers.EmailField(required=False, allow_blank=True, default="")
    notes = serializers.CharField(required=False, allow_blank=True, default="")

    def validate_client_phone(self, value):
        phone = _clean_phone(value)
        if not phone:
            raise serializers.ValidationError('Phone is required.')
        return phone

    def validate_staff(self, value):
        value = (value or slots.ANY_STAFF).strip()
        if value == slots.ANY_STAFF:
            return value
        if not value.isdigit():
            raise serializers.ValidationError('Use a staff id or "any".')
        return int(value)

    def validate(self, attrs):
        shop: Shop = self.context["shop"]
        try:
            attrs["service"] = shop.services.get(pk=attrs["service"], is_active=True)
        except Service.DoesNotExist:
            raise serializers.ValidationError({"service": "The service is not offered by this shop."})

        if attrs["staff"] == slots.ANY_STAFF:
            attrs["staff"] = None
        else:
            try:
                attrs["staff"] = shop.staff.get(pk=attrs["staff"], is_active=True)
            except Staff.DoesNotExist:
                raise serializers.ValidationError({"staff": "The staff member does not work at this shop."})
        return attrs


class ManualAppointmentSerializer(AppointmentCreateSerializer):
    """Booking entered from the dashboard; phone is optional here."""

    client_phone = serializers.CharField(max_length=20, required=False, allow_blank=True, default="")
    status = serializers.ChoiceField(
        choices=[Appointment.Status.SCHEDULED, Appointment.Status.CONFIRMED],
        default=Appointment.Status.SCHEDULED,
    )

    def validate_client_phone(self, value):
        return _clean_phone(value)


class AppointmentStatusSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=Appointment.Status.choices)
