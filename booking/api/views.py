import logging
from datetime import datetime, timedelta

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db.models import Count, Q
from django.shortcuts import get_object_or_404
from rest_framework import generics, permissions, status
from rest_framework.exceptions import PermissionDenied, ValidationError as DRFValidationError
from rest_framework.parsers import FormParser, JSONParser, MultiPartParser
from rest_framework.response import Response
from rest_framework.views import APIView

from billing.permissions import HasActiveSubscription
from booking import slots
from booking.api.permissions import CanChangeAppointment, IsShopOwnerOrReadOnly
from booking.api.serializers import (
    AppointmentCreateSerializer,
    AppointmentSerializer,
    AppointmentStatusSerializer,
    ClientSerializer,
    ManualAppointmentSerializer,
    ServiceSerializer,
    ShopManageSerializer,
    ShopPhotoSerializer,
    ShopSerializer,
    StaffDayOffSerializer,
    StaffManageSerializer,
    StaffSerializer,
)
from booking.availability import available_slots, book_appointment, change_status, shop_timezone
from booking.models import Appointment, Client, Service, Shop, Staff, StaffDayOff

logger = logging.getLogger(__name__)

DASHBOARD_PERMISSIONS = [permissions.IsAuthenticated, HasActiveSubscription]


def error_response(exc):
    """Translate a domain error raised while booking into a DRF response."""
    if isinstance(exc, slots.SlotUnavailable):
        return Response({"detail": str(exc)}, status=status.HTTP_409_CONFLICT)
    if isinstance(exc, DjangoValidationError):
        return Response({"detail": " ".join(exc.messages)}, status=status.HTTP_400_BAD_REQUEST)
    return Response({"detail": str(exc)}, status=status.HTTP_400_BAD_REQUEST)


def _parse_date(value):
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except (TypeError, ValueError):
        raise ValueError("Invalid date format. Use YYYY-MM-DD.")


class ShopScopedMixin:
    """Resolves ``shop_id`` from the URL and checks the caller belongs to it."""

    owner_only = False

    def get_shop(self) -> Shop:
        if not hasattr(self, "_shop"):
            shop = get_object_or_404(Shop.objects.select_related("owner"), pk=self.kwargs["shop_id"])
            user = self.request.user
            if not shop.is_member(user):
                raise PermissionDenied("You do not have access to this shop.")
            writing = self.request.method not in permissions.SAFE_METHODS
            if (self.owner_only or writing) and shop.owner_id != user.id:
                raise PermissionDenied("Only the shop owner can change this.")
            self._shop = shop
        return self._shop

    def get_serializer_context(self):
        context = super().get_serializer_context()
        context["shop"] = self.get_shop()
        return context


# Public booking pages

class PublicShopMixin:
    permission_classes = [permissions.AllowAny]

    def get_public_shop(self) -> Shop:
        return get_object_or_404(Shop.objects.active(), slug=self.kwargs["slug"])


class ShopDetailView(PublicShopMixin, generics.RetrieveAPIView):
    serializer_class = ShopSerializer
    lookup_field = "slug"

    def get_queryset(self):
        return Shop.objects.active().prefetch_related("photos")


class ShopServiceListView(PublicShopMixin, generics.ListAPIView):
    serializer_class = ServiceSerializer
    pagination_class = None

    def get_queryset(self):
        return self.get_public_shop().services.filter(is_active=True).order_by("name")


class ShopStaffListView(PublicShopMixin, generics.ListAPIView):
    serializer_class = StaffSerializer
    pagination_class = None

    def get_queryset(self):
        return self.get_public_shop().staff.filter(is_active=True).order_by("name", "id")


class AvailableSlotsView(PublicShopMixin, APIView):
    def get(self, request, slug):
        shop = self.get_public_shop()

        service_id = request.query_params.get("service")
        date_str = request.query_params.get("date")
        staff_param = (request.query_params.get("staff") or slots.ANY_STAFF).strip()

        if not service_id or not date_str:
            return Response({"detail": "Give a service and a date."}, status=status.HTTP_400_BAD_REQUEST)

        try:
            target_date = _parse_date(date_str)
        except ValueError as exc:
            return Response({"detail": str(exc)}, status=status.HTTP_400_BAD_REQUEST)

        service = shop.services.filter(pk=service_id, is_active=True).first() if service_id.isdigit() else None
        if service is None:
            return Response({"detail": "Service not found."}, status=status.HTTP_404_NOT_FOUND)

        staff = None
        if staff_param != slots.ANY_STAFF:
            staff = shop.staff.filter(pk=staff_param, is_active=True).first() if staff_param.isdigit() else None
            if staff is None:
                return Response({"detail": "Staff member not found."}, status=status.HTTP_404_NOT_FOUND)

        try:
            result = available_slots(shop, service, target_date, staff=staff)
        except ValueError as exc:
            return error_response(exc)

        return Response([{"time": slot.time, "occupied": slot.occupied} for slot in result])


class PublicAppointmentCreateView(PublicShopMixin, APIView):
    def post(self, request, slug):
        shop = self.get_public_shop()
        serializer = AppointmentCreateSerializer(data=request.data, context={"shop": shop})
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        try:
            appointment = book_appointment(
                shop,
                data["service"],
                data["start_time"],
                data["staff"],
                client_name=data["client_name"],
                client_phone=data["client_phone"],
                client_email=data["client_email"],
                notes=data["notes"],
                created_by=request.user,
            )
        except (ValueError, DjangoValidationError) as exc:
            return error_response(exc)

        return Response(AppointmentSerializer(appointment).data, status=status.HTTP_201_CREATED)


# Dashboard

class OwnerShopListCreateView(generics.ListCreateAPIView):
    serializer_class = ShopManageSerializer
    permission_classes = DASHBOARD_PERMISSIONS

    def get_queryset(self):
        user = self.request.user
        return Shop.objects.filter(Q(owner=user) | Q(member_profiles__user=user)).distinct().order_by("name")

    def perform_create(self, serializer):
        profile = getattr(self.request.user, "profile", None)
        if not profile or not profile.is_owner:
            raise PermissionDenied("Only owner accounts can create shops.")
        shop = serializer.save(owner=self.request.user)
        logger.info("Shop %s created by user %s", shop.pk, self.request.user.pk)


class ShopManageView(generics.RetrieveUpdateAPIView):
    serializer_class = ShopManageSerializer
    permission_classes = DASHBOARD_PERMISSIONS + [IsShopOwnerOrReadOnly]
    queryset = Shop.objects.all()
    lookup_url_kwarg = "shop_id"


class ShopPhotoListCreateView(ShopScopedMixin, generics.ListCreateAPIView):
    serializer_class = ShopPhotoSerializer
    permission_classes = DASHBOARD_PERMISSIONS
    parser_classes = [MultiPartParser, FormParser, JSONParser]
    pagination_class = None

    def get_queryset(self):
        return self.get_shop().photos.all()

    def perform_create(self, serializer):
        serializer.save(shop=self.get_shop())


class ShopPhotoDeleteView(ShopScopedMixin, generics.DestroyAPIView):
    permission_classes = DASHBOARD_PERMISSIONS
    owner_only = True
    lookup_url_kwarg = "photo_id"

    def get_queryset(self):
        return self.get_shop().photos.all()

    def perform_destroy(self, instance):
        instance.image.delete(save=False)
        instance.delete()


class ServiceListCreateView(ShopScopedMixin, generics.ListCreateAPIView):
    serializer_class = ServiceSerializer
    permission_classes = DASHBOARD_PERMISSIONS
    pagination_class = None

    def get_queryset(self):
        return self.get_shop().services.order_by("name")

    def perform_create(self, serializer):
        serializer.save(shop=self.get_shop())


class DeactivateOnDeleteMixin:
    """Rows referenced by appointments are switched off instead of deleted."""

    def perform_destroy(self, instance):
        if instance.appointments.exists():
            instance.is_active = False
            instance.save(update_fields=["is_active"])
            return
        instance.delete()


class ServiceDetailView(ShopScopedMixin, DeactivateOnDeleteMixin, generics.RetrieveUpdateDestroyAPIView):
    serializer_class = ServiceSerializer
    permission_classes = DASHBOARD_PERMISSIONS
    lookup_url_kwarg = "service_id"

    def get_queryset(self):
        return self.get_shop().services.all()


class StaffListCreateView(ShopScopedMixin, generics.ListCreateAPIView):
    serializer_class = StaffManageSerializer
    permission_classes = DASHBOARD_PERMISSIONS
    parser_classes = [JSONParser, MultiPartParser, FormParser]
    pagination_class = None

    def get_queryset(self):
        return self.get_shop().staff.select_related("user").order_by("name", "id")

    def perform_create(self, serializer):
        staff = serializer.save(shop=self.get_shop())
        logger.info("Staff member %s added to shop %s", staff.pk, staff.shop_id)


class StaffDetailView(ShopScopedMixin, DeactivateOnDeleteMixin, generics.RetrieveUpdateDestroyAPIView):
    serializer_class = StaffManageSerializer
    permission_classes = DASHBOARD_PERMISSIONS
    parser_classes = [JSONParser, MultiPartParser, FormParser]
    lookup_url_kwarg = "staff_id"

    def get_queryset(self):
        return self.get_shop().staff.select_related("user")


class StaffDayOffListCreateView(ShopScopedMixin, generics.ListCreateAPIView):
    serializer_class = StaffDayOffSerializer
    permission_classes = DASHBOARD_PERMISSIONS
    pagination_class = None

    def get_queryset(self):
        qs = StaffDayOff.objects.filter(staff__shop=self.get_shop()).select_related("staff")
        staff_id = self.request.query_params.get("staff")
        if staff_id and staff_id.isdigit():
            qs = qs.filter(staff_id=staff_id)
        date_from = self.request.query_params.get("from")
        if date_from:
            try:
                qs = qs.filter(date__gte=_parse_date(date_from))
            except ValueError as exc:
                raise DRFValidationError({"from": [str(exc)]})
        return qs


class StaffDayOffDeleteView(ShopScopedMixin, generics.DestroyAPIView):
    permission_classes = DASHBOARD_PERMISSIONS
    lookup_url_kwarg = "day_off_id"

    def get_queryset(self):
        return StaffDayOff.objects.filter(staff__shop=self.get_shop())


class ClientListCreateView(ShopScopedMixin, generics.ListCreateAPIView):
    serializer_class = ClientSerializer
    permission_classes = DASHBOARD_PERMISSIONS

    def get_queryset(self):
        qs = self.get_shop().clients.annotate(appointments_count=Count("appointments"))
        search = (self.request.query_params.get("search") or "").strip()
        if search:
            qs = qs.filter(
                Q(name__icontains=search) | Q(phone__icontains=search) | Q(email__icontains=search)
            )
        return qs.order_by("name")

    def create(self, request, *args, **kwargs):
        # Barbers may add clients too, not only the owner.
        shop = get_object_or_404(Shop, pk=self.kwargs["shop_id"])
        if not shop.is_member(request.user):
            raise PermissionDenied("You do not have access to this shop.")
        self._shop = shop
        return super().create(request, *args, **kwargs)

    def perform_create(self, serializer):
        serializer.save(shop=self.get_shop(), created_by=self.request.user)


class AppointmentListCreateView(ShopScopedMixin, APIView):
    permission_classes = DASHBOARD_PERMISSIONS

    def get(self, request, shop_id):
        shop = self.get_shop()
        appointments = (
            Appointment.objects
            .filter(shop=shop)
            .select_related("service", "staff")
            .order_by("start_time")
        )

        date_str = request.query_params.get("date")
        if date_str:
            try:
                day = _parse_date(date_str)
            except ValueError as exc:
                return Response({"detail": str(exc)}, status=status.HTTP_400_BAD_REQUEST)
            tz = shop_timezone()
            day_start = tz.localize(datetime.combine(day, datetime.min.time()))
            appointments = appointments.overlapping(day_start, day_start + timedelta(days=1))

        staff_id = request.query_params.get("staff")
        if staff_id and staff_id.isdigit():
            appointments = appointments.filter(staff_id=staff_id)

        status_value = request.query_params.get("status")
        if status_value:
            appointments = appointments.filter(status=status_value)

        profile = getattr(request.user, "profile", None)
        if shop.owner_id != request.user.id and profile and profile.is_barber:
            appointments = appointments.filter(staff__user=request.user)

        return Response(AppointmentSerializer(appointments, many=True).data)

    def post(self, request, shop_id):
        shop = get_object_or_404(Shop, pk=shop_id)
        if not shop.is_member(request.user):
            raise PermissionDenied("You do not have access to this shop.")

        serializer = ManualAppointmentSerializer(data=request.data, context={"shop": shop})
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        staff = data["staff"]
        if shop.owner_id != request.user.id:
            # barbers book only into their own column
            staff = shop.staff.filter(user=request.user, is_active=True).first()
            if staff is None:
                raise PermissionDenied("Your account is not linked to a staff member of this shop.")

        try:
            appointment = book_appointment(
                shop,
                data["service"],
                data["start_time"],
                staff,
                client_name=data["client_name"],
                client_phone=data["client_phone"],
                client_email=data["client_email"],
                notes=data["notes"],
                created_by=request.user,
                status=data["status"],
                allow_past=True,
            )
        except (ValueError, DjangoValidationError) as exc:
            return error_response(exc)

        return Response(AppointmentSerializer(appointment).data, status=status.HTTP_201_CREATED)


class AppointmentStatusView(APIView):
    permission_classes = DASHBOARD_PERMISSIONS + [CanChangeAppointment]

    def post(self, request, appointment_id):
        appointment = get_object_or_404(
            Appointment.objects.select_related("shop", "staff", "service"),
            pk=appointment_id,
        )
        self.check_object_permissions(request, appointment)

        serializer = AppointmentStatusSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            change_status(appointment, serializer.validated_data["status"])
        except (ValueError, DjangoValidationError) as exc:
            return error_response(exc)

        return Response(AppointmentSerializer(appointment).data)


class AgendaView(APIView):
    """Upcoming appointments across every shop the caller works in."""

    permission_classes = DASHBOARD_PERMISSIONS

    def get(self, request):
        tz = shop_timezone()
        date_str = request.query_params.get("date")
        try:
            day = _parse_date(date_str) if date_str else datetime.now(tz).date()
            days = int(request.query_params.get("days", 1))
        except ValueError as exc:
            return Response({"detail": str(exc)}, status=status.HTTP_400_BAD_REQUEST)
        days = max(1, min(days, 31))

        start = tz.localize(datetime.combine(day, datetime.min.time()))
        end = start + timedelta(days=days)

        user = request.user
        appointments = (
            Appointment.objects
            .filter(Q(shop__owner=user) | Q(staff__user=user))
            .overlapping(start, end)
            .select_related("shop", "service", "staff")
            .order_by("start_time")
        )
        if request.query_params.get("include_canceled") not in {"1", "true"}:
            appointments = appointments.active()

        agenda = {}
        for appointment in appointments:
            key = appointment.start_time.astimezone(tz).date().isoformat()
            agenda.setdefault(key, []).append(AppointmentSerializer(appointment).data)

        return Response({
            "from": day.isoformat(),
            "days": days,
            "agenda": agenda,
        })
