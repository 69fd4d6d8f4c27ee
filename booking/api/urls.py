from django.urls import path

from booking.api.views import (
    AgendaView,
    AppointmentListCreateView,
    AppointmentStatusView,
    AvailableSlotsView,
    ClientListCreateView,
    OwnerShopListCreateView,
    PublicAppointmentCreateView,
    ServiceDetailView,
    ServiceListCreateView,
    ShopDetailView,
    ShopManageView,
    ShopPhotoDeleteView,
    ShopPhotoListCreateView,
    ShopServiceListView,
    ShopStaffListView,
    StaffDayOffDeleteView,
    StaffDayOffListCreateView,
    StaffDetailView,
    StaffListCreateView,
)

urlpatterns = [
    # public booking
    path("shops/<slug:slug>/", ShopDetailView.as_view(), name="api-shop-detail"),
    path("shops/<slug:slug>/services/", ShopServiceListView.as_view(), name="api-shop-services"),
    path("shops/<slug:slug>/staff/", ShopStaffListView.as_view(), name="api-shop-staff"),
    path("shops/<slug:slug>/slots/", AvailableSlotsView.as_view(), name="api-shop-slots"),
    path("shops/<slug:slug>/appointments/", PublicAppointmentCreateView.as_view(), name="api-shop-book"),

    # dashboard
    path("dashboard/shops/", OwnerShopListCreateView.as_view(), name="api-owner-shops"),
    path("dashboard/shops/<int:shop_id>/", ShopManageView.as_view(), name="api-shop-manage"),
    path("dashboard/shops/<int:shop_id>/photos/", ShopPhotoListCreateView.as_view(), name="api-shop-photos"),
    path(
        "dashboard/shops/<int:shop_id>/photos/<int:photo_id>/",
        ShopPhotoDeleteView.as_view(),
        name="api-shop-photo-delete",
    ),
    path("dashboard/shops/<int:shop_id>/services/", ServiceListCreateView.as_view(), name="api-services"),
    path(
        "dashboard/shops/<int:shop_id>/services/<int:service_id>/",
        ServiceDetailView.as_view(),
        name="api-service-detail",
    ),
    path("dashboard/shops/<int:shop_id>/staff/", StaffListCreateView.as_view(), name="api-staff"),
    path(
        "dashboard/shops/<int:shop_id>/staff/<int:staff_id>/",
        StaffDetailView.as_view(),
        name="api-staff-detail",
    ),
    path("dashboard/shops/<int:shop_id>/days-off/", StaffDayOffListCreateView.as_view(), name="api-days-off"),
    path(
        "dashboard/shops/<int:shop_id>/days-off/<int:day_off_id>/",
        StaffDayOffDeleteView.as_view(),
        name="api-day-off-delete",
    ),
    path("dashboard/shops/<int:shop_id>/clients/", ClientListCreateView.as_view(), name="api-clients"),
    path(
        "dashboard/shops/<int:shop_id>/appointments/",
        AppointmentListCreateView.as_view(),
        name="api-shop-appointments",
    ),
    path(
        "dashboard/appointments/<int:appointment_id>/status/",
        AppointmentStatusView.as_view(),
        name="api-appointment-status",
    ),
    path("dashboard/agenda/", AgendaView.as_view(), name="api-agenda"),
]
