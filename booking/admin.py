from django.contrib import admin

from .models import Appointment, Client, Service, Shop, ShopPhoto, Staff, StaffDayOff


class ShopPhotoInline(admin.TabularInline):
    model = ShopPhoto
    extra = 0


@admin.register(Shop)
class ShopAdmin(admin.ModelAdmin):
    inlines = [ShopPhotoInline]
    list_display = ('name', 'owner', 'city', 'opening_time', 'closing_time', 'slot_step', 'is_active')
    list_filter = ('is_active', 'city')
    search_fields = ('name', 'address', 'owner__username')
    readonly_fields = ('slug', 'created_at', 'updated_at')


@admin.register(Service)
class ServiceAdmin(admin.ModelAdmin):
    list_display = ('name', 'shop', 'duration_minutes', 'price', 'is_active')
    list_filter = ('shop', 'is_active')
    search_fields = ('name',)


class StaffDayOffInline(admin.TabularInline):
    model = StaffDayOff
    extra = 0


@admin.register(Staff)
class StaffAdmin(admin.ModelAdmin):
    inlines = [StaffDayOffInline]
    list_display = ('name', 'shop', 'user', 'is_active')
    list_filter = ('shop', 'is_active')
    search_fields = ('name', 'phone', 'user__username')


@admin.register(Client)
class ClientAdmin(admin.ModelAdmin):
    list_display = ('name', 'phone', 'email', 'shop', 'created_at')
    list_filter = ('shop',)
    search_fields = ('name', 'phone', 'email')


@admin.register(Appointment)
class AppointmentAdmin(admin.ModelAdmin):
    list_display = ('client_name', 'staff', 'get_service_name', 'start_time', 'end_time', 'status')
    list_filter = ('status', 'shop', 'staff')
    search_fields = ('client_name', 'client_phone')
    date_hierarchy = 'start_time'

    def get_service_name(self, obj):
        return obj.service.name
    get_service_name.short_description = 'Service'

    def get_queryset(self, request):
        return super().get_queryset(request).select_related('service', 'staff', 'shop')
