from rest_framework import permissions

from booking.models import Appointment, Shop


def _shop_of(obj):
    if isinstance(obj, Shop):
        return obj
    return getattr(obj, 'shop', None)


class IsShopOwnerOrReadOnly(permissions.BasePermission):
    message = 'Only the shop owner can change this.'

    def has_object_permission(self, request, view, obj):
        shop = _shop_of(obj)
        if shop is None or not shop.is_member(request.user):
            return False
        if request.method in permissions.SAFE_METHODS:
            return True
        return shop.owner_id == request.user.id


class CanChangeAppointment(permissions.BasePermission):
    """Owners manage every appointment of their shop, barbers only their own."""

    def has_object_permission(self, request, view, obj: Appointment):
        if obj.shop.owner_id == request.user.id:
            return True
        return bool(obj.staff.user_id and obj.staff.user_id == request.user.id)
