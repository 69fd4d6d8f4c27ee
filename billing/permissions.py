from rest_framework import permissions

from billing.services import has_access


class HasActiveSubscription(permissions.BasePermission):
    """Owner accounts need a paid subscription or a running trial.

    Barbers and other roles are not billed and pass through.
    """

    message = 'An active subscription or trial is required.'

    def has_permission(self, request, view):
        user = request.user
        if not user or not user.is_authenticated:
            return False
        profile = getattr(user, 'profile', None)
        if profile is None or not profile.is_owner:
            return True
        return has_access(getattr(user, 'subscription', None))
