from rest_framework import serializers

from billing.models import Subscription
from billing.services import banner_for


class SubscriptionSerializer(serializers.ModelSerializer):
    has_access = serializers.SerializerMethodField()
    banner = serializers.SerializerMethodField()

    class Meta:
        model = Subscription
        fields = [
            "status",
            "trial_start",
            "trial_end",
            "current_period_start",
            "current_period_end",
            "cancel_at_period_end",
            "has_access",
            "banner",
        ]
        read_only_fields = fields

    def get_has_access(self, obj: Subscription) -> bool:
        return obj.has_access()

    def get_banner(self, obj: Subscription):
        banner = banner_for(obj)
        if banner is None:
            return None
        return {"state": banner.state, "days_left": banner.days_left}
