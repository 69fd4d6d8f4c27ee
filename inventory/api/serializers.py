from rest_framework import serializers

from inventory.models import Product, Sale, StockMovement


class ProductSerializer(serializers.ModelSerializer):
    is_low_stock = serializers.BooleanField(read_only=True)
    stock_value = serializers.DecimalField(max_digits=14, decimal_places=2, read_only=True)
    expected_profit = serializers.DecimalField(max_digits=14, decimal_places=2, read_only=True)

    class Meta:
        model = Product
        fields = [
            "id",
            "name",
            "category",
            "price",
            "cost",
            "quantity",
            "alert_threshold",
            "is_active",
            "is_low_stock",
            "stock_value",
            "expected_profit",
        ]

    def validate_price(self, value):
        if value < 0:
            raise serializers.ValidationError("Price cannot be negative.")
        return value

    def validate_cost(self, value):
        if value < 0:
            raise serializers.ValidationError("Cost cannot be negative.")
        return value

    def validate_quantity(self, value):
        # Stock of an existing product only moves through movements and sales.
        if self.instance is not None and value != self.instance.quantity:
            raise serializers.ValidationError("Use a stock adjustment to change the quantity.")
        return value


class StockMovementSerializer(serializers.ModelSerializer):
    user = serializers.StringRelatedField()

    class Meta:
        model = StockMovement
        fields = ["id", "kind", "quantity", "note", "user", "created_at"]
        read_only_fields = fields


class StockAdjustmentSerializer(serializers.Serializer):
    delta = serializers.IntegerField()
    kind = serializers.ChoiceField(
        choices=[StockMovement.Kind.IN, StockMovement.Kind.OUT, StockMovement.Kind.ADJUSTMENT],
        default=StockMovement.Kind.ADJUSTMENT,
    )
    note = serializers.CharField(max_length=255, required=False, allow_blank=True, default="")

    def validate_delta(self, value):
        if value == 0:
            raise serializers.ValidationError("The stock change cannot be zero.")
        return value


class SellSerializer(serializers.Serializer):
    quantity = serializers.IntegerField(min_value=1)


class SaleSerializer(serializers.ModelSerializer):
    sold_by = serializers.StringRelatedField()

    class Meta:
        model = Sale
        fields = [
            "id",
            "product",
            "product_name",
            "category",
            "quantity",
            "unit_price",
            "total",
            "sold_at",
            "sold_by",
        ]
        read_only_fields = fields
