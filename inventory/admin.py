from django.contrib import admin

from .models import Product, Sale, StockMovement


class StockMovementInline(admin.TabularInline):
    model = StockMovement
    extra = 0
    readonly_fields = ('kind', 'quantity', 'note', 'user', 'created_at')
    can_delete = False


@admin.register(Product)
class ProductAdmin(admin.ModelAdmin):
    inlines = [StockMovementInline]
    list_display = ('name', 'shop', 'category', 'price', 'cost', 'quantity', 'alert_threshold', 'is_low_stock')
    list_filter = ('shop', 'category', 'is_active')
    search_fields = ('name', 'category')

    def is_low_stock(self, obj):
        return obj.is_low_stock
    is_low_stock.boolean = True
    is_low_stock.short_description = 'Low stock'


@admin.register(Sale)
class SaleAdmin(admin.ModelAdmin):
    list_display = ('product_name', 'shop', 'quantity', 'unit_price', 'total', 'sold_at', 'sold_by')
    list_filter = ('shop', 'category')
    date_hierarchy = 'sold_at'
    search_fields = ('product_name',)
