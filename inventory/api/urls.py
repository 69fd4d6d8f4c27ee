from django.urls import path

from inventory.api.views import (
    FinanceReportView,
    InventorySummaryView,
    ProductDetailView,
    ProductListCreateView,
    SalesHistoryView,
    SellProductView,
    StockAdjustmentView,
    StockMovementListView,
)

urlpatterns = [
    path("shops/<int:shop_id>/products/", ProductListCreateView.as_view(), name="api-products"),
    path(
        "shops/<int:shop_id>/products/<int:product_id>/",
        ProductDetailView.as_view(),
        name="api-product-detail",
    ),
    path("shops/<int:shop_id>/summary/", InventorySummaryView.as_view(), name="api-inventory-summary"),
    path("shops/<int:shop_id>/sales/", SalesHistoryView.as_view(), name="api-sales-history"),
    path("shops/<int:shop_id>/finance/", FinanceReportView.as_view(), name="api-finance-report"),
    path("products/<int:product_id>/sell/", SellProductView.as_view(), name="api-product-sell"),
    path("products/<int:product_id>/adjust/", StockAdjustmentView.as_view(), name="api-product-adjust"),
    path("products/<int:product_id>/movements/", StockMovementListView.as_view(), name="api-product-movements"),
]
