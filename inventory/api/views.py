import io
import logging

from django.http import HttpResponse
from django.shortcuts import get_object_or_404
from django.utils import timezone
from rest_framework import generics, status
from rest_framework.exceptions import PermissionDenied
from rest_framework.response import Response
from rest_framework.views import APIView

from booking.api.views import DASHBOARD_PERMISSIONS, ShopScopedMixin
from inventory import services
from inventory.api.serializers import (
    ProductSerializer,
    SaleSerializer,
    SellSerializer,
    StockAdjustmentSerializer,
    StockMovementSerializer,
)
from inventory.models import Product

logger = logging.getLogger(__name__)


def _csv_response(filename, write, data):
    buffer = io.StringIO()
    write(data, buffer)
    response = HttpResponse(buffer.getvalue(), content_type="text/csv; charset=utf-8")
    response["Content-Disposition"] = f'attachment; filename="{filename}"'
    return response


def _wants_csv(request):
    return request.query_params.get("export") == "csv"


class ProductAccessMixin:
    """Loads a product and checks the caller works at its shop."""

    owner_only = False

    def get_product(self) -> Product:
        product = get_object_or_404(Product.objects.select_related("shop"), pk=self.kwargs["product_id"])
        user = self.request.user
        if not product.shop.is_member(user):
            raise PermissionDenied("You do not have access to this shop.")
        if self.owner_only and product.shop.owner_id != user.id:
            raise PermissionDenied("Only the shop owner can change stock.")
        return product


class ProductListCreateView(ShopScopedMixin, generics.ListCreateAPIView):
    serializer_class = ProductSerializer
    permission_classes = DASHBOARD_PERMISSIONS

    def get_queryset(self):
        qs = self.get_shop().products.all()
        if self.request.query_params.get("include_inactive") not in {"1", "true"}:
            qs = qs.filter(is_active=True)
        search = (self.request.query_params.get("search") or "").strip()
        if search:
            qs = qs.filter(name__icontains=search)
        category = self.request.query_params.get("category")
        if category:
            qs = qs.filter(category=category)
        if self.request.query_params.get("low_stock") in {"1", "true"}:
            qs = qs.low_stock()
        return qs.order_by("name")

    def perform_create(self, serializer):
        product = serializer.save(shop=self.get_shop())
        logger.info("Product %s added to shop %s", product.pk, product.shop_id)


class ProductDetailView(ShopScopedMixin, generics.RetrieveUpdateDestroyAPIView):
    serializer_class = ProductSerializer
    permission_classes = DASHBOARD_PERMISSIONS
    lookup_url_kwarg = "product_id"

    def get_queryset(self):
        return self.get_shop().products.all()


class InventorySummaryView(ShopScopedMixin, APIView):
    permission_classes = DASHBOARD_PERMISSIONS

    def get(self, request, shop_id):
        summary = services.inventory_summary(self.get_shop())
        summary["low_stock"] = ProductSerializer(summary["low_stock"], many=True).data
        return Response(summary)


class SellProductView(ProductAccessMixin, APIView):
    permission_classes = DASHBOARD_PERMISSIONS

    def post(self, request, product_id):
        product = self.get_product()
        serializer = SellSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            sale = services.record_sale(product, serializer.validated_data["quantity"], user=request.user)
        except services.InsufficientStock as exc:
            return Response(
                {"detail": str(exc), "available": exc.available},
                status=status.HTTP_409_CONFLICT,
            )
        except ValueError as exc:
            return Response({"detail": str(exc)}, status=status.HTTP_400_BAD_REQUEST)

        return Response(SaleSerializer(sale).data, status=status.HTTP_201_CREATED)


class StockAdjustmentView(ProductAccessMixin, APIView):
    permission_classes = DASHBOARD_PERMISSIONS
    owner_only = True

    def post(self, request, product_id):
        product = self.get_product()
        serializer = StockAdjustmentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        try:
            movement = services.adjust_stock(
                product, data["delta"], kind=data["kind"], note=data["note"], user=request.user,
            )
        except services.InsufficientStock as exc:
            return Response(
                {"detail": str(exc), "available": exc.available},
                status=status.HTTP_409_CONFLICT,
            )
        except ValueError as exc:
            return Response({"detail": str(exc)}, status=status.HTTP_400_BAD_REQUEST)

        return Response(
            {"movement": StockMovementSerializer(movement).data, "quantity": product.quantity},
            status=status.HTTP_201_CREATED,
        )


class StockMovementListView(ProductAccessMixin, generics.ListAPIView):
    serializer_class = StockMovementSerializer
    permission_classes = DASHBOARD_PERMISSIONS

    def get_queryset(self):
        return self.get_product().movements.select_related("user")


class SalesHistoryView(ShopScopedMixin, APIView):
    permission_classes = DASHBOARD_PERMISSIONS

    def get(self, request, shop_id):
        shop = self.get_shop()
        params = request.query_params
        month = params.get("month")
        day = params.get("day")
        if not month and not day:
            month = timezone.localdate().strftime("%Y-%m")

        try:
            history = services.sales_history(shop, month=month, day=day, category=params.get("category"))
        except ValueError as exc:
            return Response({"detail": str(exc)}, status=status.HTTP_400_BAD_REQUEST)

        if _wants_csv(request):
            period = day or month
            return _csv_response(f"sales-{shop.slug}-{period}.csv", services.write_sales_csv, history)

        return Response({
            "sales": SaleSerializer(history["sales"], many=True).data,
            "categories": history["categories"],
            "total": history["total"],
            "count": history["count"],
            "units": history["units"],
            "average_ticket": history["average_ticket"],
            "by_category": history["by_category"],
        })


class FinanceReportView(ShopScopedMixin, APIView):
    permission_classes = DASHBOARD_PERMISSIONS
    owner_only = True

    def get(self, request, shop_id):
        shop = self.get_shop()
        params = request.query_params

        try:
            year = int(params.get("year") or timezone.localdate().year)
            month = int(params["month"]) if params.get("month") else None
            day = int(params["day"]) if params.get("day") else None
        except ValueError:
            return Response({"detail": "Year, month and day must be numbers."}, status=status.HTTP_400_BAD_REQUEST)
        if month is not None and not 1 <= month <= 12:
            return Response({"detail": "Month must be between 1 and 12."}, status=status.HTTP_400_BAD_REQUEST)
        if day is not None and not 1 <= day <= 31:
            return Response({"detail": "Day must be between 1 and 31."}, status=status.HTTP_400_BAD_REQUEST)

        staff = None
        if params.get("staff"):
            staff = shop.staff.filter(pk=params["staff"]).first() if params["staff"].isdigit() else None
            if staff is None:
                return Response({"detail": "Staff member not found."}, status=status.HTTP_404_NOT_FOUND)

        try:
            report = services.finance_report(shop, year, month=month, day=day, staff=staff)
        except ValueError as exc:
            return Response({"detail": str(exc)}, status=status.HTTP_400_BAD_REQUEST)

        if _wants_csv(request):
            period = "-".join(str(part) for part in (year, month, day) if part)
            return _csv_response(f"finance-{shop.slug}-{period}.csv", services.write_finance_csv, report)

        report.pop("appointments")
        return Response(report)
