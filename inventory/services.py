"""Stock, product sales and the revenue report."""
import csv
import logging
from datetime import datetime
from decimal import Decimal

from django.db import transaction
from django.db.models import Count, Sum
from django.utils import timezone

from booking.models import Appointment
from inventory.models import Product, Sale, StockMovement

logger = logging.getLogger(__name__)

ZERO = Decimal('0.00')
CENT = Decimal('0.01')
CSV_DELIMITER = ';'


class InsufficientStock(ValueError):
    def __init__(self, product, requested):
        self.product = product
        self.requested = requested
        self.available = product.quantity
        super().__init__(
            f"Only {product.quantity} unit(s) of {product.name} in stock, {requested} requested."
        )


def _money(value) -> Decimal:
    return (value or ZERO).quantize(CENT)


def _positive_int(value, label):
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValueError(f"{label} must be a positive whole number.")
    return value


def record_sale(product: Product, quantity: int, user=None, sold_at=None) -> Sale:
    """Sell ``quantity`` units: take them off stock and write the sale."""
    _positive_int(quantity, 'Quantity')

    with transaction.atomic():
        locked = Product.objects.select_for_update().get(pk=product.pk)
        if not locked.is_active:
            raise ValueError(f"{locked.name} is no longer sold.")
        if quantity > locked.quantity:
            raise InsufficientStock(locked, quantity)

        locked.quantity -= quantity
        locked.save(update_fields=['quantity', 'updated_at'])

        sale = Sale.objects.create(
            shop_id=locked.shop_id,
            product=locked,
            product_name=locked.name,
            category=locked.category,
            quantity=quantity,
            unit_price=locked.price,
            total=locked.price * quantity,
            sold_at=sold_at or timezone.now(),
            sold_by=user,
        )
        StockMovement.objects.create(
            product=locked,
            kind=StockMovement.Kind.SALE,
            quantity=-quantity,
            note=f"Sale #{sale.pk}",
            user=user,
        )

    product.quantity = locked.quantity
    logger.info("Sold %s × product %s (sale %s), %s left", quantity, product.pk, sale.pk, locked.quantity)
    return sale


def adjust_stock(product: Product, delta: int, kind=StockMovement.Kind.ADJUSTMENT, note='', user=None) -> StockMovement:
    if isinstance(delta, bool) or not isinstance(delta, int) or delta == 0:
        raise ValueError('The stock change must be a non-zero whole number.')
    if kind == StockMovement.Kind.IN and delta < 0:
        raise ValueError('Incoming stock must be positive.')
    if kind == StockMovement.Kind.OUT and delta > 0:
        raise ValueError('Outgoing stock must be negative.')
    if kind == StockMovement.Kind.SALE:
        raise ValueError('Use record_sale for sales.')

    with transaction.atomic():
        locked = Product.objects.select_for_update().get(pk=product.pk)
        if locked.quantity + delta < 0:
            raise InsufficientStock(locked, -delta)
        locked.quantity += delta
        locked.save(update_fields=['quantity', 'updated_at'])
        movement = StockMovement.objects.create(
            product=locked,
            kind=kind,
            quantity=delta,
            note=note,
            user=user,
        )

    product.quantity = locked.quantity
    logger.info("Stock of product %s changed by %+d (%s)", product.pk, delta, kind)
    return movement


def inventory_summary(shop) -> dict:
    products = list(Product.objects.active().filter(shop=shop).order_by('name'))
    return {
        'products': len(products),
        'categories': sorted({p.category for p in products if p.category}),
        'units': sum(p.quantity for p in products),
        'stock_value': sum((p.stock_value for p in products), ZERO),
        'expected_profit': sum((p.expected_profit for p in products), ZERO),
        'low_stock': [p for p in products if p.is_low_stock],
    }


def parse_month(value: str):
    try:
        parsed = datetime.strptime(value, '%Y-%m')
    except (TypeError, ValueError):
        raise ValueError('Invalid month. Use YYYY-MM.')
    return parsed.year, parsed.month


def parse_day(value: str):
    try:
        return datetime.strptime(value, '%Y-%m-%d').date()
    except (TypeError, ValueError):
        raise ValueError('Invalid date. Use YYYY-MM-DD.')


def sales_history(shop, month=None, day=None, category=None) -> dict:
    """Sales of a month (``YYYY-MM``) or a day (``YYYY-MM-DD``) with totals.

    ``day`` wins over ``month`` when both are given.
    """
    sales = Sale.objects.filter(shop=shop).select_related('sold_by')
    categories = sorted(
        c for c in sales.order_by().values_list('category', flat=True).distinct() if c
    )

    if day:
        sales = sales.for_day(parse_day(day))
    elif month:
        sales = sales.for_month(*parse_month(month))
    if category:
        sales = sales.filter(category=category)

    totals = sales.aggregate(total=Sum('total'), units=Sum('quantity'), count=Count('id'))
    total = _money(totals['total'])
    count = totals['count'] or 0

    by_category = [
        {
            'category': row['category'] or '',
            'total': _money(row['total']),
            'units': row['units'] or 0,
        }
        for row in sales.order_by().values('category').annotate(total=Sum('total'), units=Sum('quantity'))
    ]
    by_category.sort(key=lambda row: row['total'], reverse=True)

    return {
        'sales': sales,
        'categories': categories,
        'total': total,
        'count': count,
        'units': totals['units'] or 0,
        'average_ticket': (total / count).quantize(CENT) if count else ZERO,
        'by_category': by_category,
    }


def finance_report(shop, year: int, month=None, day=None, staff=None) -> dict:
    """Revenue from completed appointments and product sales in a period."""
    if day and not month:
        raise ValueError("A day needs a month.")
    appointments = Appointment.objects.filter(
        shop=shop,
        status=Appointment.Status.COMPLETED,
        start_time__year=year,
    ).select_related('service', 'staff')
    sales = Sale.objects.filter(shop=shop, sold_at__year=year)

    if month:
        appointments = appointments.filter(start_time__month=month)
        sales = sales.filter(sold_at__month=month)
    if day:
        appointments = appointments.filter(start_time__day=day)
        sales = sales.filter(sold_at__day=day)
    if staff is not None:
        appointments = appointments.filter(staff=staff)

    service_totals = appointments.aggregate(revenue=Sum('price'), count=Count('id'))
    service_revenue = _money(service_totals['revenue'])
    product_revenue = _money(sales.aggregate(revenue=Sum('total'))['revenue'])

    monthly = {m: {'month': m, 'services': ZERO, 'products': ZERO} for m in range(1, 13)}
    for row in appointments.order_by().values('start_time__month').annotate(revenue=Sum('price')):
        monthly[row['start_time__month']]['services'] = _money(row['revenue'])
    for row in sales.order_by().values('sold_at__month').annotate(revenue=Sum('total')):
        monthly[row['sold_at__month']]['products'] = _money(row['revenue'])
    for row in monthly.values():
        row['total'] = row['services'] + row['products']

    by_staff = [
        {
            'staff': row['staff_id'],
            'name': row['staff__name'],
            'revenue': _money(row['revenue']),
            'appointments': row['count'],
        }
        for row in appointments.order_by().values('staff_id', 'staff__name').annotate(
            revenue=Sum('price'), count=Count('id'),
        ).order_by('staff__name')
    ]

    return {
        'year': year,
        'month': month,
        'day': day,
        'appointments': appointments.order_by('start_time'),
        'appointments_count': service_totals['count'] or 0,
        'service_revenue': service_revenue,
        'product_revenue': product_revenue,
        'total_revenue': service_revenue + product_revenue,
        'monthly': list(monthly.values()),
        'by_staff': by_staff,
    }


def write_sales_csv(history: dict, stream):
    writer = csv.writer(stream, delimiter=CSV_DELIMITER)
    writer.writerow(['Date', 'Product', 'Category', 'Quantity', 'Unit price', 'Total'])
    for sale in history['sales'].order_by('sold_at', 'id'):
        writer.writerow([
            timezone.localtime(sale.sold_at).strftime('%Y-%m-%d %H:%M'),
            sale.product_name,
            sale.category,
            sale.quantity,
            sale.unit_price,
            sale.total,
        ])
    writer.writerow([])
    writer.writerow(['Total sold', history['total']])
    writer.writerow(['Sales', history['count']])
    writer.writerow(['Units', history['units']])
    writer.writerow(['Average ticket', history['average_ticket']])


def write_finance_csv(report: dict, stream):
    writer = csv.writer(stream, delimiter=CSV_DELIMITER)
    writer.writerow(['Date', 'Client', 'Service', 'Staff', 'Price'])
    for appointment in report['appointments']:
        writer.writerow([
            timezone.localtime(appointment.start_time).strftime('%Y-%m-%d %H:%M'),
            appointment.client_name,
            appointment.service.name,
            appointment.staff.name,
            appointment.price,
        ])
    writer.writerow([])
    writer.writerow(['Services', report['service_revenue']])
    writer.writerow(['Products', report['product_revenue']])
    writer.writerow(['Total', report['total_revenue']])
