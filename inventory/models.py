from decimal import Decimal

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import models


def default_alert_threshold():
    return settings.DEFAULT_STOCK_ALERT


class ProductQuerySet(models.QuerySet):
    def active(self):
        return self.filter(is_active=True)

    def low_stock(self):
        return self.filter(quantity__lte=models.F('alert_threshold'))


class Product(models.Model):
    shop = models.ForeignKey('booking.Shop', on_delete=models.CASCADE, related_name='products')
    name = models.CharField('Name', max_length=120)
    category = models.CharField('Category', max_length=80, blank=True)
    price = models.DecimalField('Sale price', max_digits=10, decimal_places=2, default=Decimal('0'))
    cost = models.DecimalField('Unit cost', max_digits=10, decimal_places=2, default=Decimal('0'))
    quantity = models.PositiveIntegerField('In stock', default=0)
    alert_threshold = models.PositiveIntegerField(
        'Reorder at',
        default=default_alert_threshold,
        help_text='The product is flagged once stock falls to this level.',
    )
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = ProductQuerySet.as_manager()

    class Meta:
        ordering = ['name']
        verbose_name = 'Product'
        verbose_name_plural = 'Products'

    def __str__(self):
        return self.name

    def clean(self):
        if self.price is not None and self.price < 0:
            raise ValidationError('Price cannot be negative.')
        if self.cost is not None and self.cost < 0:
            raise ValidationError('Cost cannot be negative.')

    @property
    def is_low_stock(self):
        return self.quantity <= self.alert_threshold

    @property
    def stock_value(self):
        return self.price * self.quantity

    @property
    def unit_margin(self):
        return self.price - self.cost

    @property
    def expected_profit(self):
        return self.unit_margin * self.quantity


class StockMovement(models.Model):
    class Kind(models.TextChoices):
        IN = 'in', 'Stock in'
        OUT = 'out', 'Stock out'
        ADJUSTMENT = 'adjustment', 'Adjustment'
        SALE = 'sale', 'Sale'

    product = models.ForeignKey(Product, on_delete=models.CASCADE, related_name='movements')
    kind = models.CharField(max_length=16, choices=Kind.choices)
    quantity = models.IntegerField(help_text='Signed change in stock.')
    note = models.CharField(max_length=255, blank=True)
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='stock_movements',
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at', '-id']

    def __str__(self):
        return f"{self.product} {self.quantity:+d} ({self.kind})"


class SaleQuerySet(models.QuerySet):
    def for_month(self, year, month):
        return self.filter(sold_at__year=year, sold_at__month=month)

    def for_day(self, day):
        return self.filter(sold_at__date=day)


class Sale(models.Model):
    shop = models.ForeignKey('booking.Shop', on_delete=models.CASCADE, related_name='sales')
    product = models.ForeignKey(
        Product,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='sales',
    )
    # copied at sale time so history survives product edits and deletion
    product_name = models.CharField(max_length=120)
    category = models.CharField(max_length=80, blank=True)
    quantity = models.PositiveIntegerField()
    unit_price = models.DecimalField(max_digits=10, decimal_places=2)
    total = models.DecimalField(max_digits=12, decimal_places=2)
    sold_at = models.DateTimeField(db_index=True)
    sold_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='sales',
    )

    objects = SaleQuerySet.as_manager()

    class Meta:
        ordering = ['-sold_at', '-id']
        verbose_name = 'Sale'
        verbose_name_plural = 'Sales'

    def __str__(self):
        return f"{self.quantity} × {self.product_name} = {self.total}"
