# booking/models.py
from datetime import time, timedelta
from decimal import Decimal

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import models
from django.db.models import Q
from django.urls import reverse
from django.utils import timezone
from django.utils.text import slugify


class ShopQuerySet(models.QuerySet):
    def active(self):
        return self.filter(is_active=True)

    def owned_by(self, user):
        return self.filter(owner=user)


class Shop(models.Model):
    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='shops',
        verbose_name='Owner',
    )
    name = models.CharField(max_length=120)
    slug = models.SlugField(max_length=150, unique=True, blank=True)
    description = models.TextField(blank=True)
    address = models.CharField(max_length=255, blank=True)
    city = models.CharField(max_length=100, blank=True)
    phone = models.CharField(max_length=20, blank=True)
    opening_time = models.TimeField('Opens at', default=time(9, 0))
    closing_time = models.TimeField('Closes at', default=time(18, 0))
    slot_step = models.PositiveSmallIntegerField(
        'Slot step, min',
        default=15,
        help_text='Distance between two bookable start times.',
    )
    photo = models.ImageField(upload_to='shops/', null=True, blank=True)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = ShopQuerySet.as_manager()

    class Meta:
        ordering = ['name']
        verbose_name = 'Shop'
        verbose_name_plural = 'Shops'

    def __str__(self):
        return self.name

    def save(self, *args, **kwargs):
        if not self.slug:
            self.slug = self._unique_slug()
        super().save(*args, **kwargs)

    def _unique_slug(self):
        base = slugify(self.name)[:140] or 'shop'
        candidate = base
        suffix = 1
        while Shop.objects.filter(slug=candidate).exclude(pk=self.pk).exists():
            suffix += 1
            candidate = f"{base}-{suffix}"
        return candidate

    def clean(self):
        if self.opening_time and self.closing_time and self.closing_time <= self.opening_time:
            raise ValidationError('Closing time must be after opening time.')
        if self.slot_step is not None and self.slot_step <= 0:
            raise ValidationError('Slot step must be positive.')

    def get_absolute_url(self):
        return reverse('api-shop-detail', kwargs={'slug': self.slug})

    def is_member(self, user):
        """Owner of the shop or a barber attached to it."""
        if not user or not user.is_authenticated:
            return False
        if self.owner_id == user.id:
            return True
        profile = getattr(user, 'profile', None)
        return bool(profile and profile.shop_id == self.pk)


class ShopPhoto(models.Model):
    shop = models.ForeignKey(Shop, on_delete=models.CASCADE, related_name='photos')
    image = models.ImageField(upload_to='shops/gallery/')
    position = models.PositiveIntegerField(default=0)
    uploaded_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['position', 'id']
        verbose_name = 'Gallery photo'
        verbose_name_plural = 'Gallery photos'

    def __str__(self):
        return f"{self.shop.name} photo #{self.pk}"


class Service(models.Model):
    shop = models.ForeignKey(Shop, on_delete=models.CASCADE, related_name='services')
    name = models.CharField('Name', max_length=120)
    description = models.TextField(blank=True)
    price = models.DecimalField('Price', max_digits=10, decimal_places=2, default=Decimal('0'))
    duration_minutes = models.PositiveIntegerField('Duration, min', default=30)
    is_active = models.BooleanField(default=True)

    class Meta:
        ordering = ['name']
        verbose_name = 'Service'
        verbose_name_plural = 'Services'

    def __str__(self):
        return f"{self.name} ({self.duration_minutes} min)"

    @property
    def duration(self):
        return timedelta(minutes=self.duration_minutes)

    def clean(self):
        if not self.duration_minutes:
            raise ValidationError('Duration must be positive.')


class Staff(models.Model):
    """A barber who can be assigned appointments."""
    shop = models.ForeignKey(Shop, on_delete=models.CASCADE, related_name='staff')
    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='staff_profile',
        verbose_name='Account',
    )
    name = models.CharField(max_length=120)
    phone = models.CharField(max_length=20, blank=True)
    photo = models.ImageField('Photo', upload_to='staff/', blank=True, null=True)
    telegram_chat_id = models.BigIntegerField('Telegram chat_id', blank=True, null=True)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['name', 'id']
        verbose_name = 'Staff member'
        verbose_name_plural = 'Staff'

    def __str__(self):
        return self.name


class StaffDayOff(models.Model):
    staff = models.ForeignKey(Staff, on_delete=models.CASCADE, related_name='days_off')
    date = models.DateField()
    from_time = models.TimeField(null=True, blank=True)  # empty means the whole day
    to_time = models.TimeField(null=True, blank=True)
    reason = models.CharField(max_length=255, blank=True)

    class Meta:
        ordering = ['date', 'from_time']
        verbose_name = 'Day off'
        verbose_name_plural = 'Days off'

    def __str__(self):
        if self.from_time and self.to_time:
            return f"{self.staff} off {self.date} {self.from_time}-{self.to_time}"
        return f"{self.staff} off {self.date}"

    @property
    def is_whole_day(self):
        return self.from_time is None and self.to_time is None

    def clean(self):
        if (self.from_time is None) != (self.to_time is None):
            raise ValidationError('Give both start and end times, or neither for a whole day.')
        if self.from_time and self.to_time and self.to_time <= self.from_time:
            raise ValidationError('End time must be after start time.')


class Client(models.Model):
    shop = models.ForeignKey(Shop, on_delete=models.CASCADE, related_name='clients')
    name = models.CharField(max_length=120)
    phone = models.CharField(max_length=20)
    email = models.EmailField(blank=True)
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='created_clients',
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at']
        unique_together = ('shop', 'phone')
        verbose_name = 'Client'
        verbose_name_plural = 'Clients'

    def __str__(self):
        return f"{self.name} ({self.phone})"


class AppointmentQuerySet(models.QuerySet):
    def active(self):
        return self.exclude(status=Appointment.Status.CANCELED)

    def overlapping(self, start, end):
        return self.filter(start_time__lt=end, end_time__gt=start)


class Appointment(models.Model):
    class Status(models.TextChoices):
        SCHEDULED = 'scheduled', 'Scheduled'
        CONFIRMED = 'confirmed', 'Confirmed'
        COMPLETED = 'completed', 'Completed'
        CANCELED = 'canceled', 'Canceled'

    shop = models.ForeignKey(Shop, on_delete=models.CASCADE, related_name='appointments')
    service = models.ForeignKey(Service, on_delete=models.PROTECT, related_name='appointments')
    staff = models.ForeignKey(Staff, on_delete=models.PROTECT, related_name='appointments')
    client = models.ForeignKey(
        Client,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='appointments',
    )
    client_name = models.CharField(max_length=120)
    client_phone = models.CharField(max_length=20, blank=True)

    start_time = models.DateTimeField('Starts at')
    end_time = models.DateTimeField('Ends at', blank=True)
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.SCHEDULED)
    price = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal('0'))
    notes = models.TextField(blank=True)
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='booked_appointments',
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = AppointmentQuerySet.as_manager()

    class Meta:
        ordering = ['start_time']
        verbose_name = 'Appointment'
        verbose_name_plural = 'Appointments'
        constraints = [
            models.UniqueConstraint(
                fields=['staff', 'start_time'],
                condition=~Q(status='canceled'),
                name='unique_active_appointment_per_slot',
            )
        ]

    def __str__(self):
        start = timezone.localtime(self.start_time).strftime('%d.%m %H:%M')
        return f'{self.client_name} ➜ {self.staff} ({start})'

    def save(self, *args, **kwargs):
        if not self.end_time and self.start_time and self.service_id:
            self.end_time = self.start_time + self.service.duration
        self.full_clean()
        super().save(*args, **kwargs)

    def clean(self):
        if self.end_time and self.start_time and self.end_time <= self.start_time:
            raise ValidationError('An appointment must end after it starts.')

        if self.staff_id and self.shop_id and self.staff.shop_id != self.shop_id:
            raise ValidationError('The staff member does not work at this shop.')

        if self.service_id and self.shop_id and self.service.shop_id != self.shop_id:
            raise ValidationError('The service is not offered by this shop.')

        if self.status == self.Status.CANCELED or not (self.staff_id and self.start_time and self.end_time):
            return

        clash = (
            Appointment.objects
            .active()
            .filter(staff_id=self.staff_id)
            .overlapping(self.start_time, self.end_time)
            .exclude(pk=self.pk)
            .exists()
        )
        if clash:
            raise ValidationError('The staff member is already booked at this time.')

    @property
    def duration_minutes(self):
        return int((self.end_time - self.start_time).total_seconds() // 60)

    @property
    def is_open(self):
        return self.status in {self.Status.SCHEDULED, self.Status.CONFIRMED}
