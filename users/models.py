from django.conf import settings
from django.db import models
from django.db.models.signals import post_save
from django.dispatch import receiver


class Profile(models.Model):
    class Role(models.TextChoices):
        OWNER = 'owner', 'Owner'
        BARBER = 'barber', 'Barber'
        CLIENT = 'client', 'Client'

    user = models.OneToOneField(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='profile')
    role = models.CharField('Role', max_length=16, choices=Role.choices, default=Role.CLIENT)
    phone = models.CharField('Phone', max_length=20, blank=True)
    # Barbers belong to exactly one shop; owners reach theirs through Shop.owner.
    shop = models.ForeignKey(
        'booking.Shop',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='member_profiles',
        verbose_name='Shop',
    )

    def __str__(self):
        return f"{self.user} – {self.get_role_display()}"

    @property
    def is_owner(self):
        return self.role == self.Role.OWNER

    @property
    def is_barber(self):
        return self.role == self.Role.BARBER


@receiver(post_save, sender=settings.AUTH_USER_MODEL)
def ensure_profile(sender, instance, created, **kwargs):
    if created:
        Profile.objects.get_or_create(user=instance)
