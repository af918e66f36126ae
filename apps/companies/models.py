"""
Company (tenant) model.
"""
from django.db import models
from apps.core.models import BaseModel, BaseModelManager, BaseModelQuerySet


class CompanyManager(BaseModelManager):
    """Manager for Company queries."""

    def active(self):
        return self.filter(status=Company.STATUS_ACTIVE)

    def by_slug(self, slug):
        return self.filter(slug=slug).first()


class Company(BaseModel):
    """
    Tenant boundary for users, permission overrides and module grants.
    """

    STATUS_ACTIVE = 'active'
    STATUS_SUSPENDED = 'suspended'
    STATUS_CHOICES = [
        (STATUS_ACTIVE, 'Active'),
        (STATUS_SUSPENDED, 'Suspended'),
    ]

    TIER_CHOICES = [
        ('standard', 'Standard'),
        ('professional', 'Professional'),
        ('enterprise', 'Enterprise'),
    ]

    name = models.CharField(
        max_length=255,
        help_text="Company name"
    )
    slug = models.SlugField(
        unique=True,
        max_length=100,
        help_text="URL-friendly identifier"
    )
    subscription_tier = models.CharField(
        max_length=20,
        choices=TIER_CHOICES,
        default='standard',
        help_text="Commercial subscription tier"
    )
    status = models.CharField(
        max_length=20,
        choices=STATUS_CHOICES,
        default=STATUS_ACTIVE,
        db_index=True,
        help_text="Current company status"
    )

    objects = CompanyManager.from_queryset(BaseModelQuerySet)()

    class Meta:
        db_table = 'companies'
        ordering = ['name']
        verbose_name_plural = 'companies'

    def __str__(self):
        return self.name
