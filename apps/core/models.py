"""
Core model bases.

Provides BaseModel (UUID primary keys, timestamps, soft delete) for mutable
records and AppendOnlyModel for records that may only ever be inserted.
"""
import uuid
from django.db import models
from django.utils import timezone


class BaseModelManager(models.Manager):
    """Manager that excludes soft-deleted objects by default."""

    def get_queryset(self):
        return super().get_queryset().filter(deleted_at__isnull=True)


class BaseModelQuerySet(models.QuerySet):
    """QuerySet with soft delete support."""

    def delete(self):
        """Soft delete all objects in queryset."""
        return self.update(deleted_at=timezone.now())

    def hard_delete(self):
        """Permanently delete all objects in queryset."""
        return super().delete()


class BaseModel(models.Model):
    """
    Abstract base model with UUID primary key, soft delete, and timestamps.
    """
    id = models.UUIDField(
        primary_key=True,
        default=uuid.uuid4,
        editable=False,
        help_text="Unique identifier"
    )

    created_at = models.DateTimeField(
        auto_now_add=True,
        db_index=True,
        help_text="Timestamp when the record was created"
    )

    updated_at = models.DateTimeField(
        auto_now=True,
        help_text="Timestamp when the record was last updated"
    )

    deleted_at = models.DateTimeField(
        null=True,
        blank=True,
        db_index=True,
        help_text="Timestamp when the record was soft deleted"
    )

    # Default manager excludes soft-deleted objects
    objects = BaseModelManager.from_queryset(BaseModelQuerySet)()

    # Manager that includes soft-deleted objects
    objects_with_deleted = models.Manager.from_queryset(BaseModelQuerySet)()

    class Meta:
        abstract = True
        ordering = ['-created_at']

    def delete(self, using=None, keep_parents=False):
        """Soft delete the object."""
        self.deleted_at = timezone.now()
        self.save(using=using, update_fields=['deleted_at', 'updated_at'])

    @property
    def is_deleted(self):
        return self.deleted_at is not None


class AppendOnlyViolation(Exception):
    """Raised when code attempts to update or delete an append-only row."""


class AppendOnlyQuerySet(models.QuerySet):
    """QuerySet that refuses bulk updates and deletes."""

    def update(self, **kwargs):
        raise AppendOnlyViolation(f"{self.model.__name__} rows cannot be updated")

    def delete(self):
        raise AppendOnlyViolation(f"{self.model.__name__} rows cannot be deleted")


class AppendOnlyModel(models.Model):
    """
    Abstract base for immutable records.

    Rows can be inserted once; any later save, update or delete raises
    AppendOnlyViolation.
    """
    id = models.UUIDField(
        primary_key=True,
        default=uuid.uuid4,
        editable=False,
        help_text="Unique identifier"
    )

    created_at = models.DateTimeField(
        auto_now_add=True,
        db_index=True,
        help_text="Timestamp when the row was written"
    )

    objects = models.Manager.from_queryset(AppendOnlyQuerySet)()

    class Meta:
        abstract = True

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise AppendOnlyViolation(f"{type(self).__name__} rows cannot be updated")
        kwargs['force_insert'] = True
        super().save(*args, **kwargs)

    def delete(self, using=None, keep_parents=False):
        raise AppendOnlyViolation(f"{type(self).__name__} rows cannot be deleted")
