"""
Model mixins providing reusable functionality for Django models.

Available Mixins:
    UUIDPrimaryKeyMixin: Use UUID as primary key
    VersionedMixin: Optimistic locking version, incremented on every save
    AppendOnlyMixin: Audit rows that refuse updates and deletes

Usage:
    from core.models import BaseModel
    from core.model_mixins import UUIDPrimaryKeyMixin, VersionedMixin

    class Escrow(UUIDPrimaryKeyMixin, VersionedMixin, BaseModel):
        amount_held_cents = models.PositiveBigIntegerField()

Note:
    - Always list mixins before BaseModel in inheritance
    - Mixins are abstract and don't create database tables
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

from django.db import models
from django.db.models import F

from core.exceptions import ConflictError

if TYPE_CHECKING:
    from typing import Any


class UUIDPrimaryKeyMixin(models.Model):
    """
    Use UUID as primary key instead of auto-increment integer.

    Order, escrow and dispute ids appear in URLs and gateway metadata,
    so they must not reveal record counts.

    Fields:
        id: UUIDField as primary key (auto-generated)
    """

    id = models.UUIDField(
        primary_key=True,
        default=uuid.uuid4,
        editable=False,
        help_text="Unique identifier for this record",
    )

    class Meta:
        abstract = True


class VersionedMixin(models.Model):
    """
    Optimistic locking support.

    On update (not force_insert), the version column is incremented
    atomically in the database with an F() expression, then re-read so
    the instance holds the stored value. Callers compare versions with
    payments.locks.check_version() to detect concurrent modification.

    Fields:
        version: Row version, starts at 1

    Note:
        Only the version field is refreshed after save. FSM state fields
        declared with protected=True cannot be refreshed in place; load a
        fresh instance with Model.objects.get() instead.
    """

    version = models.PositiveIntegerField(
        default=1,
        help_text="Version for optimistic locking - incremented on each save",
    )

    class Meta:
        abstract = True

    def save(self, *args: Any, **kwargs: Any) -> None:
        is_update = not self._state.adding and not kwargs.get("force_insert", False)
        if is_update:
            self.version = F("version") + 1
            update_fields = kwargs.get("update_fields")
            if update_fields is not None:
                kwargs["update_fields"] = {*update_fields, "version", "updated_at"}
        super().save(*args, **kwargs)
        if is_update:
            self.refresh_from_db(fields=["version"])


class AppendOnlyMixin(models.Model):
    """
    Audit records that are written once and never changed.

    save() on an existing row and delete() both raise ConflictError.
    Queryset-level update()/delete() bypass model methods and must not
    be used on these tables.
    """

    class Meta:
        abstract = True

    def save(self, *args: Any, **kwargs: Any) -> None:
        if not self._state.adding:
            raise ConflictError(
                f"{self.__class__.__name__} records are immutable",
                error_code="IMMUTABLE_RECORD",
                details={"id": str(self.pk)},
            )
        super().save(*args, **kwargs)

    def delete(self, *args: Any, **kwargs: Any):
        raise ConflictError(
            f"{self.__class__.__name__} records cannot be deleted",
            error_code="IMMUTABLE_RECORD",
            details={"id": str(self.pk)},
        )
