"""
Reusable model mixins.

Mixins:
    UUIDPrimaryKeyMixin: UUID primary key, safe to hand to gateways as metadata
    VersionedMixin: Row version bumped in the database on every save
"""

from __future__ import annotations

import uuid

from django.db import models
from django.db.models import F


class UUIDPrimaryKeyMixin(models.Model):
    """
    UUID primary key generated before insert.

    Lets a row's id travel to Stripe (checkout metadata, idempotency keys)
    and Stream (channel ids) before the row is committed.
    """

    id = models.UUIDField(
        primary_key=True,
        default=uuid.uuid4,
        editable=False,
    )

    class Meta:
        abstract = True


class VersionedMixin(models.Model):
    """
    Integer version incremented with an F() expression on each update save.

    The increment happens in the UPDATE statement, so two writers that both
    loaded version N leave N+2 behind rather than silently colliding. After
    save() the instance holds the stored value again.

    Partial saves keep the counter moving: "version" and "updated_at" are
    added to any update_fields passed in.
    """

    version = models.PositiveIntegerField(
        default=1,
        help_text="Incremented on each save",
    )

    class Meta:
        abstract = True

    def save(self, *args, **kwargs):
        is_update = self.pk is not None and not self._state.adding
        if is_update:
            self.version = F("version") + 1
            update_fields = kwargs.get("update_fields")
            if update_fields is not None:
                kwargs["update_fields"] = {*update_fields, "version", "updated_at"}
        super().save(*args, **kwargs)
        if is_update:
            self.refresh_from_db(fields=["version"])
