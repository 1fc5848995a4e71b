"""
Abstract base model for billing and program records.

Combine with the mixins in core.model_mixins, listing mixins first:

    class Subscription(UUIDPrimaryKeyMixin, VersionedMixin, BaseModel):
        ...
"""

from __future__ import annotations

from django.db import models


class BaseModel(models.Model):
    """
    Timestamps shared by every table.

    created_at is indexed because the abandonment sweep and the stale
    webhook scan both filter on it.
    """

    created_at = models.DateTimeField(auto_now_add=True, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True
        ordering = ["-created_at"]
