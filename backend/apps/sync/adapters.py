"""
Registry adapters for Django models.

Business modules whose models carry a ``sync_version`` counter and a
``deleted_at`` soft-delete column can register them without writing their own
apply / load_state pair:

    adapter = VersionedModelAdapter(Customer, fields=["name", "phone"])
    adapter.register("customer", merge=merge_customer)
"""

from __future__ import annotations

import json
from collections.abc import Iterable
from typing import Any

from django.core.serializers.json import DjangoJSONEncoder
from django.db import models, transaction
from django.forms.models import model_to_dict
from django.utils import timezone

from apps.core.logging import get_logger
from apps.sync.detector import ServerState
from apps.sync.exceptions import ValidationError
from apps.sync.models import OperationType
from apps.sync.registry import ApplyResult, CacheKeyBuilder, MergeFunction, SyncRegistry

logger = get_logger(__name__)

# Never written from a client snapshot
RESERVED_FIELDS = {"id", "pk", "sync_version", "deleted_at", "created_at", "updated_at"}


class VersionedModelAdapter:
    """
    Apply / load_state pair for a model with ``sync_version`` and ``deleted_at``.

    Every applied mutation bumps ``sync_version`` by one, so a version is
    held by the server exactly when it lies in ``0..sync_version``. Deletes
    are soft: the row stays as a tombstone carrying its last snapshot.
    """

    def __init__(
        self,
        model: type[models.Model],
        fields: Iterable[str] | None = None,
        lookup_field: str = "pk",
    ):
        self.model = model
        self.lookup_field = lookup_field
        if fields is None:
            fields = [
                f.name
                for f in model._meta.concrete_fields
                if not f.primary_key and f.name not in RESERVED_FIELDS
            ]
        self.fields = list(fields)

    def _queryset(self) -> models.QuerySet:
        # Base manager so soft-deleted rows are visible
        return self.model._base_manager.all()

    def snapshot(self, instance: models.Model) -> dict[str, Any]:
        """JSON-safe snapshot of the synced fields."""
        data = model_to_dict(instance, fields=self.fields)
        return json.loads(json.dumps(data, cls=DjangoJSONEncoder))

    def load_state(self, entity_type: str, entity_id: str) -> ServerState:
        instance = self._queryset().filter(**{self.lookup_field: entity_id}).first()
        if instance is None:
            return ServerState.missing()
        return ServerState(
            data=self.snapshot(instance),
            version=instance.sync_version,
            deleted=instance.deleted_at is not None,
        )

    def apply(
        self,
        entity_type: str,
        entity_id: str,
        operation_type: str,
        data: dict[str, Any],
    ) -> ApplyResult:
        """
        Apply a mutation under a row lock.

        INSERT creates the row, or restores and overwrites a tombstone.
        UPDATE of a tombstone also restores it; that only happens after a
        conflict was resolved in the client's favour.
        """
        with transaction.atomic():
            instance = (
                self._queryset()
                .select_for_update()
                .filter(**{self.lookup_field: entity_id})
                .first()
            )

            if operation_type == OperationType.DELETE:
                if instance is None:
                    raise self.model.DoesNotExist(f"{entity_type} {entity_id} not found")
                if instance.deleted_at is None:
                    instance.deleted_at = timezone.now()
                    instance.sync_version += 1
                    instance.save()
                return ApplyResult(version=instance.sync_version, data=self.snapshot(instance))

            if operation_type not in (OperationType.INSERT, OperationType.UPDATE):
                raise ValidationError(f"Unsupported operation: {operation_type}")

            if instance is None:
                if operation_type == OperationType.UPDATE:
                    raise self.model.DoesNotExist(f"{entity_type} {entity_id} not found")
                instance = self.model(**{self.lookup_field: entity_id})
                instance.sync_version = 0

            for name, value in data.items():
                if name in self.fields:
                    setattr(instance, name, value)
            instance.deleted_at = None
            instance.sync_version += 1
            instance.save()

        logger.debug(
            "sync_entity_applied",
            entity_type=entity_type,
            entity_id=entity_id,
            operation_type=operation_type,
            sync_version=instance.sync_version,
        )
        return ApplyResult(version=instance.sync_version, data=self.snapshot(instance))

    def register(
        self,
        entity_type: str,
        merge: MergeFunction | None = None,
        cache_keys: CacheKeyBuilder | None = None,
        default_strategy: str | None = None,
    ) -> None:
        """Register this adapter's apply/load_state pair under ``entity_type``."""
        SyncRegistry.register(
            entity_type=entity_type,
            apply=self.apply,
            load_state=self.load_state,
            merge=merge,
            cache_keys=cache_keys,
            default_strategy=default_strategy,
        )
