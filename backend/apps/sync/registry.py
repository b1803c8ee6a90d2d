"""
Sync entity registry.

Maps entity type strings to the capabilities business modules provide:
loading authoritative state, applying a mutation, merging two snapshots,
and naming the mobile cache keys an entity feeds.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from apps.sync.exceptions import UnknownEntityTypeError

if TYPE_CHECKING:
    from apps.sync.detector import ServerState


@dataclass
class ApplyResult:
    """Outcome of applying a mutation to authoritative state."""

    version: int | None = None
    data: dict[str, Any] | None = None


# apply(entity_type, entity_id, operation_type, data) -> ApplyResult | None
ApplyFunction = Callable[[str, str, str, dict[str, Any]], "ApplyResult | None"]
# load_state(entity_type, entity_id) -> ServerState
StateLoader = Callable[[str, str], "ServerState"]
# merge(server_data, client_data) -> merged snapshot
MergeFunction = Callable[[dict[str, Any], dict[str, Any]], dict[str, Any]]
# cache_keys(entity_type, entity_id) -> mobile cache keys to invalidate
CacheKeyBuilder = Callable[[str, str], list[str]]


def default_cache_keys(entity_type: str, entity_id: str) -> list[str]:
    """Default cache key convention: ``"<entity_type>:<entity_id>"``."""
    return [f"{entity_type}:{entity_id}"]


class SyncRegistry:
    """
    Registry of syncable entity types and their configurations.

    Business modules register at startup (typically from ``AppConfig.ready``).
    The sync engine only ever dispatches on the entity type string.
    """

    _appliers: dict[str, ApplyFunction] = {}
    _state_loaders: dict[str, StateLoader] = {}
    _mergers: dict[str, MergeFunction] = {}
    _cache_key_builders: dict[str, CacheKeyBuilder] = {}
    _default_strategies: dict[str, str] = {}

    @classmethod
    def register(
        cls,
        entity_type: str,
        apply: ApplyFunction,
        load_state: StateLoader,
        merge: MergeFunction | None = None,
        cache_keys: CacheKeyBuilder | None = None,
        default_strategy: str | None = None,
    ) -> None:
        """
        Register a syncable entity type.

        Args:
            entity_type: String identifier (e.g., 'customer', 'sales_order')
            apply: Applies a mutation to authoritative state
            load_state: Returns the current ServerState for an entity
            merge: Optional field-wise merge used by the MERGE strategy
            cache_keys: Optional builder for mobile cache keys to invalidate
            default_strategy: Strategy used to auto-resolve conflicts for this
                type (SERVER_WINS, CLIENT_WINS, MERGE or MANUAL)
        """
        cls._appliers[entity_type] = apply
        cls._state_loaders[entity_type] = load_state
        if merge is not None:
            cls._mergers[entity_type] = merge
        if cache_keys is not None:
            cls._cache_key_builders[entity_type] = cache_keys
        if default_strategy is not None:
            cls._default_strategies[entity_type] = default_strategy

    @classmethod
    def register_merge(cls, entity_type: str, merge: MergeFunction) -> None:
        """Attach or replace the merge function for an entity type."""
        cls._mergers[entity_type] = merge

    @classmethod
    def get_applier(cls, entity_type: str) -> ApplyFunction:
        """
        Get the apply function for an entity type.

        Raises:
            UnknownEntityTypeError: If entity type is not registered
        """
        if entity_type not in cls._appliers:
            raise UnknownEntityTypeError(f"Unknown entity type: {entity_type}")
        return cls._appliers[entity_type]

    @classmethod
    def get_state_loader(cls, entity_type: str) -> StateLoader:
        """
        Get the state loader for an entity type.

        Raises:
            UnknownEntityTypeError: If entity type is not registered
        """
        if entity_type not in cls._state_loaders:
            raise UnknownEntityTypeError(f"Unknown entity type: {entity_type}")
        return cls._state_loaders[entity_type]

    @classmethod
    def get_merger(cls, entity_type: str) -> MergeFunction | None:
        """Get the merge function for an entity type, if registered."""
        return cls._mergers.get(entity_type)

    @classmethod
    def get_cache_keys(cls, entity_type: str, entity_id: str) -> list[str]:
        """Cache keys fed by an entity, using the default convention if none registered."""
        builder = cls._cache_key_builders.get(entity_type, default_cache_keys)
        return builder(entity_type, entity_id)

    @classmethod
    def get_default_strategy(cls, entity_type: str) -> str | None:
        """Get the auto-resolution strategy for an entity type, if registered."""
        return cls._default_strategies.get(entity_type)

    @classmethod
    def get_all_entity_types(cls) -> list[str]:
        """Get list of all registered entity types."""
        return list(cls._appliers.keys())

    @classmethod
    def is_registered(cls, entity_type: str) -> bool:
        """Check if an entity type is registered."""
        return entity_type in cls._appliers

    @classmethod
    def find_configuration_errors(cls) -> list[str]:
        """
        List registrations that would fail at resolution time.

        Every entity type whose default strategy is MERGE must have a merge
        function, and default strategies must be known strategy names.
        """
        from apps.sync.models import SyncConflict

        errors: list[str] = []
        for entity_type, strategy in cls._default_strategies.items():
            if strategy not in SyncConflict.Strategy.values:
                errors.append(f"{entity_type}: unknown default strategy {strategy!r}")
            elif strategy == SyncConflict.Strategy.MERGE and entity_type not in cls._mergers:
                errors.append(f"{entity_type}: default strategy MERGE without a merge function")
        return errors

    @classmethod
    def clear(cls) -> None:
        """Clear all registrations. Useful for testing."""
        cls._appliers.clear()
        cls._state_loaders.clear()
        cls._mergers.clear()
        cls._cache_key_builders.clear()
        cls._default_strategies.clear()
