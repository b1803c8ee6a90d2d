"""System checks for the sync engine."""

from django.core.checks import Error, Tags, register

from apps.sync.registry import SyncRegistry


@register(Tags.compatibility)
def check_sync_registry(app_configs, **kwargs):
    """
    Fail startup on registry gaps that would otherwise surface mid-sync.

    An entity type whose default strategy is MERGE must have a merge function.
    """
    return [
        Error(message, id="sync.E001", hint="Pass merge= when registering the entity type.")
        for message in SyncRegistry.find_configuration_errors()
    ]
