"""Blueprint model, loader, and catalogue.

Quick usage::

    from blueprint_engine.blueprint import BlueprintCatalogue, BlueprintLoader

    blueprint = BlueprintLoader().load("blueprints/cli-simple")
    catalogue = BlueprintCatalogue("blueprints")
    blueprint = catalogue.get("cli-simple")
"""

from blueprint_engine.blueprint.catalogue import BlueprintCatalogue
from blueprint_engine.blueprint.loader import BlueprintLoader, CachingLoader
from blueprint_engine.blueprint.models import (
    Blueprint,
    DependencySpec,
    FileEntry,
    HookSpec,
    ManifestSpec,
    VariableSpec,
    VariableType,
    VariableValidation,
)

__all__ = [
    "Blueprint",
    "BlueprintCatalogue",
    "BlueprintLoader",
    "CachingLoader",
    "DependencySpec",
    "FileEntry",
    "HookSpec",
    "ManifestSpec",
    "VariableSpec",
    "VariableType",
    "VariableValidation",
]
