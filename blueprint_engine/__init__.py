"""Blueprint resolution and rendering engine for project scaffolding.

Quick usage::

    from blueprint_engine import BlueprintCatalogue, GenerationOrchestrator

    catalogue = BlueprintCatalogue("blueprints")
    orchestrator = GenerationOrchestrator()
    result = await orchestrator.generate_from_catalogue(
        catalogue, "cli-simple", {"project_name": "demo"}, "out/demo"
    )
"""

from blueprint_engine.blueprint import Blueprint, BlueprintCatalogue, BlueprintLoader, CachingLoader
from blueprint_engine.config import EngineConfig
from blueprint_engine.expressions import Expression, evaluate, parse_expression
from blueprint_engine.generator import GenerationOrchestrator, GenerationResult, GenerationStatus
from blueprint_engine.renderer import TemplateRenderer
from blueprint_engine.variables import ResolvedVariables, VariableResolver

__version__ = "0.1.0"

__all__ = [
    "Blueprint",
    "BlueprintCatalogue",
    "BlueprintLoader",
    "CachingLoader",
    "EngineConfig",
    "Expression",
    "GenerationOrchestrator",
    "GenerationResult",
    "GenerationStatus",
    "ResolvedVariables",
    "TemplateRenderer",
    "VariableResolver",
    "evaluate",
    "parse_expression",
]
