"""Generation orchestrator: plan, stage, commit, dependencies, hooks.

Quick usage::

    from blueprint_engine.blueprint import BlueprintLoader
    from blueprint_engine.generator import GenerationOrchestrator

    blueprint = BlueprintLoader().load("blueprints/cli-simple")
    result = await GenerationOrchestrator().generate(
        blueprint, {"project_name": "demo"}, "out/demo"
    )
"""

from blueprint_engine.generator.dependencies import (
    MANIFEST_WRITERS,
    GoModWriter,
    JsonManifestWriter,
    RequirementsWriter,
    merge_dependencies,
    version_key,
)
from blueprint_engine.generator.hooks import HookRunner
from blueprint_engine.generator.orchestrator import GenerationOrchestrator
from blueprint_engine.generator.reporting import print_generation_result
from blueprint_engine.generator.results import (
    ErrorDetail,
    GenerationPlan,
    GenerationResult,
    GenerationStatus,
    HookOutcome,
    HookStatus,
    MergedDependency,
    PlannedFile,
    PlannedHook,
)
from blueprint_engine.generator.staging import LocalFileSystem

__all__ = [
    "MANIFEST_WRITERS",
    "ErrorDetail",
    "GenerationOrchestrator",
    "GenerationPlan",
    "GenerationResult",
    "GenerationStatus",
    "GoModWriter",
    "HookOutcome",
    "HookRunner",
    "HookStatus",
    "JsonManifestWriter",
    "LocalFileSystem",
    "MergedDependency",
    "PlannedFile",
    "PlannedHook",
    "RequirementsWriter",
    "merge_dependencies",
    "print_generation_result",
    "version_key",
]
